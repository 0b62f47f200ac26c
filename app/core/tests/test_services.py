"""
Tests for ServiceResult and BaseService.
"""

import logging

import pytest

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult


class TestServiceResult:
    """Tests for ServiceResult."""

    def test_success_is_truthy(self):
        result = ServiceResult.success({"id": 1})

        assert result
        assert result.to_response() == {"success": True, "data": {"id": 1}}

    def test_failure_is_falsy(self):
        result = ServiceResult.failure("Already processed", "DUPLICATE")

        assert not result
        assert result.to_response() == {
            "success": False,
            "error": "Already processed",
            "error_code": "DUPLICATE",
        }

    def test_from_application_error_keeps_code(self):
        result = ServiceResult.from_exception(ConflictError("changed", error_code="STATE_CHANGED"))

        assert result.error_code == "STATE_CHANGED"
        assert "changed" in result.error

    def test_from_plain_exception_uses_class_name(self):
        result = ServiceResult.from_exception(KeyError("missing"))

        assert result.error_code == "KEYERROR"


class TestBaseService:
    """Tests for BaseService helpers."""

    def test_logger_named_after_subclass(self):
        class ExampleService(BaseService):
            pass

        assert ExampleService.get_logger().name.endswith(".ExampleService")

    def test_handle_exception_logs_and_converts(self, caplog):
        with caplog.at_level(logging.ERROR):
            result = BaseService.handle_exception(ValueError("bad input"), context="Parsing")

        assert not result
        assert result.error_code == "VALUEERROR"
        assert "Parsing: bad input" in caplog.text

    @pytest.mark.django_db
    def test_atomic_rolls_back(self):
        from notifications.models import Notification

        with pytest.raises(RuntimeError), BaseService.atomic():
            Notification.objects.create(notification_type="payout_sent", recipient_id="expert_1")
            raise RuntimeError("abort")

        assert not Notification.objects.exists()
