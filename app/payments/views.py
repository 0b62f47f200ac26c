"""
DRF views for payments app.

This module provides the scheduler endpoints an external cron service
calls to trigger the daily money-movement jobs. Celery beat schedules the
same jobs; both triggers are safe to overlap.

Related files:
    - workers/: The Celery tasks these endpoints queue
    - serializers.py: Response serializer
    - urls.py: URL routing

Endpoints:
    POST /api/v1/payments/cron/process-transfers/ - Queue scheduled transfers
    POST /api/v1/payments/cron/process-payouts/ - Queue pending payouts

Security:
    - X-Scheduler-Timestamp carries the Unix time the request was signed
    - X-Scheduler-Signature must be the hex HMAC-SHA256 of
      "<timestamp>.<raw body>" keyed with SCHEDULER_SIGNING_SECRET
    - Timestamps further than SCHEDULER_SIGNATURE_TOLERANCE_SECONDS from
      now are rejected, so a captured request cannot be replayed later
    - With no secret configured every request is rejected
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time

from django.conf import settings
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from payments.serializers import ScheduledJobQueuedSerializer
from payments.workers import process_pending_payouts, process_scheduled_transfers

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Scheduler-Signature"
TIMESTAMP_HEADER = "X-Scheduler-Timestamp"


def sign_scheduler_request(body: bytes, timestamp: int | str, secret: str) -> str:
    """Hex HMAC-SHA256 of "<timestamp>.<body>"."""
    signed_content = f"{timestamp}.".encode() + body
    return hmac.new(secret.encode(), signed_content, hashlib.sha256).hexdigest()


def verify_scheduler_signature(
    body: bytes,
    signature: str | None,
    timestamp: str | None,
    now: float | None = None,
) -> bool:
    """
    Check a scheduler request's signature and freshness.

    The timestamp must parse as Unix seconds within the configured
    tolerance of now; the signature is compared in constant time.
    """
    secret = settings.SCHEDULER_SIGNING_SECRET
    if not secret or not signature or not timestamp:
        return False

    try:
        signed_at = int(timestamp.strip())
    except ValueError:
        return False

    now = time.time() if now is None else now
    if abs(now - signed_at) > settings.SCHEDULER_SIGNATURE_TOLERANCE_SECONDS:
        return False

    expected = sign_scheduler_request(body, signed_at, secret)
    return hmac.compare_digest(expected, signature.strip())


SIGNATURE_PARAMETERS = [
    OpenApiParameter(
        name=SIGNATURE_HEADER,
        location=OpenApiParameter.HEADER,
        required=True,
        description='Hex HMAC-SHA256 of "<timestamp>.<raw request body>"',
    ),
    OpenApiParameter(
        name=TIMESTAMP_HEADER,
        location=OpenApiParameter.HEADER,
        required=True,
        description="Unix time the request was signed",
    ),
]


class ScheduledJobView(APIView):
    """
    Base view for a signed scheduler trigger.

    Subclasses set `task` to the Celery task to queue.
    """

    permission_classes = [AllowAny]
    authentication_classes = []
    task = None

    def post(self, request):
        verified = verify_scheduler_signature(
            request.body,
            request.headers.get(SIGNATURE_HEADER),
            request.headers.get(TIMESTAMP_HEADER),
        )
        if not verified:
            logger.warning(
                "Rejected scheduler request with missing, stale or invalid signature",
                extra={"path": request.path},
            )
            return Response(
                {"detail": "Invalid signature"},
                status=status.HTTP_401_UNAUTHORIZED,
            )

        async_result = self.task.delay()
        logger.info(
            f"Queued {self.task.name} from scheduler",
            extra={"celery_task_id": async_result.id},
        )
        serializer = ScheduledJobQueuedSerializer({"queued": True, "task_id": async_result.id})
        return Response(serializer.data, status=status.HTTP_202_ACCEPTED)


class ProcessTransfersView(ScheduledJobView):
    """
    Queue the scheduled transfer run.

    POST /api/v1/payments/cron/process-transfers/
    """

    task = process_scheduled_transfers

    @extend_schema(
        operation_id="cron_process_transfers",
        summary="Queue scheduled transfers",
        description=(
            "Queues the job that transfers due expert shares to their Connect "
            "accounts. Idempotent: overlapping runs cannot double-transfer."
        ),
        request=None,
        parameters=SIGNATURE_PARAMETERS,
        responses={
            202: OpenApiResponse(response=ScheduledJobQueuedSerializer, description="Job queued"),
            401: OpenApiResponse(description="Missing, stale or invalid signature"),
        },
        tags=["Scheduler"],
    )
    def post(self, request):
        return super().post(request)


class ProcessPayoutsView(ScheduledJobView):
    """
    Queue the payout run.

    POST /api/v1/payments/cron/process-payouts/
    """

    task = process_pending_payouts

    @extend_schema(
        operation_id="cron_process_payouts",
        summary="Queue pending payouts",
        description=(
            "Queues the job that pays experts out once the complaint window has "
            "passed, then sweeps manual-schedule accounts. Idempotent."
        ),
        request=None,
        parameters=SIGNATURE_PARAMETERS,
        responses={
            202: OpenApiResponse(response=ScheduledJobQueuedSerializer, description="Job queued"),
            401: OpenApiResponse(description="Missing, stale or invalid signature"),
        },
        tags=["Scheduler"],
    )
    def post(self, request):
        return super().post(request)
