"""
Typed checkout metadata carried on Stripe PaymentIntents.

The checkout flow writes three JSON-encoded string values into the payment
intent's metadata (Stripe metadata values are strings of at most 500
characters, hence the compact wire keys):

    metadata["meeting"]  = {"id": event id, "expert": expert id,
                            "guest": guest email, "guestName": ...,
                            "start": ISO-8601, "dur": minutes,
                            "locale": "pt"}
    metadata["transfer"] = {"account": "acct_...", "country": "PT",
                            "scheduled": ISO-8601}
    metadata["payment"]  = {"amount": total, "fee": platform fee,
                            "expert": expert share}
    metadata["version"]  = "1"   (optional)

This module parses those values once, at the webhook boundary, into frozen
dataclasses. Parsing never defaults a missing or malformed field: it raises
MetadataValidationError naming the field. Each section parses independently
so the meeting section can drive conflict detection even when the transfer
section is broken.

Usage:
    from payments.metadata import CheckoutMetadata

    checkout = CheckoutMetadata.from_intent_metadata(intent["metadata"])
    meeting = checkout.meeting()      # MeetingMetadata or raises
    transfer = checkout.transfer()    # TransferMetadata or raises
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from payments.exceptions import MetadataValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from typing import Any

SUPPORTED_VERSIONS = frozenset({"1"})
DEFAULT_VERSION = "1"


# =============================================================================
# Field Parsers
# =============================================================================


def _require(section: Mapping[str, Any], key: str, field: str) -> Any:
    value = section.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MetadataValidationError(f"Missing required field {field}", field=field)
    return value


def parse_int(value: Any, field: str) -> int:
    """
    Parse an integral value (int or integral string), rejecting bools and floats.
    """
    if isinstance(value, bool):
        raise MetadataValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            pass
    raise MetadataValidationError(
        f"{field} must be an integer, got {value!r}",
        field=field,
    )


def parse_datetime(value: Any, field: str) -> datetime:
    """
    Parse an ISO-8601 timestamp. Naive values are read as UTC.
    """
    if not isinstance(value, str):
        raise MetadataValidationError(f"{field} must be an ISO-8601 string", field=field)
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise MetadataValidationError(
            f"{field} is not a valid ISO-8601 timestamp: {value!r}",
            field=field,
        ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _load_section(raw: Any, name: str) -> dict[str, Any]:
    if raw is None or raw == "":
        raise MetadataValidationError(f"Missing metadata section {name}", field=name)
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        raise MetadataValidationError(f"Metadata section {name} must be JSON", field=name)
    try:
        section = json.loads(raw)
    except json.JSONDecodeError:
        raise MetadataValidationError(
            f"Metadata section {name} is not valid JSON",
            field=name,
        ) from None
    if not isinstance(section, dict):
        raise MetadataValidationError(
            f"Metadata section {name} must be a JSON object",
            field=name,
        )
    return section


# =============================================================================
# Sections
# =============================================================================


@dataclass(frozen=True)
class MeetingMetadata:
    """The booked session."""

    event_id: str
    expert_id: str
    guest_email: str
    guest_name: str
    start_time: datetime
    duration_minutes: int
    locale: str = "en"

    @classmethod
    def parse(cls, section: Mapping[str, Any]) -> MeetingMetadata:
        duration = parse_int(_require(section, "dur", "meeting.dur"), "meeting.dur")
        if duration <= 0:
            raise MetadataValidationError(
                f"meeting.dur must be positive, got {duration}",
                field="meeting.dur",
            )
        return cls(
            event_id=str(_require(section, "id", "meeting.id")),
            expert_id=str(_require(section, "expert", "meeting.expert")),
            guest_email=str(_require(section, "guest", "meeting.guest")),
            guest_name=str(section.get("guestName") or ""),
            start_time=parse_datetime(_require(section, "start", "meeting.start"), "meeting.start"),
            duration_minutes=duration,
            locale=str(section.get("locale") or "en"),
        )


@dataclass(frozen=True)
class TransferMetadata:
    """Where and when the expert's share is transferred."""

    account_id: str
    country: str
    scheduled_time: datetime

    @classmethod
    def parse(cls, section: Mapping[str, Any]) -> TransferMetadata:
        return cls(
            account_id=str(_require(section, "account", "transfer.account")),
            country=str(section.get("country") or "").upper(),
            scheduled_time=parse_datetime(
                _require(section, "scheduled", "transfer.scheduled"),
                "transfer.scheduled",
            ),
        )


@dataclass(frozen=True)
class PaymentMetadata:
    """Split of the payment between platform and expert (minor units)."""

    amount: int
    platform_fee: int
    expert_amount: int

    @classmethod
    def parse(cls, section: Mapping[str, Any]) -> PaymentMetadata:
        expert_amount = parse_int(_require(section, "expert", "payment.expert"), "payment.expert")
        platform_fee = parse_int(_require(section, "fee", "payment.fee"), "payment.fee")
        amount = parse_int(section.get("amount", expert_amount + platform_fee), "payment.amount")

        if expert_amount <= 0:
            raise MetadataValidationError(
                f"payment.expert must be positive, got {expert_amount}",
                field="payment.expert",
            )
        if platform_fee < 0:
            raise MetadataValidationError(
                f"payment.fee must not be negative, got {platform_fee}",
                field="payment.fee",
            )
        return cls(amount=amount, platform_fee=platform_fee, expert_amount=expert_amount)


# =============================================================================
# Envelope
# =============================================================================


@dataclass(frozen=True)
class CheckoutMetadata:
    """
    Raw metadata envelope with per-section typed accessors.

    Attributes:
        version: Metadata schema version
        raw: The payment intent's metadata mapping
    """

    version: str
    raw: Mapping[str, Any]

    @classmethod
    def from_intent_metadata(cls, metadata: Mapping[str, Any] | None) -> CheckoutMetadata:
        """
        Wrap a payment intent's metadata, checking the schema version.

        Raises:
            MetadataValidationError: If the version is not supported
        """
        metadata = metadata or {}
        version = str(metadata.get("version") or DEFAULT_VERSION)
        if version not in SUPPORTED_VERSIONS:
            raise MetadataValidationError(
                f"Unsupported metadata version {version!r}",
                field="version",
            )
        return cls(version=version, raw=metadata)

    def meeting(self) -> MeetingMetadata:
        return MeetingMetadata.parse(_load_section(self.raw.get("meeting"), "meeting"))

    def transfer(self) -> TransferMetadata:
        return TransferMetadata.parse(_load_section(self.raw.get("transfer"), "transfer"))

    def payment(self) -> PaymentMetadata:
        return PaymentMetadata.parse(_load_section(self.raw.get("payment"), "payment"))

    def meeting_or_none(self) -> MeetingMetadata | None:
        """Meeting section, or None when it is missing or invalid."""
        try:
            return self.meeting()
        except MetadataValidationError:
            return None


@dataclass(frozen=True)
class PaymentIntentSnapshot:
    """
    The fields of a webhook's PaymentIntent the engine acts on.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        amount: Amount received (or requested) in minor units
        currency: ISO 4217 code, lowercase
        payment_method_types: Methods allowed on the intent
        checkout: Version-checked metadata envelope
        latest_charge_id: Charge ID, when the payload carries one
        next_action: Pending customer action (voucher details)
    """

    id: str
    amount: int
    currency: str
    payment_method_types: tuple[str, ...]
    checkout: CheckoutMetadata
    latest_charge_id: str | None = None
    next_action: Mapping[str, Any] | None = None

    @classmethod
    def from_stripe(cls, intent: Mapping[str, Any]) -> PaymentIntentSnapshot:
        """
        Build a snapshot from a PaymentIntent webhook object.

        Raises:
            MetadataValidationError: If the metadata version is unsupported
        """
        amount = intent.get("amount_received") or intent.get("amount") or 0
        latest_charge = intent.get("latest_charge")
        if isinstance(latest_charge, dict):
            latest_charge = latest_charge.get("id")
        return cls(
            id=intent["id"],
            amount=int(amount),
            currency=str(intent.get("currency") or "eur").lower(),
            payment_method_types=tuple(intent.get("payment_method_types") or ()),
            checkout=CheckoutMetadata.from_intent_metadata(intent.get("metadata")),
            latest_charge_id=latest_charge,
            next_action=intent.get("next_action"),
        )

    def uses_delayed_method(self, delayed_methods: Iterable[str]) -> bool:
        return bool(set(self.payment_method_types) & set(delayed_methods))


@dataclass(frozen=True)
class TransferPlan:
    """
    Fully validated inputs for creating a TransferRecord.

    Attributes:
        meeting: Booked session
        transfer: Destination account and schedule
        payment: Amount split
    """

    meeting: MeetingMetadata
    transfer: TransferMetadata
    payment: PaymentMetadata

    @classmethod
    def from_checkout(cls, checkout: CheckoutMetadata) -> TransferPlan:
        """
        Validate every section needed to owe an expert money.

        Raises:
            MetadataValidationError: On the first invalid field, including a
                scheduled transfer time before the session starts
        """
        meeting = checkout.meeting()
        transfer = checkout.transfer()
        payment = checkout.payment()
        if transfer.scheduled_time < meeting.start_time:
            raise MetadataValidationError(
                "Scheduled transfer time precedes session start",
                field="transfer.scheduled",
            )
        return cls(meeting=meeting, transfer=transfer, payment=payment)
