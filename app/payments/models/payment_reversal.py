"""
PaymentReversal model - a refund or chargeback seen for a payment.

Stripe does not order webhook deliveries, so a charge.refunded or
charge.dispute.created event can arrive before the payment_intent.succeeded
it reverses, when no TransferRecord exists yet to move into a terminal
status. The reversal is stored here, keyed by PaymentIntent, and consulted
whenever a TransferRecord is created or a meeting confirmed.

Usage:
    from payments.models import PaymentReversal

    PaymentReversal.remember(pi_id, ReversalKind.REFUNDED, stripe_object_id=charge_id)
    if PaymentReversal.kind_for(pi_id) is not None:
        ...  # Never pay the expert or confirm the meeting
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class ReversalKind(models.TextChoices):
    """How the payment was reversed. Values match the terminal TransferStatus."""

    REFUNDED = "refunded", "Refunded"
    DISPUTED = "disputed", "Disputed"


class PaymentReversal(UUIDPrimaryKeyMixin, BaseModel):
    """
    First refund or dispute observed for a PaymentIntent.

    Fields:
        stripe_payment_intent_id: Reversed PaymentIntent (unique)
        kind: REFUNDED or DISPUTED, whichever arrived first
        stripe_object_id: Charge or dispute that reversed it
    """

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx) that was reversed",
    )

    kind = models.CharField(
        max_length=20,
        choices=ReversalKind.choices,
        help_text="Refund or dispute, whichever was seen first",
    )

    stripe_object_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Charge (ch_xxx) or Dispute (dp_xxx) ID",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Reversal"
        verbose_name_plural = "Payment Reversals"

    def __str__(self) -> str:
        return f"PaymentReversal({self.stripe_payment_intent_id}, {self.kind})"

    @classmethod
    def remember(
        cls,
        payment_intent_id: str,
        kind: str,
        stripe_object_id: str = "",
    ) -> PaymentReversal:
        """Store the reversal. The first one seen for an intent wins."""
        reversal, _ = cls.objects.get_or_create(
            stripe_payment_intent_id=payment_intent_id,
            defaults={"kind": kind, "stripe_object_id": stripe_object_id or ""},
        )
        return reversal

    @classmethod
    def kind_for(cls, payment_intent_id: str) -> str | None:
        """ReversalKind value of the intent, or None if never reversed."""
        return (
            cls.objects.filter(stripe_payment_intent_id=payment_intent_id)
            .values_list("kind", flat=True)
            .first()
        )
