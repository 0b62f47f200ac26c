"""
ConnectedAccount model - an expert's Stripe Connect account.

Experts receive transfers into their Connect account and payouts from it to
their bank. The provider-truth payout sweep enumerates these rows, so every
expert able to receive money has exactly one.

Usage:
    from payments.models import ConnectedAccount

    account = ConnectedAccount.objects.get(expert_id=record.expert_id)
    stripe_adapter.retrieve_balance(account.stripe_account_id)
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class ConnectedAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    Stripe Connect account of an expert.

    Fields:
        expert_id: Expert owning the account (unique)
        stripe_account_id: Stripe Account ID (acct_xxx, unique)
        email: Expert email used for payout notifications
        country: Account country (ISO 3166-1 alpha-2)
        default_currency: Account default currency
        payouts_enabled: Whether Stripe allows payouts
    """

    expert_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Expert owning the account",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Connect Account ID (acct_xxx)",
    )

    email = models.EmailField(
        blank=True,
        default="",
        help_text="Expert email for payout notifications",
    )

    country = models.CharField(
        max_length=2,
        blank=True,
        default="",
        help_text="Account country (ISO 3166-1 alpha-2)",
    )

    default_currency = models.CharField(
        max_length=3,
        default="eur",
        help_text="Account default currency (lowercase)",
    )

    payouts_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled payouts on this account",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Connected Account"
        verbose_name_plural = "Connected Accounts"

    def __str__(self) -> str:
        return f"ConnectedAccount({self.stripe_account_id}, expert={self.expert_id})"
