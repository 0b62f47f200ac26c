"""
Stripe webhook ingest endpoint.

Ingest contract:
    - A request without a valid Stripe-Signature is rejected with 400 and
      nothing is stored
    - Once the signature is verified the event is acknowledged with 200,
      whatever happens next: a non-2xx answer only makes Stripe redeliver
      an event this engine already holds or can rebuild from redelivery
    - Each Stripe event id is stored once (WebhookEvent) and handed to the
      process_webhook_event task; handlers never run in the request

A storage or broker failure after verification is logged and acknowledged.
An unstored event is redelivered by Stripe later; a stored but unqueued one
is picked up by the retry_failed_webhooks worker.

Usage:
    # In urls.py
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook")
"""

from __future__ import annotations

import logging

from django.db import DatabaseError
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import StripeAdapter
from payments.exceptions import StripeInvalidRequestError
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Verify, store and queue one Stripe event.

    Returns:
        400 for a missing or invalid signature or an event without id/type,
        200 for everything else (new, duplicate, or not stored/queued)
    """
    signature = request.headers.get("Stripe-Signature", "")
    if not signature:
        logger.warning("Stripe webhook without signature header rejected")
        return HttpResponse("Missing signature", status=400)

    try:
        event = StripeAdapter.from_settings().verify_webhook_signature(request.body, signature)
    except StripeInvalidRequestError as e:
        logger.warning("Stripe webhook signature rejected", extra={"error": str(e)})
        return HttpResponse("Invalid signature", status=400)

    stripe_event_id = event.get("id")
    event_type = event.get("type")
    if not stripe_event_id or not event_type:
        logger.warning("Verified Stripe webhook without id or type rejected")
        return HttpResponse("Invalid event", status=400)

    log_context = {"stripe_event_id": stripe_event_id, "event_type": event_type}

    try:
        webhook_event, created = WebhookEvent.objects.get_or_create(
            stripe_event_id=stripe_event_id,
            defaults={
                "event_type": event_type,
                "payload": event,
                "status": WebhookEventStatus.PENDING,
            },
        )
    except DatabaseError:
        logger.exception("Verified webhook could not be stored, awaiting redelivery", extra=log_context)
        return HttpResponse("Accepted", status=200)

    if not created and webhook_event.is_processed:
        logger.info("Duplicate delivery of a processed webhook", extra=log_context)
        return HttpResponse("Already processed", status=200)

    logger.info(
        f"Stripe webhook {'stored' if created else 'redelivered'}: {event_type}",
        extra={**log_context, "webhook_event_id": str(webhook_event.id), "status": webhook_event.status},
    )
    _enqueue(webhook_event)
    return HttpResponse("Accepted", status=200)


def _enqueue(webhook_event: WebhookEvent) -> None:
    """Hand the event to the worker. A broker outage leaves it PENDING for the retry sweep."""
    from payments.tasks import process_webhook_event

    try:
        process_webhook_event.delay(str(webhook_event.id))
    except Exception:
        logger.exception(
            "Webhook stored but not queued",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
