"""
Serializers for the payments app.

Only the scheduler endpoints speak DRF; the Stripe webhook is a plain
Django view that reads the raw signed body.
"""

from rest_framework import serializers


class ScheduledJobQueuedSerializer(serializers.Serializer):
    """Response body of a scheduler endpoint once its job is queued."""

    queued = serializers.BooleanField(help_text="Always true")
    task_id = serializers.CharField(help_text="Celery task id of the queued run")
