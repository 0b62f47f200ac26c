"""
Infrastructure endpoints that are not part of the payment domain.
"""

import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Liveness and readiness check for load balancers and orchestration.

    The database is required; Redis only backs run locks, so a cache
    outage degrades the response without failing it.

    Returns:
        200 {"status": "healthy", "database": ..., "cache": ...}
        503 when the database is unreachable
    """
    health_status = {"status": "healthy", "database": "unknown", "cache": "unknown"}
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        logger.exception("Health check: database unreachable")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    # django-redis is configured with IGNORE_EXCEPTIONS, so failures read as misses
    cache.set("health_check", "ok", timeout=1)
    health_status["cache"] = "connected" if cache.get("health_check") == "ok" else "disconnected"

    return JsonResponse(health_status, status=200 if is_healthy else 503)
