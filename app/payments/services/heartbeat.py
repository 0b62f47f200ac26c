"""
Liveness heartbeats for scheduled jobs.

Each scheduled job pings an external monitor when it finishes: GET <url> on
success, GET <url>/fail on failure. A missing ping tells the monitor the job
did not run. Heartbeat problems are logged and never break the job.
"""

from __future__ import annotations

import logging

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)


def send_heartbeat(url: str, success: bool = True) -> bool:
    """
    Ping a heartbeat URL.

    Args:
        url: Monitor URL (blank disables the heartbeat)
        success: False pings the failure endpoint

    Returns:
        True if the monitor acknowledged the ping
    """
    if not url:
        return False

    target = url.rstrip("/") if success else f"{url.rstrip('/')}/fail"
    try:
        response = httpx.get(target, timeout=settings.HEARTBEAT_TIMEOUT_SECONDS)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Heartbeat failed: {e}", extra={"heartbeat_url": target})
        return False

    logger.debug("Heartbeat sent", extra={"heartbeat_url": target, "success": success})
    return True
