"""
Core views providing infrastructure endpoints.

This module contains views that are not part of the chat domain but are
essential for running the service, such as health checks.
"""

import logging

from channels.layers import get_channel_layer
from django.db import connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Used by Docker health checks, Kubernetes probes and load balancers.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - cache: "connected" or "disconnected"
        - channel_layer: "configured" or "missing"

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "channel_layer": "unknown",
    }
    is_healthy = True

    # Check database connectivity
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        logger.exception("Health check: database unreachable")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    # Cache failure is not critical (graceful degradation)
    try:
        from django.core.cache import cache

        cache.set("health_check", "ok", timeout=1)
        if cache.get("health_check") == "ok":
            health_status["cache"] = "connected"
        else:
            health_status["cache"] = "disconnected"
    except Exception:
        health_status["cache"] = "disconnected"

    # Live delivery degrades to REST-only without a channel layer
    health_status["channel_layer"] = (
        "configured" if get_channel_layer() is not None else "missing"
    )

    status_code = 200 if is_healthy else 503

    return JsonResponse(health_status, status=status_code)
