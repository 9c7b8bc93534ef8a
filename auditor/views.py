"""
Service-level views.

Includes the health check endpoint for monitoring and load balancer checks.
"""

import logging

from django.conf import settings
from django.db import connection
from django.http import JsonResponse

from auditor.models import Job, JobStatus
from auditor.queue import get_job_queue

logger = logging.getLogger(__name__)


def get_redis_status() -> str:
    """
    Check the Redis instance used by the crawl limiter.

    Returns:
        "connected", "error", or "not_configured" when the limiter is in-memory
    """
    if getattr(settings, "AUDITOR_CRAWL_LIMITER", "memory") != "redis":
        return "not_configured"

    try:
        from auditor.workers import RedisCrawlLimiter

        return "connected" if RedisCrawlLimiter()._redis.ping() else "error"
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return "error"


def health_check(request):
    """
    Health check endpoint for the auditor service.

    Endpoint: GET /api/health/
    No authentication required (for load balancer checks).

    Response fields:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "error"
        - redis: "connected", "not_configured", or "error"
        - queue: job counts by status
        - queue_depth: jobs waiting or in progress
        - last_job_processed: ISO timestamp of the last finished job

    Returns:
        JsonResponse: HTTP 200 for healthy, HTTP 503 for unhealthy
    """
    status = "healthy"
    http_status = 200

    # Check database connection
    database_status = "connected"
    try:
        connection.ensure_connection()
    except Exception:
        database_status = "error"
        status = "unhealthy"
        http_status = 503

    queue_stats = None
    queue_depth = None
    last_job_processed = None

    if database_status == "connected":
        try:
            queue_stats = get_job_queue().stats()
            queue_depth = queue_stats[JobStatus.PENDING] + queue_stats[JobStatus.PROCESSING]

            last_processed = (
                Job.objects.filter(processed_at__isnull=False)
                .order_by("-processed_at")
                .values_list("processed_at", flat=True)
                .first()
            )
            if last_processed:
                last_job_processed = last_processed.isoformat()
        except Exception as e:
            logger.error(f"Job queue health check failed: {e}")
            status = "unhealthy"
            http_status = 503

    response_data = {
        "status": status,
        "database": database_status,
        "redis": get_redis_status(),
        "queue": queue_stats,
        "queue_depth": queue_depth,
        "last_job_processed": last_job_processed,
    }

    return JsonResponse(response_data, status=http_status)
