"""
Celery tasks for audit maintenance.

Audit jobs themselves run in the worker pool (manage.py run_workers);
Celery beat only drives periodic housekeeping:
- reconcile_orphan_pages: repair pages that no job will ever process
- log_queue_depth: log job counts for monitoring
"""

import logging
from datetime import timedelta
from typing import Any, Dict

from celery import shared_task
from django.conf import settings

from auditor.queue import get_job_queue
from auditor.services.orchestrator import fail_stranded_pages, reconcile_orphan_pages as reconcile

logger = logging.getLogger(__name__)


@shared_task(name="auditor.tasks.reconcile_orphan_pages")
def reconcile_orphan_pages() -> Dict[str, Any]:
    """
    Periodic task to repair pages without live jobs.

    Runs every 5 minutes via Celery Beat. Pending pages without a crawl
    job are re-enqueued; crawling/analyzing pages whose jobs are exhausted
    are failed so their audits can complete.

    Returns:
        Dict with counts of re-enqueued and failed pages
    """
    grace = timedelta(minutes=getattr(settings, "AUDITOR_RECONCILE_GRACE_MINUTES", 10))

    logger.info("Reconciling audit pages...")
    requeued = reconcile(grace=grace)
    failed = fail_stranded_pages(grace=grace)

    if requeued or failed:
        logger.info(f"Reconciled pages: {requeued} re-enqueued, {failed} failed")

    return {
        "requeued": requeued,
        "failed": failed,
    }


@shared_task(name="auditor.tasks.log_queue_depth")
def log_queue_depth() -> Dict[str, int]:
    """
    Periodic task to log job queue counts.

    Runs every 15 minutes via Celery Beat.

    Returns:
        Job counts by status
    """
    stats = get_job_queue().stats()
    logger.info(
        "Job queue: "
        + ", ".join(f"{status}={count}" for status, count in sorted(stats.items()))
    )
    return stats
