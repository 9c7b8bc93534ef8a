"""
Pipeline Orchestrator - starts, deletes and reconciles audits.

start_audit() validates its input before any I/O, resolves the sitemap,
then creates the audit, its pages and their crawl jobs in one transaction,
so a crash can never leave pages without crawl jobs.

The reconciliation sweeps repair audits seeded before that guarantee or
whose jobs died with a worker:
- reconcile_orphan_pages(): pending pages with no live job get a new
  crawl job
- fail_stranded_pages(): crawling/analyzing pages whose jobs are all
  finished are failed, so their audit can complete
"""

import logging
from datetime import timedelta
from typing import List, Optional, Set
from urllib.parse import urlparse

from asgiref.sync import async_to_sync
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from auditor.exceptions import AuditNotFound, AuditValidationError, EmptySitemapError
from auditor.models import (
    Audit,
    AuditPage,
    AuditStatus,
    Job,
    JobStatus,
    JobType,
    PageStatus,
    TERMINAL_AUDIT_STATUSES,
)
from auditor.queue import CrawlPagePayload, JobQueue, get_job_queue
from auditor.services.sitemap_resolver import SitemapResolver, get_sitemap_resolver
from auditor.services.state_machine import advance_page, refresh_audit_status

logger = logging.getLogger(__name__)


def validate_audit_request(sitemap_url, rate_limit_ms, url_limit) -> None:
    """
    Reject bad audit input before anything is fetched or stored.

    Raises:
        AuditValidationError: Describes the first invalid field
    """
    if not isinstance(sitemap_url, str) or not sitemap_url.strip():
        raise AuditValidationError("sitemap_url is required")

    parsed = urlparse(sitemap_url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise AuditValidationError("Invalid sitemap URL format")

    if isinstance(rate_limit_ms, bool) or not isinstance(rate_limit_ms, int):
        raise AuditValidationError("rate_limit_ms must be an integer")
    if rate_limit_ms < 0:
        raise AuditValidationError("rate_limit_ms must not be negative")

    if url_limit is not None:
        if isinstance(url_limit, bool) or not isinstance(url_limit, int) or url_limit <= 0:
            raise AuditValidationError("url_limit must be a positive number")


def start_audit(
    sitemap_url: str,
    user_id: Optional[str] = None,
    rate_limit_ms: int = 1000,
    url_limit: Optional[int] = None,
    resolver: Optional[SitemapResolver] = None,
    queue: Optional[JobQueue] = None,
) -> str:
    """
    Start a new audit.

    Args:
        sitemap_url: Sitemap or sitemap index URL
        user_id: Optional owner
        rate_limit_ms: Delay before each crawl request
        url_limit: Optional cap on the number of sitemap URLs (first N kept)
        resolver: Sitemap resolver (defaults to the configured one)
        queue: Job queue for the crawl jobs

    Returns:
        ID of the new audit

    Raises:
        AuditValidationError: Invalid input or a sitemap without URLs
        SitemapParseError: Sitemap could not be fetched or parsed
    """
    validate_audit_request(sitemap_url, rate_limit_ms, url_limit)
    sitemap_url = sitemap_url.strip()
    resolver = resolver or get_sitemap_resolver()
    queue = queue or get_job_queue()

    logger.info(f"Parsing sitemap: {sitemap_url}")
    try:
        urls = async_to_sync(resolver.resolve)(sitemap_url)
    except EmptySitemapError:
        raise AuditValidationError("No URLs found in sitemap")

    if not urls:
        raise AuditValidationError("No URLs found in sitemap")
    logger.info(f"Found {len(urls)} URLs in sitemap")

    if url_limit is not None and url_limit < len(urls):
        logger.info(f"Limiting audit to {url_limit} of {len(urls)} URLs")
        urls = urls[:url_limit]

    with transaction.atomic():
        audit = Audit.objects.create(
            user_id=user_id,
            sitemap_url=sitemap_url,
            status=AuditStatus.PENDING,
            total_urls=len(urls),
            processed_urls=0,
            rate_limit_ms=rate_limit_ms,
            url_limit=url_limit,
        )

        now = timezone.now()
        pages = [
            AuditPage(
                audit=audit,
                url=url,
                status=PageStatus.PENDING,
                # Distinct timestamps keep sitemap order for listings and export
                created_at=now + timedelta(microseconds=offset),
            )
            for offset, url in enumerate(urls)
        ]
        AuditPage.objects.bulk_create(pages)

        audit.status = AuditStatus.CRAWLING
        audit.save(update_fields=["status", "updated_at"])

        queue.enqueue_many(
            JobType.CRAWL_PAGE,
            [
                CrawlPagePayload(
                    audit_id=str(audit.id),
                    page_id=str(page.id),
                    url=page.url,
                    rate_limit_ms=rate_limit_ms,
                )
                for page in pages
            ],
        )

    logger.info(f"Started audit {audit.id} with {len(urls)} pages")
    return str(audit.id)


def delete_audit(audit_id) -> None:
    """
    Delete an audit with its pages and issues.

    Queued jobs for the audit stay in the queue; their handlers skip pages
    that no longer exist.

    Raises:
        AuditNotFound: Unknown audit id
    """
    try:
        deleted, _ = Audit.objects.filter(pk=audit_id).delete()
    except (ValidationError, ValueError):
        deleted = 0
    if not deleted:
        raise AuditNotFound(f"Audit not found: {audit_id}")
    logger.info(f"Deleted audit {audit_id}")


def _live_job_page_ids() -> Set[str]:
    """Page ids referenced by pending or processing jobs."""
    page_ids = set()
    payloads = Job.objects.filter(
        status__in=[JobStatus.PENDING, JobStatus.PROCESSING]
    ).values_list("payload", flat=True)
    for payload in payloads.iterator():
        if isinstance(payload, dict) and payload.get("page_id"):
            page_ids.add(str(payload["page_id"]))
    return page_ids


def _pages_without_live_jobs(statuses: List[str], grace: timedelta):
    cutoff = timezone.now() - grace
    live = _live_job_page_ids()
    pages = (
        AuditPage.objects.filter(status__in=statuses, audit__created_at__lte=cutoff)
        .exclude(audit__status__in=TERMINAL_AUDIT_STATUSES)
        .select_related("audit")
        .order_by("created_at")
    )
    return [page for page in pages if str(page.id) not in live]


def reconcile_orphan_pages(
    grace: timedelta = timedelta(minutes=10),
    queue: Optional[JobQueue] = None,
) -> int:
    """
    Re-enqueue crawl jobs for pending pages that have none.

    Only audits older than the grace period are considered.

    Args:
        grace: Minimum audit age
        queue: Job queue for the new crawl jobs

    Returns:
        Number of crawl jobs enqueued
    """
    queue = queue or get_job_queue()
    orphans = _pages_without_live_jobs([PageStatus.PENDING], grace)
    if not orphans:
        return 0

    queue.enqueue_many(
        JobType.CRAWL_PAGE,
        [
            CrawlPagePayload(
                audit_id=str(page.audit_id),
                page_id=str(page.id),
                url=page.url,
                rate_limit_ms=page.audit.rate_limit_ms,
            )
            for page in orphans
        ],
    )

    audit_ids = sorted({str(page.audit_id) for page in orphans})
    logger.warning(
        f"Re-enqueued {len(orphans)} orphan pages across {len(audit_ids)} audits"
    )
    return len(orphans)


def fail_stranded_pages(grace: timedelta = timedelta(minutes=10)) -> int:
    """
    Fail crawling/analyzing pages that no live job will ever finish.

    This happens when a job's lock expired with no attempts left, so no
    handler ran to record the failure.

    Args:
        grace: Minimum audit age

    Returns:
        Number of pages failed
    """
    stranded = _pages_without_live_jobs(
        [PageStatus.CRAWLING, PageStatus.ANALYZING], grace
    )

    failed = 0
    audit_ids = set()
    for page in stranded:
        if advance_page(
            page.id,
            PageStatus.FAILED,
            error_message=page.error_message or "Job attempts exhausted",
        ):
            failed += 1
            audit_ids.add(page.audit_id)

    for audit_id in audit_ids:
        refresh_audit_status(audit_id)

    if failed:
        logger.warning(f"Failed {failed} stranded pages across {len(audit_ids)} audits")
    return failed
