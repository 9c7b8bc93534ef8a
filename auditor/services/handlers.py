"""
Job handlers - the work behind crawl_page and analyze_page jobs.

Handlers never swallow errors. On failure they store error_message on the
page and re-raise so the worker pool fails the job exactly once per
attempt. The page itself is only moved to failed on the job's final
attempt; earlier attempts leave it where it is for the retry.

External calls (reader API, AI provider) are async and are run here with
asgiref's async_to_sync, since workers are plain threads.
"""

import logging
import time
from typing import Callable, Optional

from asgiref.sync import async_to_sync
from django.db import transaction

from auditor.exceptions import ContentAnalysisError
from auditor.models import AuditPage, JobType, PageStatus, TERMINAL_PAGE_STATUSES
from auditor.queue import AnalyzePagePayload, ClaimedJob, JobQueue, get_job_queue
from auditor.services.content_analyzer import ContentAnalyzer, get_content_analyzer
from auditor.services.content_fetcher import ContentFetcher, get_content_fetcher
from auditor.services.prompt_settings import get_analysis_prompt
from auditor.services.state_machine import advance_page, record_analysis, refresh_audit_status

logger = logging.getLogger(__name__)


def _record_failure(job: ClaimedJob, error: Exception) -> None:
    """Store the error on the page; fail the page if no attempts are left."""
    page_id = job.payload.page_id
    message = str(error) or type(error).__name__

    if job.is_final_attempt:
        if advance_page(page_id, PageStatus.FAILED, error_message=message):
            logger.warning(f"Page {page_id} failed after {job.attempts} attempts: {message}")
            refresh_audit_status(job.payload.audit_id)
        return

    AuditPage.objects.filter(pk=page_id).exclude(
        status__in=TERMINAL_PAGE_STATUSES
    ).update(error_message=message)


def process_crawl_page(
    job: ClaimedJob,
    fetcher: Optional[ContentFetcher] = None,
    queue: Optional[JobQueue] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Crawl one page and hand it on to analysis.

    pending -> crawling, wait rate_limit_ms, fetch, then store title and
    content and move to analyzing together with enqueuing the analyze job.

    Args:
        job: Claimed crawl_page job
        fetcher: Content fetcher (defaults to the configured reader client)
        queue: Queue for the follow-up analyze job
        sleep: Sleep function for the rate-limit delay
    """
    payload = job.payload
    fetcher = fetcher or get_content_fetcher()
    queue = queue or get_job_queue()

    if not advance_page(payload.page_id, PageStatus.CRAWLING):
        status = AuditPage.objects.filter(pk=payload.page_id).values_list("status", flat=True).first()
        if status is None:
            logger.warning(f"Page {payload.page_id} no longer exists, skipping crawl")
        else:
            logger.info(f"Page {payload.page_id} already {status}, skipping crawl")
        return

    try:
        delay_ms = max(0, payload.rate_limit_ms)
        if delay_ms:
            sleep(delay_ms / 1000)

        logger.info(f"Crawling: {payload.url}")
        fetched = async_to_sync(fetcher.fetch)(payload.url)

        with transaction.atomic():
            moved = advance_page(
                payload.page_id,
                PageStatus.ANALYZING,
                title=fetched.title,
                content=fetched.content,
                error_message=None,
            )
            if moved:
                queue.enqueue(
                    JobType.ANALYZE_PAGE,
                    AnalyzePagePayload(audit_id=payload.audit_id, page_id=payload.page_id),
                )

        logger.info(f"Crawled: {payload.url} ({len(fetched.content)} chars)")

    except Exception as e:
        logger.error(f"Crawl failed for {payload.url}: {e}")
        _record_failure(job, e)
        raise


def process_analyze_page(
    job: ClaimedJob,
    analyzer: Optional[ContentAnalyzer] = None,
) -> None:
    """
    Analyse one crawled page and complete it.

    Args:
        job: Claimed analyze_page job
        analyzer: Content analyzer (defaults to the configured AI provider)
    """
    payload = job.payload

    page = AuditPage.objects.filter(pk=payload.page_id).first()
    if page is None:
        logger.warning(f"Page {payload.page_id} no longer exists, skipping analysis")
        return
    if page.status in TERMINAL_PAGE_STATUSES:
        logger.info(f"Page {payload.page_id} already {page.status}, skipping analysis")
        return

    try:
        if not advance_page(payload.page_id, PageStatus.ANALYZING):
            raise ContentAnalysisError(
                f"Page {payload.page_id} is not ready for analysis (status: {page.status})"
            )
        if not page.content:
            raise ContentAnalysisError("Page has no content to analyze")

        analyzer = analyzer or get_content_analyzer()

        logger.info(f"Analyzing: {page.url}")
        result = async_to_sync(analyzer.analyze)(
            page.title or "", page.content, get_analysis_prompt()
        )

        if record_analysis(payload.page_id, result):
            refresh_audit_status(payload.audit_id)
            logger.info(f"Analyzed: {page.url} (score: {result.quality_score})")

    except Exception as e:
        logger.error(f"Analysis failed for page {payload.page_id}: {e}")
        _record_failure(job, e)
        raise


JOB_HANDLERS = {
    JobType.CRAWL_PAGE: process_crawl_page,
    JobType.ANALYZE_PAGE: process_analyze_page,
}


def dispatch_job(job: ClaimedJob) -> None:
    """
    Route a claimed job to its handler.

    Raises:
        ValueError: No handler for the job type
    """
    handler = JOB_HANDLERS.get(job.job_type)
    if handler is None:
        raise ValueError(f"No handler for job type: {job.job_type}")
    handler(job)
