"""
Audit State Machine - page transitions, audit status and progress.

Page status is monotonic: pending -> crawling -> analyzing -> completed,
with failed reachable from crawling or analyzing. Every transition is a
conditional UPDATE from the allowed predecessor states, so a late or
repeated handler can never move a page backwards.

Audit status is derived from its pages after every terminal page
transition:
- every page completed or failed -> completed (partial failure still counts)
- some page analyzing and none crawling -> analyzing
- otherwise unchanged

Completed and failed audits are never modified again.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Count, F
from django.utils import timezone

from auditor.exceptions import AuditNotFound
from auditor.models import (
    Audit,
    AuditIssue,
    AuditPage,
    AuditStatus,
    PageStatus,
    TERMINAL_AUDIT_STATUSES,
    TERMINAL_PAGE_STATUSES,
)

logger = logging.getLogger(__name__)


# Predecessor states each target status may be entered from
ALLOWED_PREDECESSORS = {
    PageStatus.CRAWLING: (PageStatus.PENDING, PageStatus.CRAWLING),
    PageStatus.ANALYZING: (PageStatus.CRAWLING, PageStatus.ANALYZING),
    PageStatus.COMPLETED: (PageStatus.ANALYZING,),
    PageStatus.FAILED: (PageStatus.CRAWLING, PageStatus.ANALYZING),
}


@dataclass
class AuditProgress:
    """Derived progress figures; never stored."""

    total: int
    completed: int
    failed: int
    crawling: int
    analyzing: int
    pending: int
    crawled: int
    percentage: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def advance_page(page_id, to_status: str, **fields) -> bool:
    """
    Move a page to to_status if its current status allows it.

    Args:
        page_id: AuditPage id
        to_status: Target PageStatus (not pending)
        **fields: Other AuditPage columns to write in the same UPDATE

    Returns:
        True if the page was updated, False if it is missing or already
        past the target stage
    """
    to_status = PageStatus(to_status)
    if to_status not in ALLOWED_PREDECESSORS:
        raise ValueError(f"Pages cannot be moved to {to_status}")

    updated = AuditPage.objects.filter(
        pk=page_id, status__in=ALLOWED_PREDECESSORS[to_status]
    ).update(status=to_status, **fields)

    if not updated:
        current = AuditPage.objects.filter(pk=page_id).values_list("status", flat=True).first()
        if current is None:
            logger.debug(f"Page {page_id} not moved to {to_status}: page no longer exists")
        elif (
            current in TERMINAL_PAGE_STATUSES
            or PageStatus.rank(current) >= PageStatus.rank(to_status)
        ):
            logger.debug(f"Page {page_id} already {current}, not moved to {to_status}")
        else:
            # Skipping a stage means a handler ran out of order
            logger.warning(f"Page {page_id} cannot move from {current} to {to_status}")
    return bool(updated)


def page_status_counts(audit_id) -> Dict[str, int]:
    """Count an audit's pages by status (every PageStatus present)."""
    counts = {status.value: 0 for status in PageStatus}
    rows = (
        AuditPage.objects.filter(audit_id=audit_id)
        .order_by()
        .values("status")
        .annotate(count=Count("id"))
    )
    for row in rows:
        counts[row["status"]] = row["count"]
    return counts


def next_audit_status(current: str, counts: Mapping[str, int]) -> str:
    """Aggregate policy: the status an audit should have given its page counts."""
    if current in TERMINAL_AUDIT_STATUSES:
        return current

    total = sum(counts.values())
    finished = counts.get(PageStatus.COMPLETED, 0) + counts.get(PageStatus.FAILED, 0)

    if total > 0 and finished == total:
        return AuditStatus.COMPLETED
    if counts.get(PageStatus.ANALYZING, 0) > 0 and counts.get(PageStatus.CRAWLING, 0) == 0:
        return AuditStatus.ANALYZING
    return current


def refresh_audit_status(audit_id) -> Optional[str]:
    """
    Recompute an audit's status from its pages and persist any change.

    Args:
        audit_id: Audit id

    Returns:
        The audit's status after the refresh, or None if it no longer exists
    """
    with transaction.atomic():
        audit = Audit.objects.select_for_update().filter(pk=audit_id).first()
        if audit is None:
            return None

        new_status = next_audit_status(audit.status, page_status_counts(audit_id))
        if new_status != audit.status:
            Audit.objects.filter(pk=audit_id, status=audit.status).update(
                status=new_status, updated_at=timezone.now()
            )
            logger.info(f"Audit {audit_id}: {audit.status} -> {new_status}")
            if new_status == AuditStatus.COMPLETED:
                logger.info(f"Audit {audit_id} completed")

    return new_status


def compute_progress(counts: Mapping[str, int], total: int) -> AuditProgress:
    """
    Derive progress figures from page counts.

    crawled counts every page past pending. The percentage weighs crawl and
    analysis completion equally.

    Args:
        counts: Page counts keyed by PageStatus value
        total: Audit's total_urls

    Returns:
        AuditProgress
    """
    pending = counts.get(PageStatus.PENDING, 0)
    completed = counts.get(PageStatus.COMPLETED, 0)
    crawled = total - pending

    if total > 0:
        percentage = round((crawled / total * 0.5 + completed / total * 0.5) * 100)
    else:
        percentage = 0

    return AuditProgress(
        total=total,
        completed=completed,
        failed=counts.get(PageStatus.FAILED, 0),
        crawling=counts.get(PageStatus.CRAWLING, 0),
        analyzing=counts.get(PageStatus.ANALYZING, 0),
        pending=pending,
        crawled=crawled,
        percentage=percentage,
    )


def get_audit_progress(audit_id) -> Dict[str, Any]:
    """
    Load an audit with its current progress.

    Args:
        audit_id: Audit id

    Returns:
        {"audit": Audit, "progress": AuditProgress}

    Raises:
        AuditNotFound: Unknown audit id
    """
    try:
        audit = Audit.objects.get(pk=audit_id)
    except (Audit.DoesNotExist, ValidationError, ValueError):
        raise AuditNotFound(f"Audit not found: {audit_id}")

    progress = compute_progress(page_status_counts(audit.pk), audit.total_urls)
    return {"audit": audit, "progress": progress}


def record_analysis(page_id, result) -> bool:
    """
    Persist an analysis result and complete the page.

    Issues, score, analyzed_at and the completed status are written in one
    transaction, and the audit's processed_urls is incremented with F().
    Nothing is written if the page is no longer analyzing.

    Args:
        page_id: AuditPage id
        result: AnalysisResult

    Returns:
        True if the page was completed by this call
    """
    with transaction.atomic():
        page = (
            AuditPage.objects.select_for_update()
            .filter(pk=page_id, status=PageStatus.ANALYZING)
            .first()
        )
        if page is None:
            logger.warning(f"Page {page_id} is not analyzing, analysis result dropped")
            return False

        AuditIssue.objects.bulk_create(
            [
                AuditIssue(
                    page=page,
                    issue_type=issue.issue_type,
                    severity=issue.severity,
                    description=issue.description,
                    snippet=issue.snippet,
                    suggestion=issue.suggestion,
                )
                for issue in result.issues
            ]
        )

        advance_page(
            page_id,
            PageStatus.COMPLETED,
            quality_score=result.quality_score,
            analyzed_at=timezone.now(),
        )
        Audit.objects.filter(pk=page.audit_id).update(
            processed_urls=F("processed_urls") + 1
        )

    return True
