"""
CSV export of an audit's pages and issues.

One row per page in creation (sitemap) order. Quoting follows the csv
module's standard rules, so snippets with commas or quotes survive a
round trip through any CSV reader.
"""

import csv
import io
import logging
from collections import Counter

from django.core.exceptions import ValidationError

from auditor.exceptions import AuditNotFound
from auditor.models import Audit, AuditPage, PageStatus

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "url",
    "quality_score",
    "issue_count",
    "issues_summary",
    "flagged_snippets",
    "suggestions",
]

LIST_SEPARATOR = " | "


def _issues_summary(issues) -> str:
    """'grammar: 2, placeholder: 1' in order of first appearance."""
    counts = Counter(issue.issue_type for issue in issues)
    return ", ".join(f"{issue_type}: {count}" for issue_type, count in counts.items())


def page_row(page: AuditPage) -> list:
    """CSV row for one page (issues must be prefetched or loadable)."""
    issues = list(page.issues.all())

    if page.status == PageStatus.FAILED or page.quality_score is None:
        score = ""
    else:
        score = page.quality_score

    return [
        page.url,
        score,
        len(issues),
        _issues_summary(issues),
        LIST_SEPARATOR.join(issue.snippet for issue in issues),
        LIST_SEPARATOR.join(issue.suggestion for issue in issues if issue.suggestion),
    ]


def generate_csv_export(audit_id) -> str:
    """
    Render an audit as CSV text.

    Args:
        audit_id: Audit id

    Returns:
        CSV with header url,quality_score,issue_count,issues_summary,
        flagged_snippets,suggestions and "\\n" line endings

    Raises:
        AuditNotFound: Unknown audit id
    """
    try:
        exists = Audit.objects.filter(pk=audit_id).exists()
    except (ValidationError, ValueError):
        exists = False
    if not exists:
        raise AuditNotFound(f"Audit not found: {audit_id}")

    pages = (
        AuditPage.objects.filter(audit_id=audit_id)
        .order_by("created_at", "id")
        .prefetch_related("issues")
    )

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)

    rows = 0
    for page in pages:
        writer.writerow(page_row(page))
        rows += 1

    logger.debug(f"Exported {rows} pages for audit {audit_id}")
    return buffer.getvalue()
