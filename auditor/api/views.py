"""
REST API views for audits and settings.

Endpoints:
- Start, list, inspect and delete audits
- Paginated page results with issues
- CSV export
- Analysis prompt settings

Audits may be run anonymously. Authenticated callers see only their own
audits and cannot delete audits owned by someone else.
"""

import logging
from typing import Any, Dict, Optional

from django.core.exceptions import ValidationError
from django.db.models import Count
from django.http import HttpResponse
from drf_spectacular.utils import OpenApiParameter, extend_schema
from drf_spectacular.types import OpenApiTypes
from rest_framework import status
from rest_framework.decorators import api_view, throttle_classes
from rest_framework.response import Response

from auditor.api.throttling import AuditStartThrottle
from auditor.exceptions import (
    AuditNotFound,
    AuditValidationError,
    InvalidPromptError,
    SitemapParseError,
)
from auditor.models import Audit, AuditPage, IssueType
from auditor.services.csv_export import generate_csv_export
from auditor.services.orchestrator import delete_audit, start_audit
from auditor.services.prompt_settings import (
    DEFAULT_ANALYSIS_PROMPT,
    get_analysis_prompt_state,
    set_analysis_prompt,
)
from auditor.services.state_machine import get_audit_progress

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _get_user_id(request) -> Optional[str]:
    user = getattr(request, "user", None)
    if user is not None and user.is_authenticated:
        return str(user.pk)
    return None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _audit_to_dict(audit: Audit) -> Dict[str, Any]:
    return {
        "id": str(audit.id),
        "user_id": audit.user_id,
        "sitemap_url": audit.sitemap_url,
        "status": audit.status,
        "total_urls": audit.total_urls,
        "processed_urls": audit.processed_urls,
        "rate_limit_ms": audit.rate_limit_ms,
        "url_limit": audit.url_limit,
        "created_at": _iso(audit.created_at),
        "updated_at": _iso(audit.updated_at),
    }


def _page_to_dict(page: AuditPage) -> Dict[str, Any]:
    issues = list(page.issues.all())
    return {
        "id": str(page.id),
        "url": page.url,
        "status": page.status,
        "title": page.title,
        "quality_score": page.quality_score,
        "error_message": page.error_message,
        "created_at": _iso(page.created_at),
        "analyzed_at": _iso(page.analyzed_at),
        "issue_count": len(issues),
        "issues": [
            {
                "id": str(issue.id),
                "issue_type": issue.issue_type,
                "severity": issue.severity,
                "description": issue.description,
                "snippet": issue.snippet,
                "suggestion": issue.suggestion,
            }
            for issue in issues
        ],
    }


def _error(message: str, code: int) -> Response:
    return Response({"error": message}, status=code)


def _load_audit(audit_id) -> Optional[Audit]:
    try:
        return Audit.objects.filter(pk=audit_id).first()
    except (ValidationError, ValueError):
        return None


def _positive_int(raw, default: int, name: str) -> int:
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise AuditValidationError(f"{name} must be a positive integer")
    if value <= 0:
        raise AuditValidationError(f"{name} must be a positive integer")
    return value


# ============================================================
# Audit Endpoints
# ============================================================

@extend_schema(
    methods=["POST"],
    tags=["Audits"],
    summary="Start an audit",
    description="Resolve a sitemap and queue every page for crawling and analysis.",
    request={
        "application/json": {
            "type": "object",
            "properties": {
                "sitemap_url": {"type": "string", "format": "uri"},
                "rate_limit_ms": {"type": "integer", "default": 1000, "minimum": 0},
                "url_limit": {"type": "integer", "minimum": 1, "nullable": True},
            },
            "required": ["sitemap_url"],
        }
    },
    responses={
        201: {"description": "Audit started"},
        400: {"description": "Invalid input, or sitemap could not be used"},
    },
)
@extend_schema(
    methods=["GET"],
    tags=["Audits"],
    summary="List audits",
    description="Newest first. Authenticated callers see only their own audits.",
    responses={200: {"description": "Audit list"}},
)
@api_view(["GET", "POST"])
@throttle_classes([AuditStartThrottle])
def audits_collection(request):
    """
    List audits or start a new one.

    POST body:
    {
        "sitemap_url": "https://example.com/sitemap.xml",
        "rate_limit_ms": 1000,   // Optional: delay before each crawl
        "url_limit": 100         // Optional: only the first N URLs
    }
    """
    user_id = _get_user_id(request)

    if request.method == "GET":
        audits = Audit.objects.all().order_by("-created_at")
        if user_id:
            audits = audits.filter(user_id=user_id)
        return Response({"audits": [_audit_to_dict(audit) for audit in audits]})

    data = request.data if isinstance(request.data, dict) else {}
    rate_limit_ms = data.get("rate_limit_ms")
    if rate_limit_ms is None:
        rate_limit_ms = 1000

    try:
        audit_id = start_audit(
            data.get("sitemap_url"),
            user_id=user_id,
            rate_limit_ms=rate_limit_ms,
            url_limit=data.get("url_limit"),
        )
    except (AuditValidationError, SitemapParseError) as e:
        logger.warning(f"Rejected audit for {data.get('sitemap_url')}: {e}")
        return _error(str(e), status.HTTP_400_BAD_REQUEST)

    return Response({"id": audit_id, "message": "Audit started"}, status=status.HTTP_201_CREATED)


@extend_schema(
    methods=["GET"],
    tags=["Audits"],
    summary="Get audit progress",
    responses={200: {"description": "Audit with progress"}, 404: {"description": "Audit not found"}},
)
@extend_schema(
    methods=["DELETE"],
    tags=["Audits"],
    summary="Delete an audit",
    description="Deletes the audit with all its pages and issues.",
    responses={
        200: {"description": "Audit deleted"},
        403: {"description": "Audit belongs to another user"},
        404: {"description": "Audit not found"},
    },
)
@api_view(["GET", "DELETE"])
def audit_detail(request, audit_id):
    """Get an audit's progress, or delete it."""
    if request.method == "GET":
        try:
            snapshot = get_audit_progress(audit_id)
        except AuditNotFound:
            return _error("Audit not found", status.HTTP_404_NOT_FOUND)

        return Response(
            {
                "audit": _audit_to_dict(snapshot["audit"]),
                "progress": snapshot["progress"].to_dict(),
            }
        )

    audit = _load_audit(audit_id)
    if audit is None:
        return _error("Audit not found", status.HTTP_404_NOT_FOUND)

    user_id = _get_user_id(request)
    if user_id and audit.user_id != user_id:
        return _error("Unauthorized", status.HTTP_403_FORBIDDEN)

    try:
        delete_audit(audit.id)
    except AuditNotFound:
        return _error("Audit not found", status.HTTP_404_NOT_FOUND)

    return Response({"message": "Audit deleted"})


@extend_schema(
    tags=["Audits"],
    summary="List an audit's pages",
    parameters=[
        OpenApiParameter("page", OpenApiTypes.INT, description="Page number (1-based)"),
        OpenApiParameter("limit", OpenApiTypes.INT, description=f"Page size (max {MAX_PAGE_SIZE})"),
        OpenApiParameter("issue_type", OpenApiTypes.STR, enum=IssueType.values),
        OpenApiParameter("min_score", OpenApiTypes.INT, description="Minimum quality score"),
    ],
    responses={200: {"description": "Pages with issues"}, 404: {"description": "Audit not found"}},
)
@api_view(["GET"])
def audit_pages(request, audit_id):
    """
    Paginated pages of an audit, newest first, each with its issues.

    Filters: issue_type keeps pages with at least one issue of that type;
    min_score keeps analysed pages scoring at least that much.
    """
    audit = _load_audit(audit_id)
    if audit is None:
        return _error("Audit not found", status.HTTP_404_NOT_FOUND)

    params = request.query_params
    try:
        page_number = _positive_int(params.get("page"), 1, "page")
        limit = min(_positive_int(params.get("limit"), DEFAULT_PAGE_SIZE, "limit"), MAX_PAGE_SIZE)
    except AuditValidationError as e:
        return _error(str(e), status.HTTP_400_BAD_REQUEST)

    min_score = params.get("min_score")
    if min_score not in (None, ""):
        try:
            min_score = int(min_score)
        except ValueError:
            return _error("min_score must be an integer", status.HTTP_400_BAD_REQUEST)
    else:
        min_score = None

    issue_type = params.get("issue_type")
    if issue_type and issue_type not in IssueType.values:
        return _error(f"Unknown issue_type: {issue_type}", status.HTTP_400_BAD_REQUEST)

    pages = AuditPage.objects.filter(audit=audit)
    if issue_type:
        pages = pages.filter(issues__issue_type=issue_type).distinct()
    if min_score is not None:
        pages = pages.filter(quality_score__gte=min_score)

    total = pages.count()
    offset = (page_number - 1) * limit
    page_slice = (
        pages.order_by("-created_at")
        .prefetch_related("issues")[offset : offset + limit]
    )

    return Response(
        {
            "pages": [_page_to_dict(page) for page in page_slice],
            "pagination": {"page": page_number, "limit": limit, "total": total},
        }
    )


@extend_schema(
    tags=["Audits"],
    summary="Export audit as CSV",
    responses={(200, "text/csv"): OpenApiTypes.STR, 404: {"description": "Audit not found"}},
)
@api_view(["GET"])
def audit_export(request, audit_id):
    """Download an audit's results as a CSV attachment."""
    try:
        csv_text = generate_csv_export(audit_id)
    except AuditNotFound:
        return _error("Audit not found", status.HTTP_404_NOT_FOUND)

    response = HttpResponse(csv_text, content_type="text/csv")
    response["Content-Disposition"] = f'attachment; filename="audit-{audit_id}.csv"'
    return response


# ============================================================
# Settings Endpoints
# ============================================================

@extend_schema(
    methods=["GET"],
    tags=["Settings"],
    summary="Get the analysis prompt",
    responses={200: {"description": "Current prompt and whether it is the default"}},
)
@extend_schema(
    methods=["PUT"],
    tags=["Settings"],
    summary="Update the analysis prompt",
    request={
        "application/json": {
            "type": "object",
            "properties": {"prompt": {"type": "string", "minLength": 50}},
            "required": ["prompt"],
        }
    },
    responses={200: {"description": "Prompt updated"}, 400: {"description": "Prompt rejected"}},
)
@api_view(["GET", "PUT"])
def analysis_prompt(request):
    """Read or replace the prompt used for page analysis."""
    if request.method == "GET":
        prompt, is_default = get_analysis_prompt_state()
        return Response({"prompt": prompt, "is_default": is_default})

    data = request.data if isinstance(request.data, dict) else {}
    try:
        set_analysis_prompt(data.get("prompt"))
    except InvalidPromptError as e:
        return _error(str(e), status.HTTP_400_BAD_REQUEST)

    return Response({"message": "Prompt updated successfully"})


@extend_schema(
    tags=["Settings"],
    summary="Get the built-in default analysis prompt",
    responses={200: {"description": "Default prompt"}},
)
@api_view(["GET"])
def default_analysis_prompt(request):
    """Return the built-in prompt, e.g. to reset the editor."""
    return Response({"prompt": DEFAULT_ANALYSIS_PROMPT})
