"""
API URL configuration.

Endpoints (mounted under /api/v1/):
- GET|POST   /audits/                    - List audits / start an audit
- GET|DELETE /audits/<id>/               - Audit progress / delete audit
- GET        /audits/<id>/pages/         - Paginated pages with issues
- GET        /audits/<id>/export/        - CSV export
- GET|PUT    /settings/prompt/           - Analysis prompt
- GET        /settings/prompt/default/   - Built-in analysis prompt
"""

from django.urls import path

from auditor.api.views import (
    analysis_prompt,
    audit_detail,
    audit_export,
    audit_pages,
    audits_collection,
    default_analysis_prompt,
)

app_name = "auditor_api"

urlpatterns = [
    # Audit endpoints
    path("audits/", audits_collection, name="audits"),
    path("audits/<str:audit_id>/", audit_detail, name="audit_detail"),
    path("audits/<str:audit_id>/pages/", audit_pages, name="audit_pages"),
    path("audits/<str:audit_id>/export/", audit_export, name="audit_export"),

    # Settings endpoints
    path("settings/prompt/", analysis_prompt, name="analysis_prompt"),
    path("settings/prompt/default/", default_analysis_prompt, name="default_analysis_prompt"),
]
