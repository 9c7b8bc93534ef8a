"""
Django admin configuration for the Content Quality Auditor.

Audits and their pages are browsable with inline issues; the job queue is
read-only so operators can inspect retries and errors without editing
claim state by hand.
"""

from django.contrib import admin
from django.utils.html import format_html

from auditor.models import (
    Audit,
    AuditIssue,
    AuditPage,
    Job,
    JobStatus,
    SystemSetting,
)

STATUS_COLORS = {
    "pending": "#6c757d",
    "crawling": "#17a2b8",
    "analyzing": "#007bff",
    "processing": "#007bff",
    "completed": "#28a745",
    "failed": "#dc3545",
}


def _status_badge(status: str, label: str):
    color = STATUS_COLORS.get(status, "#6c757d")
    return format_html(
        '<span style="background-color: {}; color: white; padding: 2px 8px; '
        'border-radius: 3px;">{}</span>',
        color,
        label,
    )


class AuditIssueInline(admin.TabularInline):
    model = AuditIssue
    extra = 0
    fields = ["issue_type", "severity", "description", "snippet", "suggestion"]
    readonly_fields = fields
    can_delete = False


@admin.register(Audit)
class AuditAdmin(admin.ModelAdmin):
    """Admin interface for audits."""

    list_display = [
        "id_short",
        "sitemap_url",
        "status_badge",
        "progress_display",
        "rate_limit_ms",
        "user_id",
        "created_at",
    ]
    list_filter = ["status", ("created_at", admin.DateFieldListFilter)]
    search_fields = ["sitemap_url", "user_id", "id"]
    readonly_fields = ["id", "total_urls", "processed_urls", "created_at", "updated_at"]
    ordering = ["-created_at"]

    @admin.display(description="ID")
    def id_short(self, obj):
        return str(obj.id)[:8]

    @admin.display(description="Status", ordering="status")
    def status_badge(self, obj):
        return _status_badge(obj.status, obj.get_status_display())

    @admin.display(description="Progress")
    def progress_display(self, obj):
        return f"{obj.processed_urls}/{obj.total_urls}"


@admin.register(AuditPage)
class AuditPageAdmin(admin.ModelAdmin):
    """Admin interface for audit pages with their issues inline."""

    list_display = ["url", "audit", "status_badge", "quality_score", "analyzed_at"]
    list_filter = ["status"]
    search_fields = ["url", "title", "audit__id"]
    readonly_fields = ["id", "audit", "created_at", "analyzed_at"]
    inlines = [AuditIssueInline]

    @admin.display(description="Status", ordering="status")
    def status_badge(self, obj):
        return _status_badge(obj.status, obj.get_status_display())


@admin.register(AuditIssue)
class AuditIssueAdmin(admin.ModelAdmin):
    list_display = ["issue_type", "severity", "description_short", "page"]
    list_filter = ["issue_type", "severity"]
    search_fields = ["description", "snippet", "page__url"]

    @admin.display(description="Description")
    def description_short(self, obj):
        return obj.description[:80]


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    """
    Read-only view of the job queue.

    The "Retry failed jobs" action resets attempts and returns failed jobs
    to pending.
    """

    list_display = [
        "id_short",
        "job_type",
        "status_badge",
        "attempts_display",
        "locked_until",
        "created_at",
        "processed_at",
    ]
    list_filter = ["job_type", "status"]
    search_fields = ["id"]
    readonly_fields = [
        "id",
        "job_type",
        "payload",
        "status",
        "attempts",
        "max_attempts",
        "locked_until",
        "created_at",
        "processed_at",
    ]
    actions = ["retry_failed_jobs"]

    def has_add_permission(self, request):
        return False

    @admin.display(description="ID")
    def id_short(self, obj):
        return str(obj.id)[:8]

    @admin.display(description="Status", ordering="status")
    def status_badge(self, obj):
        return _status_badge(obj.status, obj.get_status_display())

    @admin.display(description="Attempts")
    def attempts_display(self, obj):
        return f"{obj.attempts}/{obj.max_attempts}"

    @admin.action(description="Retry failed jobs")
    def retry_failed_jobs(self, request, queryset):
        updated = queryset.filter(status=JobStatus.FAILED).update(
            status=JobStatus.PENDING,
            attempts=0,
            locked_until=None,
            processed_at=None,
        )
        self.message_user(request, f"Re-queued {updated} failed jobs.")


@admin.register(SystemSetting)
class SystemSettingAdmin(admin.ModelAdmin):
    list_display = ["key", "updated_at"]
    search_fields = ["key"]
    readonly_fields = ["updated_at"]
