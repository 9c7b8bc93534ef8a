"""
Django models for the Content Quality Auditor.

Models: Audit, AuditPage, AuditIssue, Job, SystemSetting

An Audit owns its pages and a page owns its issues (both cascade on delete).
Jobs reference audits and pages only through their payload and are never
deleted, so the queue doubles as an audit trail.
"""

import uuid
from django.db import models
from django.utils import timezone
from django.core.validators import MinValueValidator, MaxValueValidator


class AuditStatus(models.TextChoices):
    """Lifecycle of an audit run."""

    PENDING = "pending", "Pending"
    CRAWLING = "crawling", "Crawling"
    ANALYZING = "analyzing", "Analyzing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class PageStatus(models.TextChoices):
    """Lifecycle of a single page within an audit."""

    PENDING = "pending", "Pending"
    CRAWLING = "crawling", "Crawling"
    ANALYZING = "analyzing", "Analyzing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"

    @classmethod
    def rank(cls, status) -> int:
        """
        Position of a status along pending -> crawling -> analyzing -> completed.

        Failed is terminal and ranks after every other status.
        """
        return _PAGE_STATUS_ORDER.index(cls(status))


_PAGE_STATUS_ORDER = (
    PageStatus.PENDING,
    PageStatus.CRAWLING,
    PageStatus.ANALYZING,
    PageStatus.COMPLETED,
    PageStatus.FAILED,
)


class IssueType(models.TextChoices):
    """Categories of text quality problems."""

    GRAMMAR = "grammar", "Grammar/Spelling"
    REDUNDANCY = "redundancy", "Redundancy"
    CONTRADICTION = "contradiction", "Contradiction"
    PLACEHOLDER = "placeholder", "Placeholder"
    EMPTY = "empty", "Empty Content"


class Severity(models.TextChoices):
    """Severity of a detected issue."""

    LOW = "low", "Low"
    MEDIUM = "medium", "Medium"
    HIGH = "high", "High"


class JobType(models.TextChoices):
    """Kinds of queued work."""

    CRAWL_PAGE = "crawl_page", "Crawl Page"
    ANALYZE_PAGE = "analyze_page", "Analyze Page"


class JobStatus(models.TextChoices):
    """Status of a queued job."""

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


TERMINAL_PAGE_STATUSES = (PageStatus.COMPLETED, PageStatus.FAILED)
TERMINAL_AUDIT_STATUSES = (AuditStatus.COMPLETED, AuditStatus.FAILED)


class Audit(models.Model):
    """
    One end-to-end run over a sitemap.

    total_urls is fixed at creation (after url_limit truncation);
    processed_urls grows by one per successful page analysis.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=255, null=True, blank=True, db_index=True)
    sitemap_url = models.URLField(max_length=2000)

    status = models.CharField(
        max_length=20, choices=AuditStatus.choices, default=AuditStatus.PENDING
    )

    # Progress
    total_urls = models.IntegerField(default=0)
    processed_urls = models.IntegerField(default=0)

    # Crawl configuration
    rate_limit_ms = models.IntegerField(
        default=1000, help_text="Minimum delay before each crawl request (ms)"
    )
    url_limit = models.IntegerField(
        null=True,
        blank=True,
        help_text="Optional cap on the number of sitemap URLs. Empty means all URLs.",
    )

    # Metadata
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    def save(self, *args, **kwargs):
        self.updated_at = timezone.now()
        super().save(*args, **kwargs)

    class Meta:
        db_table = "audits"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="audits_status_idx"),
        ]

    def __str__(self):
        return f"Audit {self.id} - {self.sitemap_url} ({self.status})"

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_AUDIT_STATUSES


class AuditPage(models.Model):
    """
    One URL within an audit.

    Status only moves forward: pending -> crawling -> analyzing -> completed,
    with failed reachable from crawling or analyzing.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    audit = models.ForeignKey(Audit, on_delete=models.CASCADE, related_name="pages")
    url = models.URLField(max_length=2000)

    status = models.CharField(
        max_length=20, choices=PageStatus.choices, default=PageStatus.PENDING
    )

    # Crawl output
    title = models.TextField(null=True, blank=True)
    content = models.TextField(null=True, blank=True)

    # Analysis output
    quality_score = models.IntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    error_message = models.TextField(null=True, blank=True)

    # Timing
    created_at = models.DateTimeField(default=timezone.now)
    analyzed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "audit_pages"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["audit", "status"], name="audit_pages_audit_status_idx"),
            models.Index(fields=["status"], name="audit_pages_status_idx"),
        ]

    def __str__(self):
        return f"{self.url[:100]} ({self.status})"


class AuditIssue(models.Model):
    """A quality problem detected on a page. Immutable once created."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    page = models.ForeignKey(AuditPage, on_delete=models.CASCADE, related_name="issues")

    issue_type = models.CharField(max_length=20, choices=IssueType.choices)
    severity = models.CharField(max_length=10, choices=Severity.choices)
    description = models.TextField()
    snippet = models.TextField()
    suggestion = models.TextField(null=True, blank=True)

    class Meta:
        db_table = "audit_issues"
        indexes = [
            models.Index(fields=["page"], name="audit_issues_page_idx"),
            models.Index(fields=["issue_type"], name="audit_issues_type_idx"),
        ]

    def __str__(self):
        return f"{self.issue_type}/{self.severity}: {self.description[:50]}"


class Job(models.Model):
    """
    One unit of queued work.

    A job is claimable while pending (and unlocked), or while processing with
    an expired lock, which is how work held by a crashed worker is recovered.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    job_type = models.CharField(max_length=20, choices=JobType.choices)
    payload = models.JSONField(default=dict)

    status = models.CharField(
        max_length=20, choices=JobStatus.choices, default=JobStatus.PENDING
    )
    attempts = models.IntegerField(default=0)
    max_attempts = models.IntegerField(default=3)
    locked_until = models.DateTimeField(null=True, blank=True)

    # Timing
    created_at = models.DateTimeField(default=timezone.now)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "job_queue"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="job_queue_status_created_idx"),
            models.Index(fields=["locked_until"], name="job_queue_locked_until_idx"),
        ]

    def __str__(self):
        return f"Job {self.id} - {self.job_type} ({self.status}, attempt {self.attempts})"

    @property
    def is_final_attempt(self) -> bool:
        """True when a failure now would exhaust the retry budget."""
        return self.attempts >= self.max_attempts


class SystemSetting(models.Model):
    """Key/value settings editable at runtime (e.g. the analysis prompt)."""

    key = models.CharField(max_length=100, primary_key=True)
    value = models.TextField()
    updated_at = models.DateTimeField(default=timezone.now)

    def save(self, *args, **kwargs):
        self.updated_at = timezone.now()
        super().save(*args, **kwargs)

    class Meta:
        db_table = "system_settings"

    def __str__(self):
        return self.key
