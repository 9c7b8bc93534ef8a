"""
Initial schema: audits, audit_pages, audit_issues, job_queue, system_settings.
"""

import uuid
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


STATUS_CHOICES = [
    ("pending", "Pending"),
    ("crawling", "Crawling"),
    ("analyzing", "Analyzing"),
    ("completed", "Completed"),
    ("failed", "Failed"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Audit",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "user_id",
                    models.CharField(blank=True, db_index=True, max_length=255, null=True),
                ),
                ("sitemap_url", models.URLField(max_length=2000)),
                (
                    "status",
                    models.CharField(choices=STATUS_CHOICES, default="pending", max_length=20),
                ),
                ("total_urls", models.IntegerField(default=0)),
                ("processed_urls", models.IntegerField(default=0)),
                (
                    "rate_limit_ms",
                    models.IntegerField(
                        default=1000,
                        help_text="Minimum delay before each crawl request (ms)",
                    ),
                ),
                (
                    "url_limit",
                    models.IntegerField(
                        blank=True,
                        help_text="Optional cap on the number of sitemap URLs. Empty means all URLs.",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "audits",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status"], name="audits_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditPage",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("url", models.URLField(max_length=2000)),
                (
                    "status",
                    models.CharField(choices=STATUS_CHOICES, default="pending", max_length=20),
                ),
                ("title", models.TextField(blank=True, null=True)),
                ("content", models.TextField(blank=True, null=True)),
                (
                    "quality_score",
                    models.IntegerField(
                        blank=True,
                        null=True,
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                ("error_message", models.TextField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("analyzed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "audit",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="pages",
                        to="auditor.audit",
                    ),
                ),
            ],
            options={
                "db_table": "audit_pages",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["audit", "status"], name="audit_pages_audit_status_idx"),
                    models.Index(fields=["status"], name="audit_pages_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditIssue",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "issue_type",
                    models.CharField(
                        choices=[
                            ("grammar", "Grammar/Spelling"),
                            ("redundancy", "Redundancy"),
                            ("contradiction", "Contradiction"),
                            ("placeholder", "Placeholder"),
                            ("empty", "Empty Content"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "severity",
                    models.CharField(
                        choices=[("low", "Low"), ("medium", "Medium"), ("high", "High")],
                        max_length=10,
                    ),
                ),
                ("description", models.TextField()),
                ("snippet", models.TextField()),
                ("suggestion", models.TextField(blank=True, null=True)),
                (
                    "page",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="issues",
                        to="auditor.auditpage",
                    ),
                ),
            ],
            options={
                "db_table": "audit_issues",
                "indexes": [
                    models.Index(fields=["page"], name="audit_issues_page_idx"),
                    models.Index(fields=["issue_type"], name="audit_issues_type_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Job",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "job_type",
                    models.CharField(
                        choices=[
                            ("crawl_page", "Crawl Page"),
                            ("analyze_page", "Analyze Page"),
                        ],
                        max_length=20,
                    ),
                ),
                ("payload", models.JSONField(default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("attempts", models.IntegerField(default=0)),
                ("max_attempts", models.IntegerField(default=3)),
                ("locked_until", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "db_table": "job_queue",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="job_queue_status_created_idx"),
                    models.Index(fields=["locked_until"], name="job_queue_locked_until_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SystemSetting",
            fields=[
                ("key", models.CharField(max_length=100, primary_key=True, serialize=False)),
                ("value", models.TextField()),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "system_settings",
            },
        ),
    ]
