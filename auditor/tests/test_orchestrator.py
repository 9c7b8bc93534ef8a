"""
Tests for starting, deleting and reconciling audits.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from auditor.exceptions import AuditNotFound, AuditValidationError, EmptySitemapError, SitemapParseError
from auditor.models import (
    Audit,
    AuditIssue,
    AuditPage,
    AuditStatus,
    Job,
    JobStatus,
    JobType,
    PageStatus,
)
from auditor.queue import CrawlPagePayload, JobQueue
from auditor.services.orchestrator import (
    delete_audit,
    fail_stranded_pages,
    reconcile_orphan_pages,
    start_audit,
    validate_audit_request,
)


class FakeResolver:
    def __init__(self, urls=None, error=None):
        self.urls = urls or []
        self.error = error
        self.calls = []

    async def resolve(self, url):
        self.calls.append(url)
        if self.error:
            raise self.error
        return list(self.urls)


def sitemap_urls(count):
    return [f"https://example.com/page-{n}" for n in range(count)]


class TestValidateAuditRequest:
    """Tests for input validation."""

    @pytest.mark.parametrize(
        "sitemap_url,rate_limit_ms,url_limit,message",
        [
            (None, 1000, None, "sitemap_url is required"),
            ("   ", 1000, None, "sitemap_url is required"),
            ("not a url", 1000, None, "Invalid sitemap URL format"),
            ("ftp://example.com/sitemap.xml", 1000, None, "Invalid sitemap URL format"),
            ("https://example.com/sitemap.xml", "fast", None, "rate_limit_ms must be an integer"),
            ("https://example.com/sitemap.xml", -1, None, "rate_limit_ms must not be negative"),
            ("https://example.com/sitemap.xml", 1000, 0, "url_limit must be a positive number"),
            ("https://example.com/sitemap.xml", 1000, "10", "url_limit must be a positive number"),
        ],
    )
    def test_rejects_invalid_input(self, sitemap_url, rate_limit_ms, url_limit, message):
        with pytest.raises(AuditValidationError, match=message):
            validate_audit_request(sitemap_url, rate_limit_ms, url_limit)

    def test_accepts_valid_input(self):
        validate_audit_request("https://example.com/sitemap.xml", 0, None)
        validate_audit_request("http://example.com/sitemap.xml", 2500, 5)


@pytest.mark.django_db
class TestStartAudit:
    """Tests for start_audit()."""

    def test_seeds_audit_pages_and_jobs(self):
        resolver = FakeResolver(sitemap_urls(3))

        audit_id = start_audit(
            "https://example.com/sitemap.xml",
            user_id="user-1",
            rate_limit_ms=500,
            resolver=resolver,
            queue=JobQueue(),
        )

        audit = Audit.objects.get(pk=audit_id)
        assert audit.status == AuditStatus.CRAWLING
        assert audit.total_urls == 3
        assert audit.processed_urls == 0
        assert audit.user_id == "user-1"
        assert audit.rate_limit_ms == 500
        assert resolver.calls == ["https://example.com/sitemap.xml"]

        pages = list(AuditPage.objects.filter(audit=audit).order_by("created_at"))
        assert [page.url for page in pages] == sitemap_urls(3)
        assert {page.status for page in pages} == {PageStatus.PENDING}

        jobs = list(Job.objects.filter(job_type=JobType.CRAWL_PAGE).order_by("created_at"))
        assert [job.payload for job in jobs] == [
            CrawlPagePayload(
                audit_id=audit_id,
                page_id=str(page.id),
                url=page.url,
                rate_limit_ms=500,
            ).to_dict()
            for page in pages
        ]
        assert {job.status for job in jobs} == {JobStatus.PENDING}

    def test_url_limit_keeps_first_urls_in_order(self):
        """100 sitemap URLs with url_limit=10 gives exactly the first 10 pages."""
        audit_id = start_audit(
            "https://example.com/sitemap.xml",
            url_limit=10,
            resolver=FakeResolver(sitemap_urls(100)),
            queue=JobQueue(),
        )

        audit = Audit.objects.get(pk=audit_id)
        assert audit.total_urls == 10
        assert audit.url_limit == 10
        urls = list(
            AuditPage.objects.filter(audit=audit).order_by("created_at").values_list("url", flat=True)
        )
        assert urls == sitemap_urls(10)
        assert Job.objects.count() == 10

    def test_url_limit_larger_than_sitemap(self):
        audit_id = start_audit(
            "https://example.com/sitemap.xml",
            url_limit=50,
            resolver=FakeResolver(sitemap_urls(4)),
            queue=JobQueue(),
        )

        assert Audit.objects.get(pk=audit_id).total_urls == 4

    def test_invalid_input_never_resolves_sitemap(self):
        resolver = FakeResolver(sitemap_urls(3))

        with pytest.raises(AuditValidationError):
            start_audit("not a url", resolver=resolver, queue=JobQueue())

        assert resolver.calls == []
        assert Audit.objects.count() == 0

    def test_empty_sitemap_is_a_validation_error(self):
        resolver = FakeResolver(error=EmptySitemapError("No URLs found in sitemap: x"))

        with pytest.raises(AuditValidationError, match="No URLs found in sitemap"):
            start_audit("https://example.com/sitemap.xml", resolver=resolver, queue=JobQueue())

        assert Audit.objects.count() == 0

    def test_unreachable_sitemap_propagates(self):
        resolver = FakeResolver(error=SitemapParseError("HTTP 404 Not Found"))

        with pytest.raises(SitemapParseError):
            start_audit("https://example.com/sitemap.xml", resolver=resolver, queue=JobQueue())

        assert Audit.objects.count() == 0

    def test_enqueue_failure_rolls_back_seeding(self):
        """Pages are never left without crawl jobs."""

        class BrokenQueue(JobQueue):
            def enqueue_many(self, job_type, payloads):
                raise RuntimeError("job store unavailable")

        with pytest.raises(RuntimeError):
            start_audit(
                "https://example.com/sitemap.xml",
                resolver=FakeResolver(sitemap_urls(3)),
                queue=BrokenQueue(),
            )

        assert Audit.objects.count() == 0
        assert AuditPage.objects.count() == 0


@pytest.mark.django_db
class TestDeleteAudit:
    """Tests for delete_audit()."""

    def test_cascades_to_pages_and_issues(self, audit, make_page):
        page = make_page(audit, status=PageStatus.COMPLETED)
        AuditIssue.objects.create(
            page=page, issue_type="grammar", severity="low", description="d", snippet="s"
        )

        delete_audit(audit.id)

        assert not Audit.objects.filter(pk=audit.id).exists()
        assert AuditPage.objects.count() == 0
        assert AuditIssue.objects.count() == 0

    def test_unknown_audit(self, db):
        with pytest.raises(AuditNotFound):
            delete_audit("00000000-0000-0000-0000-000000000000")

    def test_malformed_id(self, db):
        with pytest.raises(AuditNotFound):
            delete_audit("not-a-uuid")


def age_audit(audit, minutes=30):
    Audit.objects.filter(pk=audit.pk).update(created_at=timezone.now() - timedelta(minutes=minutes))


@pytest.mark.django_db
class TestReconcileOrphanPages:
    """Tests for re-enqueuing pending pages that lost their crawl job."""

    def test_requeues_orphan_pending_page(self, audit, make_page):
        page = make_page(audit)
        age_audit(audit)

        assert reconcile_orphan_pages(grace=timedelta(minutes=10), queue=JobQueue()) == 1

        job = Job.objects.get()
        assert job.job_type == JobType.CRAWL_PAGE
        assert job.payload["page_id"] == str(page.id)
        assert job.payload["rate_limit_ms"] == audit.rate_limit_ms

    def test_ignores_pages_with_live_job(self, audit, make_page):
        page = make_page(audit)
        age_audit(audit)
        JobQueue().enqueue(
            JobType.CRAWL_PAGE,
            CrawlPagePayload(audit_id=str(audit.id), page_id=str(page.id), url=page.url),
        )

        assert reconcile_orphan_pages(grace=timedelta(minutes=10), queue=JobQueue()) == 0
        assert Job.objects.count() == 1

    def test_ignores_recent_audits(self, audit, make_page):
        make_page(audit)

        assert reconcile_orphan_pages(grace=timedelta(minutes=10), queue=JobQueue()) == 0

    def test_ignores_finished_audits(self, audit, make_page):
        make_page(audit)
        audit.status = AuditStatus.FAILED
        audit.save()
        age_audit(audit)

        assert reconcile_orphan_pages(grace=timedelta(minutes=10), queue=JobQueue()) == 0

    def test_second_sweep_is_a_no_op(self, audit, make_page):
        make_page(audit)
        age_audit(audit)

        reconcile_orphan_pages(grace=timedelta(minutes=10), queue=JobQueue())

        assert reconcile_orphan_pages(grace=timedelta(minutes=10), queue=JobQueue()) == 0


@pytest.mark.django_db
class TestFailStrandedPages:
    """Tests for failing pages whose jobs are exhausted."""

    def test_fails_stranded_page_and_completes_audit(self, audit, make_page):
        page = make_page(audit, status=PageStatus.CRAWLING)
        make_page(audit, url="https://example.com/done", status=PageStatus.COMPLETED)
        age_audit(audit)

        assert fail_stranded_pages(grace=timedelta(minutes=10)) == 1

        page.refresh_from_db()
        audit.refresh_from_db()
        assert page.status == PageStatus.FAILED
        assert page.error_message == "Job attempts exhausted"
        assert audit.status == AuditStatus.COMPLETED

    def test_keeps_last_error_message(self, audit, make_page):
        page = make_page(audit, status=PageStatus.ANALYZING, error_message="OpenAI API error (429)")
        age_audit(audit)

        fail_stranded_pages(grace=timedelta(minutes=10))

        page.refresh_from_db()
        assert page.error_message == "OpenAI API error (429)"

    def test_ignores_pages_with_live_job(self, audit, make_page):
        page = make_page(audit, status=PageStatus.ANALYZING)
        age_audit(audit)
        JobQueue().enqueue(JobType.ANALYZE_PAGE, {"audit_id": str(audit.id), "page_id": str(page.id)})

        assert fail_stranded_pages(grace=timedelta(minutes=10)) == 0

    def test_ignores_pending_pages(self, audit, make_page):
        make_page(audit)
        age_audit(audit)

        assert fail_stranded_pages(grace=timedelta(minutes=10)) == 0
