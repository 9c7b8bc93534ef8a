"""
Tests for the crawl_page and analyze_page job handlers.

External collaborators are replaced by small async fakes; the database,
job queue and state machine are real.
"""

import pytest
from django.utils import timezone

from auditor.exceptions import ContentAnalysisError, ContentFetchError
from auditor.models import AuditStatus, Job, JobType, PageStatus
from auditor.queue import AnalyzePagePayload, ClaimedJob, CrawlPagePayload, JobQueue
from auditor.services.content_analyzer import AnalysisIssue, AnalysisResult
from auditor.services.content_fetcher import FetchedContent
from auditor.services.handlers import dispatch_job, process_analyze_page, process_crawl_page
from auditor.services.prompt_settings import DEFAULT_ANALYSIS_PROMPT, set_analysis_prompt


class FakeFetcher:
    def __init__(self, result=None, error=None):
        self.result = result or FetchedContent(title="Home", content="Willkommen auf der Seite.")
        self.error = error
        self.calls = []

    async def fetch(self, url):
        self.calls.append(url)
        if self.error:
            raise self.error
        return self.result


class FakeAnalyzer:
    def __init__(self, result=None, error=None):
        self.result = result or AnalysisResult(
            quality_score=85,
            issues=[AnalysisIssue("grammar", "medium", "Tippfehler", "Seitte", "Seite")],
        )
        self.error = error
        self.calls = []

    async def analyze(self, title, content, prompt=None):
        self.calls.append((title, content, prompt))
        if self.error:
            raise self.error
        return self.result


def crawl_job(page, attempts=1, max_attempts=3, rate_limit_ms=0):
    return ClaimedJob(
        id="job-crawl",
        job_type=JobType.CRAWL_PAGE,
        payload=CrawlPagePayload(
            audit_id=str(page.audit_id),
            page_id=str(page.id),
            url=page.url,
            rate_limit_ms=rate_limit_ms,
        ),
        attempts=attempts,
        max_attempts=max_attempts,
        locked_until=timezone.now(),
    )


def analyze_job(page, attempts=1, max_attempts=3):
    return ClaimedJob(
        id="job-analyze",
        job_type=JobType.ANALYZE_PAGE,
        payload=AnalyzePagePayload(audit_id=str(page.audit_id), page_id=str(page.id)),
        attempts=attempts,
        max_attempts=max_attempts,
        locked_until=timezone.now(),
    )


@pytest.mark.django_db
class TestProcessCrawlPage:
    """Tests for the crawl handler."""

    def test_crawl_moves_page_to_analyzing_and_enqueues_analysis(self, audit, make_page):
        page = make_page(audit)
        sleeps = []

        process_crawl_page(
            crawl_job(page, rate_limit_ms=1500),
            fetcher=FakeFetcher(),
            queue=JobQueue(),
            sleep=sleeps.append,
        )

        page.refresh_from_db()
        assert page.status == PageStatus.ANALYZING
        assert page.title == "Home"
        assert page.content == "Willkommen auf der Seite."
        assert sleeps == [1.5]

        job = Job.objects.get(job_type=JobType.ANALYZE_PAGE)
        assert job.payload == {"audit_id": str(audit.id), "page_id": str(page.id)}

    def test_zero_rate_limit_does_not_sleep(self, audit, make_page):
        page = make_page(audit)
        sleeps = []

        process_crawl_page(crawl_job(page), fetcher=FakeFetcher(), queue=JobQueue(), sleep=sleeps.append)

        assert sleeps == []

    def test_retry_clears_previous_error(self, audit, make_page):
        page = make_page(audit, status=PageStatus.CRAWLING, error_message="timeout")

        process_crawl_page(crawl_job(page, attempts=2), fetcher=FakeFetcher(), queue=JobQueue())

        page.refresh_from_db()
        assert page.status == PageStatus.ANALYZING
        assert page.error_message is None

    def test_failure_with_attempts_left_keeps_page_crawling(self, audit, make_page):
        page = make_page(audit)
        fetcher = FakeFetcher(error=ContentFetchError("reader error (502)"))

        with pytest.raises(ContentFetchError):
            process_crawl_page(crawl_job(page, attempts=1), fetcher=fetcher, queue=JobQueue())

        page.refresh_from_db()
        audit.refresh_from_db()
        assert page.status == PageStatus.CRAWLING
        assert page.error_message == "reader error (502)"
        assert audit.status == AuditStatus.CRAWLING
        assert not Job.objects.filter(job_type=JobType.ANALYZE_PAGE).exists()

    def test_failure_on_final_attempt_fails_page_and_completes_audit(self, audit, make_page):
        page = make_page(audit, status=PageStatus.CRAWLING)
        fetcher = FakeFetcher(error=ContentFetchError("no content extracted from page"))

        with pytest.raises(ContentFetchError):
            process_crawl_page(crawl_job(page, attempts=3), fetcher=fetcher, queue=JobQueue())

        page.refresh_from_db()
        audit.refresh_from_db()
        assert page.status == PageStatus.FAILED
        assert page.error_message == "no content extracted from page"
        assert audit.status == AuditStatus.COMPLETED

    def test_skips_page_already_past_crawling(self, audit, make_page):
        """A duplicate crawl job never pulls an analyzing page back."""
        page = make_page(audit, status=PageStatus.ANALYZING, content="Text")
        fetcher = FakeFetcher()

        process_crawl_page(crawl_job(page), fetcher=fetcher, queue=JobQueue())

        page.refresh_from_db()
        assert page.status == PageStatus.ANALYZING
        assert fetcher.calls == []

    def test_skips_deleted_page(self, audit, make_page):
        page = make_page(audit)
        job = crawl_job(page)
        page.delete()
        fetcher = FakeFetcher()

        process_crawl_page(job, fetcher=fetcher, queue=JobQueue())

        assert fetcher.calls == []


@pytest.mark.django_db
class TestProcessAnalyzePage:
    """Tests for the analysis handler."""

    def test_analysis_completes_page_and_audit(self, audit, make_page):
        page = make_page(audit, status=PageStatus.ANALYZING, title="Home", content="Seitte Text")
        analyzer = FakeAnalyzer()

        process_analyze_page(analyze_job(page), analyzer=analyzer)

        page.refresh_from_db()
        audit.refresh_from_db()
        assert page.status == PageStatus.COMPLETED
        assert page.quality_score == 85
        assert page.issues.count() == 1
        assert audit.processed_urls == 1
        assert audit.status == AuditStatus.COMPLETED
        assert analyzer.calls == [("Home", "Seitte Text", DEFAULT_ANALYSIS_PROMPT)]

    def test_uses_stored_prompt(self, audit, make_page):
        custom = "Bitte pruefe diesen Text sehr genau auf Fehler und Platzhalter: {content}"
        set_analysis_prompt(custom)
        page = make_page(audit, status=PageStatus.ANALYZING, title="Home", content="Text")
        analyzer = FakeAnalyzer()

        process_analyze_page(analyze_job(page), analyzer=analyzer)

        assert analyzer.calls[0][2] == custom

    def test_audit_stays_open_while_other_pages_run(self, audit, make_page):
        page = make_page(audit, url="https://example.com/a", status=PageStatus.ANALYZING, content="Text")
        make_page(audit, url="https://example.com/b", status=PageStatus.CRAWLING)

        process_analyze_page(analyze_job(page), analyzer=FakeAnalyzer())

        audit.refresh_from_db()
        assert audit.status == AuditStatus.CRAWLING

    def test_failure_with_attempts_left_keeps_page_analyzing(self, audit, make_page):
        page = make_page(audit, status=PageStatus.ANALYZING, content="Text")
        analyzer = FakeAnalyzer(error=ContentAnalysisError("OpenAI API error (500)"))

        with pytest.raises(ContentAnalysisError):
            process_analyze_page(analyze_job(page, attempts=1), analyzer=analyzer)

        page.refresh_from_db()
        assert page.status == PageStatus.ANALYZING
        assert page.error_message == "OpenAI API error (500)"

    def test_failure_on_final_attempt_fails_page(self, audit, make_page):
        page = make_page(audit, status=PageStatus.ANALYZING, content="Text")
        analyzer = FakeAnalyzer(error=ContentAnalysisError("Failed to parse AI response as JSON"))

        with pytest.raises(ContentAnalysisError):
            process_analyze_page(analyze_job(page, attempts=3), analyzer=analyzer)

        page.refresh_from_db()
        audit.refresh_from_db()
        assert page.status == PageStatus.FAILED
        assert audit.status == AuditStatus.COMPLETED
        assert audit.processed_urls == 0

    def test_page_without_content_fails(self, audit, make_page):
        page = make_page(audit, status=PageStatus.ANALYZING, content="")
        analyzer = FakeAnalyzer()

        with pytest.raises(ContentAnalysisError, match="no content"):
            process_analyze_page(analyze_job(page, attempts=3), analyzer=analyzer)

        page.refresh_from_db()
        assert page.status == PageStatus.FAILED
        assert analyzer.calls == []

    def test_pending_page_is_not_analyzed(self, audit, make_page):
        page = make_page(audit, status=PageStatus.PENDING)
        analyzer = FakeAnalyzer()

        with pytest.raises(ContentAnalysisError, match="not ready"):
            process_analyze_page(analyze_job(page), analyzer=analyzer)

        page.refresh_from_db()
        assert page.status == PageStatus.PENDING
        assert analyzer.calls == []

    def test_skips_terminal_page(self, audit, make_page):
        page = make_page(audit, status=PageStatus.COMPLETED, content="Text")
        analyzer = FakeAnalyzer()

        process_analyze_page(analyze_job(page), analyzer=analyzer)

        assert analyzer.calls == []


@pytest.mark.django_db
class TestPipeline:
    """Tests for crawl and analysis running back to back through the queue."""

    def test_page_moves_forward_only(self, audit, make_page):
        page = make_page(audit)
        queue = JobQueue()
        observed = [page.status]

        process_crawl_page(crawl_job(page), fetcher=FakeFetcher(), queue=queue)
        page.refresh_from_db()
        observed.append(page.status)

        follow_up = queue.claim_next()
        assert follow_up.job_type == JobType.ANALYZE_PAGE

        process_analyze_page(follow_up, analyzer=FakeAnalyzer())
        page.refresh_from_db()
        observed.append(page.status)

        assert observed == [PageStatus.PENDING, PageStatus.ANALYZING, PageStatus.COMPLETED]
        ranks = [PageStatus.rank(status) for status in observed]
        assert ranks == sorted(ranks)


class TestDispatchJob:
    """Tests for routing jobs to handlers."""

    def test_unknown_job_type(self):
        job = ClaimedJob(
            id="job-1",
            job_type="send_email",
            payload=None,
            attempts=1,
            max_attempts=3,
            locked_until=timezone.now(),
        )

        with pytest.raises(ValueError, match="No handler"):
            dispatch_job(job)
