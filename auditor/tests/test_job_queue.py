"""
Tests for the relational Job Queue.

Covers claim order, exclusive claiming (interleaved and from real threads),
reclaim after lock expiry, retry exhaustion and malformed payload handling.
A fake clock drives the lock calculations.
"""

import threading
import time
from datetime import timedelta

import pytest
from django.db import OperationalError, connection

from auditor.exceptions import InvalidJobPayload
from auditor.models import Job, JobStatus, JobType
from auditor.queue import AnalyzePagePayload, CrawlPagePayload, JobQueue


def crawl_payload(n=1):
    return CrawlPagePayload(
        audit_id="audit-1",
        page_id=f"page-{n}",
        url=f"https://example.com/{n}",
        rate_limit_ms=0,
    )


@pytest.fixture
def queue(clock):
    return JobQueue(lock_duration=timedelta(seconds=60), max_attempts=3, now=clock)


@pytest.mark.django_db
class TestEnqueue:
    """Tests for inserting jobs."""

    def test_enqueue_creates_pending_job(self, queue):
        """A new job is pending, unlocked and has no attempts."""
        job_id = queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())

        job = Job.objects.get(pk=job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.locked_until is None
        assert job.payload == {
            "audit_id": "audit-1",
            "page_id": "page-1",
            "url": "https://example.com/1",
            "rate_limit_ms": 0,
        }

    def test_enqueue_accepts_dict_payload(self, queue):
        """Dict payloads are validated and stored in canonical form."""
        job_id = queue.enqueue(
            JobType.ANALYZE_PAGE, {"audit_id": "audit-1", "page_id": "page-1"}
        )

        assert Job.objects.get(pk=job_id).payload == {
            "audit_id": "audit-1",
            "page_id": "page-1",
        }

    def test_enqueue_rejects_malformed_dict(self, queue):
        """A dict missing required keys never reaches the table."""
        with pytest.raises(InvalidJobPayload):
            queue.enqueue(JobType.CRAWL_PAGE, {"audit_id": "audit-1"})

        assert Job.objects.count() == 0

    def test_enqueue_custom_max_attempts(self, queue):
        job_id = queue.enqueue(JobType.CRAWL_PAGE, crawl_payload(), max_attempts=5)

        assert Job.objects.get(pk=job_id).max_attempts == 5

    def test_enqueue_many_preserves_order(self, queue):
        """Bulk-enqueued jobs are claimed in the order given."""
        ids = queue.enqueue_many(JobType.CRAWL_PAGE, [crawl_payload(n) for n in range(1, 6)])

        assert len(ids) == 5
        claimed = [queue.claim_next().payload.page_id for _ in range(5)]
        assert claimed == [f"page-{n}" for n in range(1, 6)]


@pytest.mark.django_db
class TestClaim:
    """Tests for claim_next()."""

    def test_claim_returns_none_when_empty(self, queue):
        assert queue.claim_next() is None

    def test_claim_oldest_first(self, queue, clock):
        """Jobs are claimed in creation order."""
        queue.enqueue(JobType.CRAWL_PAGE, crawl_payload(1))
        clock.advance(seconds=1)
        queue.enqueue(JobType.CRAWL_PAGE, crawl_payload(2))

        first = queue.claim_next()
        second = queue.claim_next()

        assert first.payload.page_id == "page-1"
        assert second.payload.page_id == "page-2"
        assert queue.claim_next() is None

    def test_claim_sets_processing_and_lock(self, queue, clock):
        """Claiming increments attempts and locks the job for the lock duration."""
        job_id = queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())

        claimed = queue.claim_next()

        assert claimed.id == job_id
        assert claimed.attempts == 1
        assert claimed.locked_until == clock() + timedelta(seconds=60)
        assert isinstance(claimed.payload, CrawlPagePayload)

        job = Job.objects.get(pk=job_id)
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 1
        assert job.locked_until == clock() + timedelta(seconds=60)

    def test_claim_returns_typed_analyze_payload(self, queue):
        queue.enqueue(JobType.ANALYZE_PAGE, AnalyzePagePayload(audit_id="a", page_id="p"))

        claimed = queue.claim_next()

        assert claimed.job_type == JobType.ANALYZE_PAGE
        assert claimed.payload == AnalyzePagePayload(audit_id="a", page_id="p")

    def test_claimed_job_not_handed_out_twice(self, queue, clock):
        """A second claimer gets nothing while the lock is held."""
        other = JobQueue(lock_duration=timedelta(seconds=60), now=clock)
        queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())

        assert queue.claim_next() is not None
        assert other.claim_next() is None

    def test_stale_candidate_is_skipped(self, clock):
        """If another caller claims a candidate first, the next candidate is taken."""
        rival = JobQueue(lock_duration=timedelta(seconds=60), now=clock)

        class RacingQueue(JobQueue):
            def _candidates(self, eligible):
                rows = super()._candidates(eligible)
                # The rival claims the oldest row between select and update
                rival.claim_next()
                return rows

        racing = RacingQueue(lock_duration=timedelta(seconds=60), now=clock)
        racing.enqueue(JobType.CRAWL_PAGE, crawl_payload(1))
        clock.advance(seconds=1)
        racing.enqueue(JobType.CRAWL_PAGE, crawl_payload(2))

        claimed = racing.claim_next()

        assert claimed.payload.page_id == "page-2"
        assert Job.objects.filter(status=JobStatus.PROCESSING, attempts=1).count() == 2

    def test_stale_only_candidate_yields_nothing(self, clock):
        """With one eligible job, exactly one of two racing claimers gets it."""
        rival = JobQueue(lock_duration=timedelta(seconds=60), now=clock)
        won = []

        class RacingQueue(JobQueue):
            def _candidates(self, eligible):
                rows = super()._candidates(eligible)
                won.append(rival.claim_next())
                return rows

        racing = RacingQueue(lock_duration=timedelta(seconds=60), now=clock)
        racing.enqueue(JobType.CRAWL_PAGE, crawl_payload())

        assert racing.claim_next() is None
        assert won[0] is not None
        assert Job.objects.get().attempts == 1


def claim_until_empty(queue, barrier, claimed, max_retries=500):
    """Worker-thread body: claim jobs until the queue reports none left."""
    barrier.wait()
    retries = 0
    try:
        while retries < max_retries:
            try:
                job = queue.claim_next()
            except OperationalError:
                # SQLite rejects a second concurrent writer instead of waiting
                retries += 1
                time.sleep(0.005)
                continue
            if job is None:
                return
            claimed.append(job.id)
    finally:
        connection.close()


@pytest.mark.django_db(transaction=True)
class TestConcurrentClaim:
    """Claimers in separate threads sharing one database."""

    THREADS = 8

    def run_claimers(self):
        queue = JobQueue(lock_duration=timedelta(seconds=60))
        barrier = threading.Barrier(self.THREADS)
        claimed = []
        threads = [
            threading.Thread(target=claim_until_empty, args=(queue, barrier, claimed))
            for _ in range(self.THREADS)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        assert not any(thread.is_alive() for thread in threads)
        return claimed

    def test_single_job_claimed_once(self):
        job_id = JobQueue().enqueue(JobType.CRAWL_PAGE, crawl_payload())

        claimed = self.run_claimers()

        assert claimed == [job_id]
        job = Job.objects.get()
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 1

    def test_every_job_claimed_exactly_once(self):
        job_ids = JobQueue().enqueue_many(
            JobType.CRAWL_PAGE, [crawl_payload(n) for n in range(5)]
        )

        claimed = self.run_claimers()

        assert sorted(claimed) == sorted(job_ids)
        assert set(Job.objects.values_list("attempts", flat=True)) == {1}


@pytest.mark.django_db
class TestReclaim:
    """Tests for recovering jobs whose worker disappeared."""

    def test_not_reclaimable_before_lock_expires(self, queue, clock):
        queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())
        queue.claim_next()

        clock.advance(seconds=60)

        assert queue.claim_next() is None

    def test_reclaimable_after_lock_expires(self, queue, clock):
        """An abandoned job is handed out again once its lock has elapsed."""
        job_id = queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())
        queue.claim_next()

        clock.advance(seconds=60, microseconds=1)
        reclaimed = queue.claim_next()

        assert reclaimed.id == job_id
        assert reclaimed.attempts == 2
        assert Job.objects.get(pk=job_id).status == JobStatus.PROCESSING

    def test_exhausted_stale_job_is_failed(self, clock):
        """A stale job with no attempts left is failed instead of reclaimed."""
        queue = JobQueue(lock_duration=timedelta(seconds=60), max_attempts=1, now=clock)
        job_id = queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())
        queue.claim_next()

        clock.advance(minutes=2)

        assert queue.claim_next() is None
        job = Job.objects.get(pk=job_id)
        assert job.status == JobStatus.FAILED
        assert job.locked_until is None
        assert job.processed_at == clock()

    def test_exhausted_stale_job_does_not_block_others(self, clock):
        queue = JobQueue(lock_duration=timedelta(seconds=60), max_attempts=1, now=clock)
        queue.enqueue(JobType.CRAWL_PAGE, crawl_payload(1))
        queue.claim_next()
        clock.advance(minutes=2)
        queue.enqueue(JobType.CRAWL_PAGE, crawl_payload(2))
        clock.advance(seconds=1)

        claimed = queue.claim_next()

        assert claimed.payload.page_id == "page-2"


@pytest.mark.django_db
class TestCompleteAndFail:
    """Tests for recording job outcomes."""

    def test_complete(self, queue, clock):
        job_id = queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())
        queue.claim_next()

        queue.complete(job_id)

        job = Job.objects.get(pk=job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.processed_at == clock()
        assert job.locked_until is None
        assert queue.claim_next() is None

    def test_fail_with_attempts_left_returns_to_pending(self, queue):
        """A failed attempt with budget left is immediately claimable again."""
        job_id = queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())
        queue.claim_next()

        status = queue.fail(job_id, "reader timeout")

        assert status == JobStatus.PENDING
        job = Job.objects.get(pk=job_id)
        assert job.locked_until is None
        assert job.processed_at is None
        assert job.payload["error"] == "reader timeout"
        assert job.payload["page_id"] == "page-1"

        retry = queue.claim_next()
        assert retry.id == job_id
        assert retry.attempts == 2

    def test_retry_exhaustion(self, queue):
        """Failing max_attempts times leaves the job terminally failed."""
        job_id = queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())

        statuses = []
        for _ in range(3):
            claimed = queue.claim_next()
            assert claimed.id == job_id
            statuses.append(queue.fail(job_id, "boom"))

        assert statuses == [JobStatus.PENDING, JobStatus.PENDING, JobStatus.FAILED]
        job = Job.objects.get(pk=job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert job.processed_at is not None
        assert queue.claim_next() is None

    def test_final_attempt_flag(self, queue):
        queue.enqueue(JobType.CRAWL_PAGE, crawl_payload(), max_attempts=2)

        first = queue.claim_next()
        queue.fail(first.id, "boom")
        second = queue.claim_next()

        assert first.is_final_attempt is False
        assert second.is_final_attempt is True

    def test_failed_payload_still_parses(self, queue):
        """The merged error key does not break the next claim."""
        job_id = queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())
        queue.claim_next()
        queue.fail(job_id, "first failure")

        retry = queue.claim_next()

        assert retry.payload == crawl_payload()


@pytest.mark.django_db
class TestMalformedPayload:
    """Tests for payloads that fail validation at claim time."""

    def test_malformed_payload_fails_job_and_raises(self, queue, clock):
        job = Job.objects.create(
            job_type=JobType.CRAWL_PAGE,
            payload={"audit_id": "audit-1"},
            created_at=clock(),
        )

        with pytest.raises(InvalidJobPayload):
            queue.claim_next()

        job.refresh_from_db()
        assert job.status == JobStatus.FAILED
        assert job.attempts == 1
        assert "page_id" in job.payload["error"]

    def test_non_object_payload_is_preserved_with_error(self, queue, clock):
        job = Job.objects.create(
            job_type=JobType.ANALYZE_PAGE,
            payload=["not", "an", "object"],
            created_at=clock(),
        )

        with pytest.raises(InvalidJobPayload):
            queue.claim_next()

        job.refresh_from_db()
        assert job.payload["raw"] == ["not", "an", "object"]
        assert job.status == JobStatus.FAILED

    def test_next_claim_proceeds_after_malformed_job(self, queue, clock):
        Job.objects.create(job_type=JobType.CRAWL_PAGE, payload={}, created_at=clock())
        clock.advance(seconds=1)
        queue.enqueue(JobType.CRAWL_PAGE, crawl_payload())

        with pytest.raises(InvalidJobPayload):
            queue.claim_next()
        claimed = queue.claim_next()

        assert claimed.payload.page_id == "page-1"


@pytest.mark.django_db
class TestStats:
    """Tests for queue statistics."""

    def test_stats_counts_every_status(self, queue):
        for n in range(4):
            queue.enqueue(JobType.CRAWL_PAGE, crawl_payload(n))
        done = queue.claim_next()
        queue.complete(done.id)
        queue.claim_next()

        assert queue.stats() == {
            "pending": 2,
            "processing": 1,
            "completed": 1,
            "failed": 0,
        }

    def test_stats_empty_queue(self, queue):
        assert set(queue.stats().values()) == {0}
