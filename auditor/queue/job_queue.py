"""
Job Queue - durable work queue backed by the job_queue table.

Provides:
- Atomic claiming: a job is handed to at most one caller
- Lock expiry: work held by a crashed worker becomes claimable again
- Bounded retries: a job failed max_attempts times is terminal

Claiming selects candidates with SELECT ... FOR UPDATE SKIP LOCKED and then
claims one with a conditional UPDATE that re-checks eligibility. On backends
without row locks (SQLite) the conditional UPDATE alone decides the winner.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from django.conf import settings
from django.db import transaction
from django.db.models import Count, F, Q
from django.utils import timezone

from auditor.exceptions import InvalidJobPayload
from auditor.models import Job, JobStatus
from auditor.queue.payloads import JobPayload, parse_payload

logger = logging.getLogger(__name__)

PayloadInput = Union[JobPayload, Dict[str, Any]]


@dataclass
class ClaimedJob:
    """A job handed to exactly one worker, with its payload validated."""

    id: str
    job_type: str
    payload: JobPayload
    attempts: int
    max_attempts: int
    locked_until: datetime

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts >= self.max_attempts


class JobQueue:
    """
    Relational job queue.

    All state lives in the database, so any number of JobQueue instances
    (threads or processes) can share one table.
    """

    # Candidates examined per claim round
    CLAIM_BATCH_SIZE = 10

    def __init__(
        self,
        lock_duration: Optional[timedelta] = None,
        max_attempts: Optional[int] = None,
        now: Callable[[], datetime] = timezone.now,
    ):
        """
        Initialize the job queue.

        Args:
            lock_duration: How long a claim protects a job from reclaim
            max_attempts: Default attempt ceiling for new jobs
            now: Clock used for lock arithmetic (injectable for tests)
        """
        if lock_duration is None:
            lock_duration = timedelta(
                seconds=getattr(settings, "AUDITOR_JOB_LOCK_SECONDS", 300)
            )
        if max_attempts is None:
            max_attempts = getattr(settings, "AUDITOR_MAX_ATTEMPTS", 3)

        self.lock_duration = lock_duration
        self.max_attempts = max_attempts
        self._now = now

    @staticmethod
    def _payload_dict(job_type: str, payload: PayloadInput) -> Dict[str, Any]:
        if isinstance(payload, dict):
            # Reject bad payloads before they reach the table
            payload = parse_payload(job_type, payload)
        return payload.to_dict()

    def enqueue(
        self,
        job_type: str,
        payload: PayloadInput,
        max_attempts: Optional[int] = None,
    ) -> str:
        """
        Insert a pending job.

        Args:
            job_type: JobType value
            payload: Payload dataclass or equivalent dict
            max_attempts: Attempt ceiling (defaults to the queue setting)

        Returns:
            ID of the new job
        """
        job = Job.objects.create(
            job_type=job_type,
            payload=self._payload_dict(job_type, payload),
            status=JobStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts or self.max_attempts,
            created_at=self._now(),
        )
        logger.debug(f"Enqueued {job_type} job {job.id}")
        return str(job.id)

    def enqueue_many(self, job_type: str, payloads: Iterable[PayloadInput]) -> List[str]:
        """
        Bulk insert pending jobs of one type, preserving order.

        Args:
            job_type: JobType value
            payloads: Payload dataclasses or dicts

        Returns:
            IDs of the new jobs
        """
        now = self._now()
        jobs = [
            Job(
                job_type=job_type,
                payload=self._payload_dict(job_type, payload),
                status=JobStatus.PENDING,
                attempts=0,
                max_attempts=self.max_attempts,
                # Distinct timestamps keep creation order stable for claiming
                created_at=now + timedelta(microseconds=offset),
            )
            for offset, payload in enumerate(payloads)
        ]
        Job.objects.bulk_create(jobs)
        logger.info(f"Enqueued {len(jobs)} {job_type} jobs")
        return [str(job.id) for job in jobs]

    def _eligible(self, now: datetime) -> Q:
        pending = Q(status=JobStatus.PENDING) & (
            Q(locked_until__isnull=True) | Q(locked_until__lt=now)
        )
        expired = Q(status=JobStatus.PROCESSING, locked_until__lt=now)
        return pending | expired

    def _candidates(self, eligible: Q) -> List[tuple]:
        """Oldest eligible rows not locked by another transaction."""
        return list(
            Job.objects.select_for_update(skip_locked=True)
            .filter(eligible)
            .order_by("created_at")
            .values_list("id", "status", "attempts", "max_attempts")[: self.CLAIM_BATCH_SIZE]
        )

    def claim_next(self) -> Optional[ClaimedJob]:
        """
        Claim the oldest eligible job.

        The claim increments attempts and sets locked_until to now plus the
        lock duration. A processing job whose lock expired with no attempts
        left is moved to failed instead of being handed out.

        Returns:
            ClaimedJob, or None if nothing is eligible

        Raises:
            InvalidJobPayload: The claimed job's payload is malformed (the
                job has been marked failed)
            DatabaseError: The store is unreachable
        """
        now = self._now()
        eligible = self._eligible(now)
        invalid = None

        with transaction.atomic():
            for job_id, status, attempts, max_attempts in self._candidates(eligible):
                if status == JobStatus.PROCESSING and attempts >= max_attempts:
                    self._expire_exhausted(job_id, now)
                    continue

                locked_until = now + self.lock_duration
                claimed = (
                    Job.objects.filter(eligible, pk=job_id)
                    .update(
                        status=JobStatus.PROCESSING,
                        attempts=F("attempts") + 1,
                        locked_until=locked_until,
                    )
                )
                if claimed == 0:
                    # Another caller won this row
                    continue

                job = Job.objects.get(pk=job_id)
                try:
                    payload = parse_payload(job.job_type, job.payload)
                except InvalidJobPayload as e:
                    self._mark_failed(job, str(e), now)
                    invalid = InvalidJobPayload(f"Job {job_id}: {e}")
                    break

                if status == JobStatus.PROCESSING:
                    logger.warning(
                        f"Reclaimed job {job_id} after lock expiry "
                        f"(attempt {job.attempts}/{job.max_attempts})"
                    )

                return ClaimedJob(
                    id=str(job.id),
                    job_type=job.job_type,
                    payload=payload,
                    attempts=job.attempts,
                    max_attempts=job.max_attempts,
                    locked_until=locked_until,
                )

        if invalid is not None:
            logger.error(str(invalid))
            raise invalid

        return None

    def _expire_exhausted(self, job_id, now: datetime) -> None:
        updated = Job.objects.filter(
            pk=job_id, status=JobStatus.PROCESSING, locked_until__lt=now
        ).update(status=JobStatus.FAILED, processed_at=now, locked_until=None)
        if updated:
            logger.warning(f"Job {job_id} lock expired with no attempts left, marked failed")

    def _mark_failed(self, job: Job, error_message: str, now: datetime) -> None:
        job.status = JobStatus.FAILED
        job.processed_at = now
        job.locked_until = None
        job.payload = self._with_error(job.payload, error_message)
        job.save(update_fields=["status", "processed_at", "locked_until", "payload"])

    @staticmethod
    def _with_error(payload: Any, error_message: str) -> Any:
        if isinstance(payload, dict):
            return {**payload, "error": error_message}
        return {"raw": payload, "error": error_message}

    def complete(self, job_id: str) -> None:
        """
        Mark a job completed.

        Args:
            job_id: ID of a claimed job
        """
        Job.objects.filter(pk=job_id).update(
            status=JobStatus.COMPLETED,
            processed_at=self._now(),
            locked_until=None,
        )

    def fail(self, job_id: str, error_message: str) -> str:
        """
        Record a failed attempt.

        With attempts left the job returns to pending and is claimable at
        once; otherwise it becomes terminally failed. The error message is
        merged into the payload.

        Args:
            job_id: ID of a claimed job
            error_message: Failure description

        Returns:
            The job's new JobStatus
        """
        now = self._now()
        with transaction.atomic():
            job = Job.objects.select_for_update().get(pk=job_id)
            job.payload = self._with_error(job.payload, error_message)
            job.locked_until = None

            if job.attempts >= job.max_attempts:
                job.status = JobStatus.FAILED
                job.processed_at = now
                logger.warning(
                    f"Job {job_id} failed permanently after {job.attempts} attempts: "
                    f"{error_message}"
                )
            else:
                job.status = JobStatus.PENDING
                logger.info(
                    f"Job {job_id} failed (attempt {job.attempts}/{job.max_attempts}), "
                    f"will retry: {error_message}"
                )

            job.save(update_fields=["payload", "locked_until", "status", "processed_at"])

        return job.status

    def stats(self) -> Dict[str, int]:
        """
        Count jobs by status.

        Returns:
            Mapping of every JobStatus value to its job count
        """
        counts = {status.value: 0 for status in JobStatus}
        rows = Job.objects.order_by().values("status").annotate(count=Count("id"))
        for row in rows:
            counts[row["status"]] = row["count"]
        return counts


# Global instance
_queue_instance: Optional[JobQueue] = None


def get_job_queue() -> JobQueue:
    """
    Get the global JobQueue instance.

    Returns:
        JobQueue singleton instance
    """
    global _queue_instance
    if _queue_instance is None:
        _queue_instance = JobQueue()
    return _queue_instance
