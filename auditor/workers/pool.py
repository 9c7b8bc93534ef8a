"""
Worker Pool - concurrent loops that drain the job queue.

Each worker runs claim -> process -> complete/fail until stopped:
- Empty queue: sleep poll_interval before the next claim
- Job store error: sleep error_interval; warn only once the consecutive
  error count reaches error_log_threshold
- Crawl jobs first take their audit's slot from the crawl limiter
- A handler exception fails the job and never ends the loop

Usage:
    pool = WorkerPool(get_job_queue(), dispatch_job, get_crawl_limiter())
    pool.start()
    ...
    pool.stop()
"""

import logging
import threading
from typing import Callable, List, Optional

from django.db import DatabaseError, close_old_connections

from auditor.exceptions import InvalidJobPayload
from auditor.models import JobType
from auditor.monitoring import add_job_breadcrumb, capture_alert, capture_job_error
from auditor.queue import ClaimedJob, JobQueue
from auditor.workers.crawl_limiter import CrawlLimiter

logger = logging.getLogger(__name__)


class WorkerPool:
    """Fixed-size pool of worker threads sharing one queue and one limiter."""

    def __init__(
        self,
        queue: JobQueue,
        handler: Callable[[ClaimedJob], None],
        limiter: CrawlLimiter,
        worker_count: int = 3,
        poll_interval: float = 2.0,
        error_interval: float = 5.0,
        error_log_threshold: int = 3,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize the worker pool.

        Args:
            queue: Job queue to claim from
            handler: Callable run for every claimed job; raising fails the job
            limiter: Per-audit crawl admission control
            worker_count: Number of worker threads
            poll_interval: Seconds to sleep when the queue is empty
            error_interval: Seconds to sleep after a job store error
            error_log_threshold: Consecutive store errors before warning
            sleep: Sleep function (defaults to an interruptible wait on stop)
        """
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")

        self.queue = queue
        self.handler = handler
        self.limiter = limiter
        self.worker_count = worker_count
        self.poll_interval = poll_interval
        self.error_interval = error_interval
        self.error_log_threshold = error_log_threshold

        self._stop_event = threading.Event()
        self._sleep = sleep or self._stop_event.wait
        self._threads: List[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """Spawn the worker threads."""
        if self.is_running:
            raise RuntimeError("Worker pool already running")

        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self.run_worker,
                args=(index,),
                name=f"auditor-worker-{index}",
                daemon=True,
            )
            for index in range(self.worker_count)
        ]
        for thread in self._threads:
            thread.start()

        logger.info(f"Started {self.worker_count} workers")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Signal every worker to stop and wait for them to exit.

        A worker finishes the job it is processing before exiting.

        Args:
            timeout: Seconds to wait per thread (None waits indefinitely)
        """
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)

        alive = [thread.name for thread in self._threads if thread.is_alive()]
        if alive:
            logger.warning(f"Workers still running after stop: {', '.join(alive)}")
        else:
            logger.info("All workers stopped")

    def run_worker(self, index: int) -> None:
        """
        Run one worker loop until the pool is stopped.

        Args:
            index: Worker number, used in log messages
        """
        consecutive_errors = 0
        logger.debug(f"Worker {index} started")

        try:
            while not self._stop_event.is_set():
                try:
                    job = self.queue.claim_next()
                except InvalidJobPayload as e:
                    # Already marked failed by the queue
                    logger.error(f"Worker {index} skipped malformed job: {e}")
                    consecutive_errors = 0
                    continue
                except Exception as e:
                    consecutive_errors += 1
                    self._report_store_error(index, consecutive_errors, e)
                    close_old_connections()
                    self._sleep(self.error_interval)
                    continue

                if consecutive_errors >= self.error_log_threshold:
                    logger.info(
                        f"Worker {index} reconnected to job store after "
                        f"{consecutive_errors} errors"
                    )
                consecutive_errors = 0

                if job is None:
                    self._sleep(self.poll_interval)
                    continue

                self.process(job)
        finally:
            close_old_connections()
            logger.debug(f"Worker {index} stopped")

    def drain(self, max_jobs: Optional[int] = None) -> int:
        """
        Process jobs in the calling thread until the queue is empty.

        Store errors propagate. Used by `run_workers --drain`.

        Args:
            max_jobs: Optional cap on the number of jobs processed

        Returns:
            Number of jobs processed
        """
        processed = 0
        while max_jobs is None or processed < max_jobs:
            try:
                job = self.queue.claim_next()
            except InvalidJobPayload as e:
                logger.error(f"Skipped malformed job: {e}")
                continue

            if job is None:
                break
            self.process(job)
            processed += 1

        return processed

    def _report_store_error(self, index: int, count: int, error: Exception) -> None:
        if count < self.error_log_threshold:
            logger.debug(f"Worker {index} job store error ({count}): {error}")
            return

        logger.warning(
            f"Worker {index} cannot reach job store ({count} consecutive errors): {error}"
        )
        if count == self.error_log_threshold:
            capture_alert(
                f"Worker cannot reach job store: {type(error).__name__}",
                extra_data={"worker": index, "consecutive_errors": count},
            )

    def process(self, job: ClaimedJob) -> bool:
        """
        Run the handler for one claimed job and record the outcome.

        Crawl jobs run while holding their audit's crawl slot; the slot is
        released whether the handler succeeds or raises.

        Args:
            job: Claimed job

        Returns:
            True if the handler succeeded, False if the job was failed
        """
        add_job_breadcrumb(job, message="Job claimed")

        try:
            if job.job_type == JobType.CRAWL_PAGE:
                with self.limiter.hold(job.payload.audit_id, self._stop_event) as acquired:
                    if not acquired:
                        raise RuntimeError("Worker stopped while waiting for crawl slot")
                    self.handler(job)
            else:
                self.handler(job)

        except Exception as e:
            logger.error(
                f"Job {job.id} ({job.job_type}) failed on attempt "
                f"{job.attempts}/{job.max_attempts}: {e}"
            )
            capture_job_error(e, job)
            try:
                self.queue.fail(job.id, str(e) or type(e).__name__)
            except DatabaseError as store_error:
                # Lock expiry hands the job out again
                logger.error(f"Could not record failure of job {job.id}: {store_error}")
            return False

        try:
            self.queue.complete(job.id)
        except DatabaseError as e:
            logger.error(f"Could not mark job {job.id} completed: {e}")
        return True
