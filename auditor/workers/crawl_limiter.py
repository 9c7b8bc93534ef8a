"""
Per-audit crawl admission control.

At most one crawl may be in flight per audit, whatever the worker count,
so every audit's rate limit holds against the target site. Analysis jobs do
not pass through a limiter.

Two implementations:
- InMemoryCrawlLimiter: shared by the threads of one process
- RedisCrawlLimiter: shared by every process pointed at the same Redis
"""

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Callable, Dict, Optional

from django.conf import settings

logger = logging.getLogger(__name__)


class CrawlLimiter:
    """
    Base limiter: subclasses implement try_acquire() and release().

    acquire() polls try_acquire() until the slot is free. When a stop event
    is given and set while waiting, acquire() gives up and returns False.
    """

    def __init__(
        self,
        poll_interval: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if poll_interval is None:
            poll_interval = getattr(settings, "AUDITOR_CRAWL_POLL_INTERVAL", 0.5)
        self.poll_interval = poll_interval
        self._sleep = sleep

    def try_acquire(self, audit_id: str) -> bool:
        raise NotImplementedError

    def release(self, audit_id: str) -> None:
        raise NotImplementedError

    def acquire(self, audit_id: str, stop_event: Optional[threading.Event] = None) -> bool:
        """
        Block until this caller holds the audit's crawl slot.

        Args:
            audit_id: Audit whose crawls are serialized
            stop_event: Optional event that aborts the wait

        Returns:
            True once acquired, False if stop_event was set first
        """
        waited = False
        while not self.try_acquire(audit_id):
            if stop_event is not None and stop_event.is_set():
                return False
            if not waited:
                logger.debug(f"Waiting for crawl slot of audit {audit_id}")
                waited = True
            self._sleep(self.poll_interval)
        return True

    @contextmanager
    def hold(self, audit_id: str, stop_event: Optional[threading.Event] = None):
        """
        Hold the audit's crawl slot for the duration of the block.

        The slot is released even if the block raises. Yields False (and
        releases nothing) when stop_event aborted the wait.
        """
        acquired = self.acquire(audit_id, stop_event)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(audit_id)


class InMemoryCrawlLimiter(CrawlLimiter):
    """Process-local limiter: a set of busy audit ids guarded by a lock."""

    def __init__(self, poll_interval: Optional[float] = None, sleep=time.sleep):
        super().__init__(poll_interval=poll_interval, sleep=sleep)
        self._lock = threading.Lock()
        self._busy: Dict[str, bool] = {}

    def try_acquire(self, audit_id: str) -> bool:
        with self._lock:
            if self._busy.get(audit_id):
                return False
            self._busy[audit_id] = True
            return True

    def release(self, audit_id: str) -> None:
        with self._lock:
            self._busy.pop(audit_id, None)

    def is_busy(self, audit_id: str) -> bool:
        with self._lock:
            return bool(self._busy.get(audit_id))


class RedisCrawlLimiter(CrawlLimiter):
    """
    Redis-backed limiter for multi-process deployments.

    The slot is a key set with NX and a TTL, so a process that dies while
    holding it frees the audit after ttl_ms. Release only deletes the key
    if this instance still owns it.
    """

    KEY_PATTERN = "auditor:crawl_slot:{audit_id}"

    # Compare-and-delete so an expired holder cannot free someone else's slot
    RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

    def __init__(
        self,
        redis_client=None,
        ttl_ms: Optional[int] = None,
        poll_interval: Optional[float] = None,
        sleep=time.sleep,
    ):
        """
        Initialize the Redis limiter.

        Args:
            redis_client: Optional pre-configured Redis client
            ttl_ms: Slot expiry (defaults to the job lock duration)
            poll_interval: Seconds between acquire attempts
            sleep: Sleep function (injectable for tests)
        """
        super().__init__(poll_interval=poll_interval, sleep=sleep)
        self._redis = redis_client
        if self._redis is None:
            self._init_redis()

        if ttl_ms is None:
            ttl_ms = getattr(settings, "AUDITOR_JOB_LOCK_SECONDS", 300) * 1000
        self.ttl_ms = ttl_ms
        self._token = uuid.uuid4().hex

    def _init_redis(self):
        """Initialize Redis connection from settings."""
        import redis

        redis_url = getattr(settings, "REDIS_URL", None)
        if redis_url:
            self._redis = redis.from_url(redis_url, decode_responses=True)
        else:
            # Fall back to Celery broker URL
            broker_url = getattr(settings, "CELERY_BROKER_URL", "redis://localhost:6379/1")
            self._redis = redis.from_url(broker_url, decode_responses=True)

    def _key(self, audit_id: str) -> str:
        return self.KEY_PATTERN.format(audit_id=audit_id)

    def try_acquire(self, audit_id: str) -> bool:
        return bool(self._redis.set(self._key(audit_id), self._token, nx=True, px=self.ttl_ms))

    def release(self, audit_id: str) -> None:
        try:
            self._redis.eval(self.RELEASE_SCRIPT, 1, self._key(audit_id), self._token)
        except Exception as e:
            # The TTL frees the slot eventually
            logger.warning(f"Failed to release crawl slot for audit {audit_id}: {e}")


def get_crawl_limiter() -> CrawlLimiter:
    """
    Build the limiter selected by AUDITOR_CRAWL_LIMITER.

    Returns:
        InMemoryCrawlLimiter for "memory", RedisCrawlLimiter for "redis"
    """
    backend = getattr(settings, "AUDITOR_CRAWL_LIMITER", "memory")
    if backend == "redis":
        return RedisCrawlLimiter()
    if backend == "memory":
        return InMemoryCrawlLimiter()
    raise ValueError(f"Unknown AUDITOR_CRAWL_LIMITER: {backend!r}")
