"""
Workers - the thread pool that drains the job queue and the per-audit
crawl admission control it uses.
"""

from .crawl_limiter import (
    CrawlLimiter,
    InMemoryCrawlLimiter,
    RedisCrawlLimiter,
    get_crawl_limiter,
)
from .pool import WorkerPool

__all__ = [
    "CrawlLimiter",
    "InMemoryCrawlLimiter",
    "RedisCrawlLimiter",
    "WorkerPool",
    "get_crawl_limiter",
]
