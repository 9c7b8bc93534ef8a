"""
Job queue - durable, database-backed work queue for audit pipeline jobs.

Provides atomic claiming with lock expiry and bounded retries.
"""

from .job_queue import ClaimedJob, JobQueue, get_job_queue
from .payloads import AnalyzePagePayload, CrawlPagePayload, parse_payload

__all__ = [
    "AnalyzePagePayload",
    "ClaimedJob",
    "CrawlPagePayload",
    "JobQueue",
    "get_job_queue",
    "parse_payload",
]
