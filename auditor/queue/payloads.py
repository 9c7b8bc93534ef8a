"""
Typed job payloads.

Each job type has a fixed payload schema. Payloads are stored as JSON on the
Job row and validated here when a job is claimed, so handlers never see a
half-formed dict.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Union

from auditor.exceptions import InvalidJobPayload
from auditor.models import JobType


@dataclass(frozen=True)
class CrawlPagePayload:
    """Fetch one page's content."""

    audit_id: str
    page_id: str
    url: str
    rate_limit_ms: int = 1000

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AnalyzePagePayload:
    """Run quality analysis over one crawled page."""

    audit_id: str
    page_id: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


JobPayload = Union[CrawlPagePayload, AnalyzePagePayload]

PAYLOAD_TYPES = {
    JobType.CRAWL_PAGE: CrawlPagePayload,
    JobType.ANALYZE_PAGE: AnalyzePagePayload,
}


def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidJobPayload(f"Payload field '{key}' must be a non-empty string")
    return value


def _require_int(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    # bool is an int subclass but never a valid delay
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidJobPayload(f"Payload field '{key}' must be an integer")
    return value


def parse_payload(job_type: str, data: Any) -> JobPayload:
    """
    Validate stored payload data for a job type.

    Unknown keys (such as the diagnostic "error" merged in by a failed
    attempt) are ignored.

    Args:
        job_type: JobType value of the job
        data: Decoded JSON payload

    Returns:
        CrawlPagePayload or AnalyzePagePayload

    Raises:
        InvalidJobPayload: Unknown job type or malformed data
    """
    if job_type not in PAYLOAD_TYPES:
        raise InvalidJobPayload(f"Unknown job type: {job_type!r}")

    if not isinstance(data, Mapping):
        raise InvalidJobPayload(
            f"Payload for {job_type} must be an object, got {type(data).__name__}"
        )

    if job_type == JobType.CRAWL_PAGE:
        return CrawlPagePayload(
            audit_id=_require_str(data, "audit_id"),
            page_id=_require_str(data, "page_id"),
            url=_require_str(data, "url"),
            rate_limit_ms=_require_int(data, "rate_limit_ms", 1000),
        )

    return AnalyzePagePayload(
        audit_id=_require_str(data, "audit_id"),
        page_id=_require_str(data, "page_id"),
    )
