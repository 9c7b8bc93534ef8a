"""
Domain exceptions for the auditor app.

Job handlers let these propagate so the worker pool records the failure
against the job; the API layer maps them to HTTP status codes.
"""


class AuditorError(Exception):
    """Base class for all auditor domain errors."""


class AuditValidationError(AuditorError):
    """Raised when audit input is rejected before any row is created."""


class AuditNotFound(AuditorError):
    """Raised when an audit id does not exist."""


class InvalidJobPayload(AuditorError):
    """Raised when a queued job's payload does not match its job type."""


class SitemapParseError(AuditorError):
    """Exception raised for sitemap fetching and parsing errors."""


class ContentFetchError(AuditorError):
    """Raised when page content cannot be extracted."""


class ContentAnalysisError(AuditorError):
    """Raised when the AI provider fails or returns unusable output."""


class InvalidPromptError(AuditorError):
    """Raised when a submitted analysis prompt is rejected."""


class EmptySitemapError(SitemapParseError):
    """Raised when a sitemap parses but lists no page URLs."""
