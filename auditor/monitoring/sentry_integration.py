"""
Sentry error tracking for the audit pipeline.

- Adds breadcrumbs for job context (job type, audit, page, attempt)
- Filters sensitive data (API keys, tokens) out of event extras
- Captures handler failures and worker alerts with job context

Sentry itself is initialised in settings/base.py when SENTRY_DSN is set;
without a DSN every call here is a cheap no-op inside the SDK.

Usage:
    from auditor.monitoring import capture_job_error

    try:
        handler(job)
    except Exception as e:
        capture_job_error(e, job)
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk

logger = logging.getLogger(__name__)

# Sensitive fields to filter from Sentry events
SENSITIVE_FIELDS = {
    "api_key",
    "apikey",
    "api-key",
    "authorization",
    "password",
    "secret",
    "token",
    "x-api-key",
}


def _filter_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Filter sensitive data from a dictionary.

    Replaces values for keys that match sensitive field names.

    Args:
        data: Dictionary potentially containing sensitive data

    Returns:
        Dictionary with sensitive values replaced
    """
    if not isinstance(data, dict):
        return data

    filtered = {}
    for key, value in data.items():
        key_lower = str(key).lower()

        if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
            filtered[key] = "[Filtered]"
        elif isinstance(value, dict):
            filtered[key] = _filter_sensitive_data(value)
        else:
            filtered[key] = value

    return filtered


def _job_context(job) -> Dict[str, Any]:
    payload = getattr(job, "payload", None)
    context = {
        "job_id": str(getattr(job, "id", "")),
        "job_type": getattr(job, "job_type", "unknown"),
        "attempt": getattr(job, "attempts", 0),
        "max_attempts": getattr(job, "max_attempts", 0),
    }
    for field in ("audit_id", "page_id", "url"):
        value = getattr(payload, field, None)
        if value:
            context[field] = value
    return context


def add_job_breadcrumb(
    job,
    message: str = "Job operation",
    level: str = "info",
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Add a breadcrumb to Sentry for job context.

    Args:
        job: ClaimedJob being processed
        message: Description of the operation
        level: Log level (info, warning, error)
        extra_data: Additional context data
    """
    data = _job_context(job)
    if extra_data:
        data.update(_filter_sensitive_data(extra_data))

    try:
        sentry_sdk.add_breadcrumb(
            category="job",
            message=message,
            level=level,
            data=data,
        )
    except Exception as e:
        logger.warning(f"Failed to add Sentry breadcrumb: {e}")


def capture_job_error(
    error: Exception,
    job,
    extra_context: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Capture a job handler error to Sentry with full context.

    Args:
        error: The exception raised by the handler
        job: ClaimedJob that failed
        extra_context: Additional context (filtered for sensitive data)
    """
    context = _job_context(job)

    add_job_breadcrumb(
        job,
        message=f"Error: {type(error).__name__}",
        level="error",
        extra_data=extra_context,
    )

    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("auditor.job_type", context["job_type"])
            scope.set_tag("auditor.final_attempt", context["attempt"] >= context["max_attempts"])
            if "audit_id" in context:
                scope.set_tag("auditor.audit_id", context["audit_id"])

            scope.set_extra("job_context", context)
            if extra_context:
                scope.set_extra("extra_context", _filter_sensitive_data(extra_context))

            sentry_sdk.capture_exception(error)

    except Exception as e:
        logger.warning(f"Failed to capture exception to Sentry: {e}")


def capture_alert(
    message: str,
    level: str = "warning",
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Capture an alert message to Sentry.

    Used when a worker keeps failing to reach the job store.

    Args:
        message: Alert message
        level: Severity level (warning, error)
        extra_data: Additional alert data
    """
    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("alert.type", "worker_health")
            if extra_data:
                scope.set_extra("alert_data", _filter_sensitive_data(extra_data))

            sentry_sdk.capture_message(message, level=level)

    except Exception as e:
        logger.warning(f"Failed to capture alert to Sentry: {e}")
