"""
Monitoring for the audit pipeline.

Sentry error tracking with job context for worker failures.
"""

from .sentry_integration import add_job_breadcrumb, capture_alert, capture_job_error

__all__ = [
    "add_job_breadcrumb",
    "capture_alert",
    "capture_job_error",
]
