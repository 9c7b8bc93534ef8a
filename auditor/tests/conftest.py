"""
Pytest configuration and fixtures for the auditor test suite.
"""

from datetime import timedelta

import pytest
from django.utils import timezone


@pytest.fixture
def api_client():
    """Create a test API client."""
    from rest_framework.test import APIClient

    return APIClient()


class FakeClock:
    """Controllable replacement for timezone.now."""

    def __init__(self, start=None):
        self.current = start or timezone.now()

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    """A clock that only moves when a test advances it."""
    return FakeClock()


@pytest.fixture
def audit(db):
    """Create a crawling Audit with no pages."""
    from auditor.models import Audit, AuditStatus

    return Audit.objects.create(
        sitemap_url="https://example.com/sitemap.xml",
        status=AuditStatus.CRAWLING,
        total_urls=0,
        rate_limit_ms=0,
    )


@pytest.fixture
def make_page(db):
    """Factory for AuditPage rows attached to an audit."""
    from auditor.models import AuditPage, PageStatus

    def _make_page(audit, url="https://example.com/page", status=PageStatus.PENDING, **fields):
        page = AuditPage.objects.create(audit=audit, url=url, status=status, **fields)
        audit.total_urls = audit.pages.count()
        audit.save(update_fields=["total_urls", "updated_at"])
        return page

    return _make_page
