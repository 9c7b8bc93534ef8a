"""
Management command to repair audits whose pages have no live job.

Same sweep as the auditor.tasks.reconcile_orphan_pages beat task.

Usage:
    python manage.py reconcile_audits
    python manage.py reconcile_audits --grace-minutes=0
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand

from auditor.services.orchestrator import fail_stranded_pages, reconcile_orphan_pages

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Re-enqueue orphan pending pages and fail stranded ones."""

    help = "Re-enqueue crawl jobs for pending pages without one and fail pages whose jobs are exhausted"

    def add_arguments(self, parser):
        parser.add_argument(
            "--grace-minutes",
            type=int,
            default=getattr(settings, "AUDITOR_RECONCILE_GRACE_MINUTES", 10),
            help="Only consider audits older than this (default: AUDITOR_RECONCILE_GRACE_MINUTES)",
        )
        parser.add_argument(
            "--skip-stranded",
            action="store_true",
            help="Only re-enqueue orphan pending pages",
        )

    def handle(self, *args, **options):
        grace = timedelta(minutes=options["grace_minutes"])

        requeued = reconcile_orphan_pages(grace=grace)
        self.stdout.write(f"Re-enqueued {requeued} orphan pages")

        if not options["skip_stranded"]:
            failed = fail_stranded_pages(grace=grace)
            self.stdout.write(f"Failed {failed} stranded pages")

        self.stdout.write(self.style.SUCCESS("Reconciliation complete"))
