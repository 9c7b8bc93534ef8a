"""
Management command to run the audit worker pool.

Usage:
    python manage.py run_workers
    python manage.py run_workers --workers=5
    python manage.py run_workers --drain
"""

import logging
import signal
import threading

from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import connection

from auditor.queue import get_job_queue
from auditor.services.handlers import dispatch_job
from auditor.workers import WorkerPool, get_crawl_limiter

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Run worker threads that process crawl and analysis jobs."""

    help = "Process queued audit jobs until interrupted (SIGINT/SIGTERM)"

    def add_arguments(self, parser):
        parser.add_argument(
            "--workers",
            type=int,
            default=getattr(settings, "AUDITOR_WORKER_COUNT", 3),
            help="Number of worker threads (default: AUDITOR_WORKER_COUNT)",
        )
        parser.add_argument(
            "--poll-interval",
            type=float,
            default=getattr(settings, "AUDITOR_POLL_INTERVAL", 2.0),
            help="Seconds to wait when the queue is empty",
        )
        parser.add_argument(
            "--drain",
            action="store_true",
            help="Process jobs in the foreground until the queue is empty, then exit",
        )
        parser.add_argument(
            "--shutdown-timeout",
            type=float,
            default=30.0,
            help="Seconds to wait for each worker to finish its current job on shutdown",
        )

    def handle(self, *args, **options):
        worker_count = options["workers"]
        if worker_count < 1:
            self.stderr.write(self.style.ERROR("--workers must be at least 1"))
            return

        pool = WorkerPool(
            queue=get_job_queue(),
            handler=dispatch_job,
            limiter=get_crawl_limiter(),
            worker_count=worker_count,
            poll_interval=options["poll_interval"],
            error_interval=getattr(settings, "AUDITOR_ERROR_INTERVAL", 5.0),
        )

        if options["drain"]:
            processed = pool.drain()
            self.stdout.write(self.style.SUCCESS(f"Processed {processed} jobs, queue is empty"))
            return

        if worker_count > 1 and connection.vendor == "sqlite":
            self.stderr.write(
                self.style.WARNING(
                    f"SQLite cannot serve {worker_count} concurrent claimers; expect "
                    "\"database is locked\" store errors. Use --workers=1 or PostgreSQL."
                )
            )

        shutdown = threading.Event()

        def request_shutdown(signum, frame):
            logger.info(f"Received signal {signum}, stopping workers")
            shutdown.set()

        signal.signal(signal.SIGINT, request_shutdown)
        signal.signal(signal.SIGTERM, request_shutdown)

        pool.start()
        self.stdout.write(self.style.SUCCESS(f"Started {worker_count} workers"))

        try:
            while not shutdown.is_set() and pool.is_running:
                shutdown.wait(1.0)
        finally:
            pool.stop(timeout=options["shutdown_timeout"])

        self.stdout.write(self.style.SUCCESS("Workers stopped"))
