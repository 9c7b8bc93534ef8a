"""
Celery configuration for the Content Quality Auditor service.

Job processing runs in the worker pool (`manage.py run_workers`); Celery
only carries periodic maintenance such as the orphan page sweep.
"""

import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("content_auditor")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Configure task queues for different operations
app.conf.task_queues = {
    "maintenance": {
        "exchange": "maintenance",
        "routing_key": "maintenance",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}

# Default task routing
app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

# Route specific tasks to their queues
app.conf.task_routes = {
    "auditor.tasks.reconcile_orphan_pages": {"queue": "maintenance"},
    "auditor.tasks.log_queue_depth": {"queue": "maintenance"},
}

# Configure Celery Beat schedule for periodic tasks
app.conf.beat_schedule = {
    "reconcile-orphan-pages-every-5-minutes": {
        "task": "auditor.tasks.reconcile_orphan_pages",
        "schedule": crontab(minute="*/5"),  # Every 5 minutes
    },
    "log-queue-depth-every-15-minutes": {
        "task": "auditor.tasks.log_queue_depth",
        "schedule": crontab(minute="*/15"),  # Every 15 minutes
    },
}
