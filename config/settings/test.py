"""
Test settings for the Content Quality Auditor service.

Uses in-memory SQLite and eager Celery for fast test execution.
"""

from .base import *

# Test mode
DEBUG = False

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

# Test database - in-memory SQLite for speed
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# Test Cache - use local memory cache
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "unique-snowflake",
    }
}

# Test Celery - run tasks synchronously
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

# Test logging - minimal output
LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["auditor"]["level"] = "WARNING"

# Password validators disabled for faster tests
AUTH_PASSWORD_VALIDATORS = []

# Use faster password hasher for tests
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

# Throttling would make API tests order dependent
REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {"audit_start": "10000/hour"}

# Disable Sentry in tests
SENTRY_DSN = ""

# Test auditor settings - fail fast
AUDITOR_REQUEST_TIMEOUT = 5
AUDITOR_POLL_INTERVAL = 0.01
AUDITOR_ERROR_INTERVAL = 0.01
AUDITOR_CRAWL_POLL_INTERVAL = 0.01
AUDITOR_CRAWL_LIMITER = "memory"
JINA_API_KEY = ""
OPENAI_API_KEY = ""
ANTHROPIC_API_KEY = ""
