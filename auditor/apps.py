"""
Auditor application configuration.
"""

from django.apps import AppConfig


class AuditorConfig(AppConfig):
    """Configuration for the auditor Django application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "auditor"
    verbose_name = "Content Quality Auditor"
