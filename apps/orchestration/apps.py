"""Django app configuration for the orchestration app."""

from django.apps import AppConfig


class OrchestrationConfig(AppConfig):
    """Pipeline runs, batches, corrections and their async/CLI entry points."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.orchestration"
    verbose_name = "Incident Pipeline"
