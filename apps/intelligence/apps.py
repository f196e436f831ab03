"""Django app configuration for the intelligence app."""

from django.apps import AppConfig


class IntelligenceConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.intelligence"
    verbose_name = "Intelligence"
