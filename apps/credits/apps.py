"""Django app configuration for the credits app."""

from django.apps import AppConfig


class CreditsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.credits"
    verbose_name = "Credit Ledger"
