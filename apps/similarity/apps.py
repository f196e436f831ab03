"""Django app configuration for the similarity app."""

from django.apps import AppConfig


class SimilarityConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.similarity"
    verbose_name = "Similarity Index"
