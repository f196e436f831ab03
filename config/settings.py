"""Django settings for the incident intake project.

Values come from the process environment; local overrides can live in a
``.env`` file (see config/env.py).
"""

from __future__ import annotations

import os
from pathlib import Path

from config.env import env_bool, env_list, load_env

BASE_DIR = Path(__file__).resolve().parent.parent

load_env(BASE_DIR)

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-insecure-secret-key-change-me")
DEBUG = env_bool("DJANGO_DEBUG", default=False)
ALLOWED_HOSTS = env_list("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django_object_actions",
    "django_json_widget",
    "apps.incidents",
    "apps.credits",
    "apps.intelligence",
    "apps.similarity",
    "apps.notify",
    "apps.orchestration",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("DJANGO_DB_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

# ---------------------------------------------------------------------------
# Celery
# ---------------------------------------------------------------------------

CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
CELERY_TASK_ALWAYS_EAGER = env_bool("CELERY_TASK_ALWAYS_EAGER", default=False)
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_ACCEPT_CONTENT = ["json"]

# ---------------------------------------------------------------------------
# Pipeline orchestration
# ---------------------------------------------------------------------------

# "direct" runs the stage executor in-process; "workflow" hands runs to the
# external workflow runner and completes them from its callback.
PIPELINE_EXECUTION_BACKEND = os.environ.get("PIPELINE_EXECUTION_BACKEND", "direct")
PIPELINE_WORKFLOW_NAME = os.environ.get("PIPELINE_WORKFLOW_NAME", "incident_intake_v1")

BATCH_DEFAULT_MAX_CONCURRENCY = int(os.environ.get("BATCH_DEFAULT_MAX_CONCURRENCY", "10"))
BATCH_SEQUENTIAL_BASELINE_MS = float(os.environ.get("BATCH_SEQUENTIAL_BASELINE_MS", "15000"))
REPROCESS_PAGE_SIZE = int(os.environ.get("REPROCESS_PAGE_SIZE", "100"))

# Opt-in legacy term for the human review predicate (e.g. 0.7). None disables it.
_legacy_threshold = os.environ.get("HUMAN_REVIEW_LEGACY_SCORE_THRESHOLD", "")
HUMAN_REVIEW_LEGACY_SCORE_THRESHOLD = float(_legacy_threshold) if _legacy_threshold else None

ORCHESTRATION_METRICS_BACKEND = os.environ.get("ORCHESTRATION_METRICS_BACKEND", "logging")
STATSD_HOST = os.environ.get("STATSD_HOST", "localhost")
STATSD_PORT = int(os.environ.get("STATSD_PORT", "8125"))
STATSD_PREFIX = os.environ.get("STATSD_PREFIX", "incidents")

WORKFLOW_RUNNER_BASE_URL = os.environ.get("WORKFLOW_RUNNER_BASE_URL", "")
WORKFLOW_RUNNER_API_KEY = os.environ.get("WORKFLOW_RUNNER_API_KEY", "")
WORKFLOW_RUNNER_CALLBACK_URL = os.environ.get("WORKFLOW_RUNNER_CALLBACK_URL", "")
WORKFLOW_RUNNER_TIMEOUT_S = int(os.environ.get("WORKFLOW_RUNNER_TIMEOUT_S", "60"))

# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

INTELLIGENCE_PROVIDER = os.environ.get("INTELLIGENCE_PROVIDER", "local")
INTELLIGENCE_PROVIDER_CONFIG: dict = {
    "api_key": os.environ.get("INTELLIGENCE_API_KEY", ""),
    "model": os.environ.get("INTELLIGENCE_MODEL", ""),
}
INTELLIGENCE_FALLBACK_ENABLED = env_bool("INTELLIGENCE_FALLBACK_ENABLED", default=True)

SIMILARITY_BACKEND = os.environ.get("SIMILARITY_BACKEND", "memory")
SIMILARITY_MIN_SCORE = float(os.environ.get("SIMILARITY_MIN_SCORE", "0.7"))
SIMILARITY_TOP_K = int(os.environ.get("SIMILARITY_TOP_K", "3"))
SIMILARITY_QDRANT_URL = os.environ.get("SIMILARITY_QDRANT_URL", "http://localhost:6333")
SIMILARITY_QDRANT_API_KEY = os.environ.get("SIMILARITY_QDRANT_API_KEY", "")
SIMILARITY_QDRANT_COLLECTION = os.environ.get("SIMILARITY_QDRANT_COLLECTION", "incidents")
SIMILARITY_VECTOR_SIZE = int(os.environ.get("SIMILARITY_VECTOR_SIZE", "768"))

CREDITS_DEFAULT_BALANCE = int(os.environ.get("CREDITS_DEFAULT_BALANCE", "10"))
CREDITS_PER_INCIDENT = int(os.environ.get("CREDITS_PER_INCIDENT", "1"))

# Best-effort delivery sinks run after a run completes: "email", "spreadsheet".
DELIVERY_SINKS = env_list("DELIVERY_SINKS", "")
DELIVERY_EMAIL_CONFIG: dict = {
    "smtp_host": os.environ.get("SMTP_HOST", ""),
    "smtp_port": int(os.environ.get("SMTP_PORT", "587")),
    "username": os.environ.get("SMTP_USER", ""),
    "password": os.environ.get("SMTP_PASS", ""),
    "use_tls": env_bool("SMTP_USE_TLS", default=True),
    "from_address": os.environ.get("SMTP_FROM", ""),
    "to_addresses": env_list("DELIVERY_EMAIL_TO", ""),
}
DELIVERY_SPREADSHEET_PATH = os.environ.get(
    "DELIVERY_SPREADSHEET_PATH", str(BASE_DIR / "exports" / "incidents.csv")
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "[{asctime}] {levelname} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
