"""Celery application bootstrap for this Django project.

Workers run the incident pipeline off the request path:
intake → understand → decide → review → audit, plus batch fan-out,
correction reprocessing and workflow-runner callbacks.

Run workers with something like:
- celery -A config worker -l info

Broker/result backend are configured via Django settings (see config/settings.py).
"""

from __future__ import annotations

import os

from celery import Celery

from config.env import load_env

load_env()

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("incident-intake")

# Load Celery config from Django settings using CELERY_* namespace.
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
