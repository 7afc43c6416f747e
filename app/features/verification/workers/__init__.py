"""Celery workers module - imports task modules for autodiscovery."""

from app.features.verification.workers import tasks  # noqa: F401
