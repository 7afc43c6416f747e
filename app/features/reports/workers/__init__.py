"""Celery workers module - imports task modules for autodiscovery."""

from app.features.reports.workers import tasks  # noqa: F401
