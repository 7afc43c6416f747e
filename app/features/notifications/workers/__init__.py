"""Celery workers module - imports task modules for autodiscovery."""

from app.features.notifications.workers import tasks  # noqa: F401
