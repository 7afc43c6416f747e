from celery import Celery
from kombu import Queue

from app.platform.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - reports.generation: Report rendering and upload (JSON, CSV, PDF)
    - notifications.email: Scan completion emails, one job per subject
    - verification: AI criteria verification, long running and rate limited

    Jobs are acknowledged late and requeued if a worker dies, so every task
    must be safe to run twice for the same subject.
    """
    celery_app = Celery(
        "a11y_pipeline",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=settings.CELERY_TASK_TRACK_STARTED,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,

        # Finished job results kept for a day, failures inspected from the dead letter table
        result_expires=settings.CELERY_RESULT_EXPIRES,

        task_routes={
            "app.features.reports.workers.tasks.generate_report": {"queue": "reports.generation"},
            "app.features.reports.workers.tasks.fail_stale_reports": {"queue": "reports.generation"},
            "app.features.notifications.workers.tasks.send_notification_email": {
                "queue": "notifications.email"
            },
            "app.features.verification.workers.tasks.run_criteria_verification": {
                "queue": "verification"
            },
        },

        task_queues=(
            Queue("default"),
            Queue("reports.generation"),
            Queue("notifications.email"),
            Queue("verification"),
        ),

        task_default_queue="default",

        worker_prefetch_multiplier=1,

        task_acks_late=True,
        task_reject_on_worker_lost=True,

        beat_schedule={
            "fail-stale-reports": {
                "task": "app.features.reports.workers.tasks.fail_stale_reports",
                "schedule": 600.0,  # every 10 minutes
            },
        },
    )

    celery_app.autodiscover_tasks(
        [
            "app.features.reports.workers",
            "app.features.notifications.workers",
            "app.features.verification.workers",
        ]
    )

    return celery_app


celery_app = create_celery_app()
