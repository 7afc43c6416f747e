from typing import Any, Dict, Optional

from pydantic import ValidationError as PayloadValidationError

from app.features.notifications.schemas.notification import NotificationJob
from app.features.notifications.services.dispatcher import NotificationDispatcher, NotificationValidationError
from app.features.notifications.services.email_router import EmailRouter
from app.features.notifications.services.email_routing import load_email_routing_config
from app.features.notifications.services.retry_policy import notification_retry_policy
from app.platform.celery_app import celery_app
from app.platform.config import settings
from app.platform.exceptions import PipelineError
from app.platform.logger import get_logger

logger = get_logger(__name__)

retry_policy = notification_retry_policy()

_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """Build the router and dispatcher on first use in the worker process."""
    global _dispatcher
    if _dispatcher is None:
        router = EmailRouter(load_email_routing_config(settings))
        _dispatcher = NotificationDispatcher(router)
    return _dispatcher


def enqueue_notification(job: NotificationJob) -> str:
    result = send_notification_email.apply_async(
        kwargs=job.model_dump(mode="json"),
        queue="notifications.email",
    )
    return result.id


@celery_app.task(
    bind=True,
    name="app.features.notifications.workers.tasks.send_notification_email",
    max_retries=retry_policy.max_retries,
)
def send_notification_email(self, subject_id: str, recipient_address: str, kind: str) -> Dict[str, Any]:
    """
    Send one scan notification email.

    Failed attempts are retried with exponential backoff. Jobs that can never
    succeed and the last failed attempt go through handle_permanent_failure,
    which clears the address and records a dead letter.
    """
    attempt = self.request.retries + 1
    logger.info(f"[{subject_id}] Notification job {self.request.id} ({kind}) attempt {attempt}")

    dispatcher = get_dispatcher()

    try:
        job = NotificationJob(subject_id=subject_id, recipient_address=recipient_address, kind=kind)
    except PayloadValidationError as e:
        logger.error(f"[{subject_id}] Invalid notification payload: {e}")
        error = NotificationValidationError(f"Invalid notification payload for {subject_id}", cause=e)
        # Terminal, so the stored address still has to go
        if isinstance(subject_id, str) and subject_id.strip():
            dispatcher.record_permanent_failure(subject_id, str(kind), error, attempts=attempt)
        raise error from e

    try:
        return dispatcher.process(job).model_dump()
    except Exception as e:
        terminal = isinstance(e, PipelineError) and not e.retryable
        if terminal or retry_policy.is_exhausted(attempt):
            dispatcher.handle_permanent_failure(job, e, attempts=attempt)
            raise

        countdown = retry_policy.countdown(self.request.retries)
        logger.warning(f"[{subject_id}] Notification attempt {attempt} failed, retrying in {countdown}s: {e}")
        raise self.retry(exc=e, countdown=countdown)
