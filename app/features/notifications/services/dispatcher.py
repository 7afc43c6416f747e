"""
Notification Dispatcher

Consumes notification jobs: loads the subject, renders the email for the job
kind, sends it through the EmailRouter and then clears the stored recipient
address (GDPR).

The address is cleared only after a terminal outcome: a successful send, a
deliberate skip, or the last failed attempt (handle_permanent_failure). A
failed attempt raises and leaves the address in place for the next retry.
"""
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.features.notifications.models.dead_letter import NotificationDeadLetter
from app.features.notifications.schemas.notification import (
    NotificationJob,
    NotificationKind,
    NotificationResult,
)
from app.features.notifications.services.email_router import EmailRouter
from app.features.notifications.services.email_templates import render_email
from app.features.scan.models.batch_scan import BatchScan
from app.features.scan.models.scan import Scan, ScanStatus
from app.features.scan.services.subjects import Subject, find_subject_sync
from app.platform.config import settings
from app.platform.db.session import get_sync_db
from app.platform.exceptions import NotFoundError, PipelineError, TransientInfrastructureError, ValidationError
from app.platform.logger import get_logger, job_logger

logger = get_logger(__name__)

TOP_CRITICAL_URLS = 5


class NotificationError(TransientInfrastructureError):
    code = "NOTIFICATION_FAILED"


class SubjectNotFoundError(NotFoundError):
    code = "SUBJECT_NOT_FOUND"


class NotificationValidationError(ValidationError):
    code = "NOTIFICATION_INVALID"


class NotificationDispatcher:
    def __init__(
        self,
        router: EmailRouter,
        session_factory: Callable[[], Session] = get_sync_db,
        min_scan_duration_ms: Optional[int] = None,
        app_url: Optional[str] = None,
    ):
        self.router = router
        self.session_factory = session_factory
        self.min_scan_duration_ms = (
            settings.NOTIFICATION_MIN_SCAN_DURATION_MS if min_scan_duration_ms is None else min_scan_duration_ms
        )
        self.app_url = (app_url or settings.APP_URL).rstrip("/")

    def process(self, job: NotificationJob) -> NotificationResult:
        """
        Deliver one notification.

        Raises SubjectNotFoundError or NotificationValidationError for jobs
        that can never succeed, and lets provider errors propagate untouched
        so the queue's retry policy applies.
        """
        log = job_logger(logger, job.subject_id)
        db = self.session_factory()
        try:
            subject = find_subject_sync(db, job.subject_id)
            if subject is None:
                raise SubjectNotFoundError(f"Scan or batch scan not found: {job.subject_id}")

            self._validate(job, subject)

            if not subject.notification_email:
                log.info(f"{job.kind.value}: address already cleared, nothing to send")
                return NotificationResult(sent=False, email_nullified=True, skipped_reason="already_delivered")

            if self._is_too_fast(job, subject):
                log.info(
                    f"{job.kind.value}: scan took {subject.duration_ms}ms, under "
                    f"{self.min_scan_duration_ms}ms, skipping email"
                )
                self._clear_address(db, subject)
                return NotificationResult(sent=False, email_nullified=True, skipped_reason="below_duration_threshold")

            content = render_email(job.kind, self._context(job, subject))
            result = self.router.send(job.recipient_address, content)
            log.info(f"{job.kind.value}: sent via {result.provider} (message id {result.message_id})")

            # An AI scan gets a second email; its address is cleared after that one
            if job.kind == NotificationKind.SCAN_COMPLETE and subject.ai_enabled:
                log.info("AI verification pending, keeping address for the AI email")
                nullified = False
            else:
                self._clear_address(db, subject)
                nullified = True

            return NotificationResult(
                sent=True,
                email_nullified=nullified,
                message_id=result.message_id,
                provider=result.provider,
            )
        finally:
            db.close()

    def handle_permanent_failure(self, job: NotificationJob, error: BaseException, attempts: int) -> Optional[str]:
        """
        Called once retries are exhausted: clear the address and keep a
        dead letter row for inspection. Returns the dead letter id.
        """
        return self.record_permanent_failure(job.subject_id, job.kind.value, error, attempts)

    def record_permanent_failure(self, subject_id: str, kind: str, error: BaseException, attempts: int) -> Optional[str]:
        """Same as handle_permanent_failure, for payloads that never became a NotificationJob."""
        log = job_logger(logger, subject_id)
        log.error(f"{kind}: permanently failed after {attempts} attempt(s): {error}")

        db = self.session_factory()
        try:
            subject = find_subject_sync(db, subject_id)
            if subject is not None:
                self._clear_address(db, subject)
                log.info("GDPR: address cleared after permanent failure")
            else:
                log.warning("GDPR: subject no longer exists, no address to clear")

            dead_letter = NotificationDeadLetter(
                subject_id=subject_id,
                kind=kind[:32],
                provider=getattr(error, "provider", None),
                attempts=attempts,
                error_code=error.code if isinstance(error, PipelineError) else type(error).__name__,
                error_message=str(error)[:2000],
            )
            db.add(dead_letter)
            db.commit()
            return dead_letter.id
        except SQLAlchemyError as e:
            db.rollback()
            raise NotificationError(f"Could not record permanent failure for {subject_id}", cause=e) from e
        finally:
            db.close()

    def _validate(self, job: NotificationJob, subject: Subject) -> None:
        if job.kind == NotificationKind.BATCH_COMPLETE:
            if not isinstance(subject, BatchScan):
                raise NotificationValidationError(f"{job.subject_id} is not a batch scan")
            return

        if not isinstance(subject, Scan):
            raise NotificationValidationError(f"{job.subject_id} is not a scan")
        if job.kind == NotificationKind.SCAN_COMPLETE and subject.status != ScanStatus.COMPLETED:
            raise NotificationValidationError(f"Scan {job.subject_id} has no result data")
        if job.kind == NotificationKind.AI_SCAN_COMPLETE and subject.ai_status != "COMPLETED":
            raise NotificationValidationError(
                f"Scan {job.subject_id} has incomplete AI data (status: {subject.ai_status})"
            )

    def _is_too_fast(self, job: NotificationJob, subject: Subject) -> bool:
        if job.kind != NotificationKind.SCAN_COMPLETE or subject.duration_ms is None:
            return False
        return subject.duration_ms < self.min_scan_duration_ms

    def _clear_address(self, db: Session, subject: Subject) -> None:
        # Unconditional, so replays after a terminal outcome are harmless
        try:
            db.query(type(subject)).filter(type(subject).id == subject.id).update(
                {"notification_email": None}, synchronize_session="fetch"
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise NotificationError(f"Could not clear notification address for {subject.id}", cause=e) from e

    def _context(self, job: NotificationJob, subject: Subject) -> Dict[str, Any]:
        if isinstance(subject, BatchScan):
            return self._batch_context(subject)

        context = {
            "url": subject.url,
            "results_url": f"{self.app_url}/scan/{subject.id}",
            "issue_count": subject.total_issues,
            "critical_count": subject.critical_count,
            "serious_count": subject.serious_count,
            "moderate_count": subject.moderate_count,
            "minor_count": subject.minor_count,
        }
        if job.kind == NotificationKind.SCAN_FAILED:
            context["error"] = subject.error_message or "Unknown error occurred"
        if job.kind == NotificationKind.AI_SCAN_COMPLETE:
            context.update(
                criteria_verified=subject.criteria_verified or 0,
                criteria_passed=subject.criteria_passed or 0,
                criteria_failed=subject.criteria_failed or 0,
                criteria_not_tested=subject.criteria_not_tested or 0,
            )
        return context

    def _batch_context(self, batch: BatchScan) -> Dict[str, Any]:
        completed = [scan for scan in batch.scans if scan.status == ScanStatus.COMPLETED]
        top_critical = sorted(
            (scan for scan in completed if scan.critical_count > 0),
            key=lambda scan: scan.critical_count,
            reverse=True,
        )[:TOP_CRITICAL_URLS]

        return {
            "homepage_url": batch.homepage_url,
            "results_url": f"{self.app_url}/batch/{batch.id}",
            "total_urls": batch.total_urls,
            "completed_count": batch.completed_count,
            "failed_count": batch.failed_count,
            "issue_count": sum(scan.total_issues for scan in completed),
            "critical_count": sum(scan.critical_count for scan in completed),
            "serious_count": sum(scan.serious_count for scan in completed),
            "moderate_count": sum(scan.moderate_count for scan in completed),
            "minor_count": sum(scan.minor_count for scan in completed),
            "passed_checks": sum(scan.passed_checks for scan in completed),
            "top_critical_urls": [{"url": scan.url, "critical_count": scan.critical_count} for scan in top_critical],
        }
