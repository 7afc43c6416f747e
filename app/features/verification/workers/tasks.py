from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from celery.exceptions import Retry

from app.features.notifications.schemas.notification import NotificationJob, NotificationKind
from app.features.notifications.workers.tasks import enqueue_notification
from app.features.scan.models.scan import Scan
from app.features.verification.schemas.verification import VerificationOutcome
from app.features.verification.services.batch_processor import CriteriaBatchProcessor
from app.features.verification.services.checkpoint_store import CheckpointStore
from app.features.verification.services.verification_cache import CriteriaVerificationCache
from app.features.verification.services.verifier import OpenRouterCriteriaVerifier, SiteContent
from app.platform.celery_app import celery_app
from app.platform.config import settings
from app.platform.db.session import get_sync_db
from app.platform.exceptions import PipelineError, TransientInfrastructureError
from app.platform.logger import get_logger

logger = get_logger(__name__)

VERIFICATION_MAX_RETRIES = 2
VERIFICATION_RETRY_SECONDS = 300

_processor: Optional[CriteriaBatchProcessor] = None


class PageFetchError(TransientInfrastructureError):
    code = "PAGE_FETCH_FAILED"


def get_processor() -> CriteriaBatchProcessor:
    global _processor
    if _processor is None:
        _processor = CriteriaBatchProcessor(
            checkpoint_store=CheckpointStore(settings.CHECKPOINT_DIR),
            verifier=OpenRouterCriteriaVerifier(),
            cache=CriteriaVerificationCache(),
            batch_size=settings.VERIFICATION_BATCH_SIZE,
            delay_between_batches=settings.VERIFICATION_BATCH_DELAY_SECONDS,
        )
    return _processor


def fetch_page_html(url: str) -> str:
    try:
        response = httpx.get(
            url,
            timeout=settings.VERIFICATION_FETCH_TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": f"{settings.APP_NAME} accessibility verifier"},
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise PageFetchError(f"Could not fetch {url}: {e}", cause=e) from e
    return response.text


def enqueue_criteria_verification(scan_id: str) -> str:
    result = run_criteria_verification.apply_async(kwargs={"scan_id": scan_id}, queue="verification")
    return result.id


def _commit_coverage(db, scan: Scan, outcome: VerificationOutcome) -> None:
    coverage = outcome.coverage
    scan.criteria_verified = coverage.criteria_verified
    scan.criteria_passed = coverage.criteria_passed
    scan.criteria_failed = coverage.criteria_failed
    scan.criteria_not_tested = coverage.criteria_not_tested
    scan.ai_tokens_used = coverage.tokens_used
    scan.ai_status = "COMPLETED"
    scan.ai_completed_at = datetime.now(timezone.utc)
    db.commit()


def _mark_failed(db, scan: Scan) -> None:
    # No AI email will follow, so the address kept for it goes now
    db.rollback()
    scan.ai_status = "FAILED"
    scan.notification_email = None
    db.commit()


@celery_app.task(
    bind=True,
    name="app.features.verification.workers.tasks.run_criteria_verification",
    max_retries=VERIFICATION_MAX_RETRIES,
)
def run_criteria_verification(self, scan_id: str) -> Dict[str, Any]:
    """
    Verify a completed scan against the WCAG criteria of its level.

    Resumes from the scan's checkpoint when one exists. The checkpoint is
    cleared only once the coverage is committed to the scan row, then the
    AI completion email is queued if the scan still carries an address.
    """
    attempt = self.request.retries + 1
    logger.info(f"[{scan_id}] Criteria verification job {self.request.id} attempt {attempt}")

    db = get_sync_db()
    try:
        scan = db.query(Scan).filter(Scan.id == scan_id).first()
        if scan is None:
            logger.error(f"[{scan_id}] Scan not found, nothing to verify")
            return {"scan_id": scan_id, "status": "skipped", "reason": "scan_not_found"}
        if not scan.ai_enabled or scan.ai_status == "COMPLETED":
            logger.info(f"[{scan_id}] Verification not needed (ai_status={scan.ai_status})")
            return {"scan_id": scan_id, "status": "skipped", "reason": "not_required"}

        try:
            scan.ai_status = "PROCESSING"
            db.commit()

            site = SiteContent(url=scan.url, html=fetch_page_html(scan.url))
            existing_issue_ids = [issue.id for issue in scan.issues]
            outcome = get_processor().process_criteria_batches(scan_id, site, existing_issue_ids, scan.wcag_level)

            if not outcome.complete and self.request.retries < self.max_retries:
                logger.warning(f"[{scan_id}] Verification incomplete, retrying unverified batches later")
                raise self.retry(countdown=VERIFICATION_RETRY_SECONDS)

            _commit_coverage(db, scan, outcome)
        except Retry:
            raise
        except Exception as e:
            retryable = not isinstance(e, PipelineError) or e.retryable
            if retryable and self.request.retries < self.max_retries:
                logger.warning(f"[{scan_id}] Verification attempt {attempt} failed, retrying: {e}")
                raise self.retry(exc=e, countdown=VERIFICATION_RETRY_SECONDS)
            logger.error(f"[{scan_id}] Verification failed permanently: {e}")
            _mark_failed(db, scan)
            raise

        get_processor().checkpoint_store.clear_checkpoint(scan_id)

        if scan.notification_email:
            enqueue_notification(
                NotificationJob(
                    subject_id=scan_id,
                    recipient_address=scan.notification_email,
                    kind=NotificationKind.AI_SCAN_COMPLETE,
                )
            )

        logger.info(
            f"[{scan_id}] Verification committed: {outcome.coverage.criteria_verified} criteria, "
            f"{outcome.batches_processed} batch(es) run, {outcome.batches_skipped} resumed"
        )
        return {
            "scan_id": scan_id,
            "status": "completed",
            "complete": outcome.complete,
            "criteria_verified": outcome.coverage.criteria_verified,
            "tokens_used": outcome.coverage.tokens_used,
        }
    finally:
        db.close()
