import asyncio
from typing import Any, Dict, Optional

from app.features.reports.models.report import ReportFormat
from app.features.reports.schemas.export import GenerationJob
from app.features.reports.services.report_generator import ReportGenerator
from app.platform.celery_app import celery_app
from app.platform.config import settings
from app.platform.db.session import get_async_db
from app.platform.exceptions import PipelineError
from app.platform.logger import get_logger
from app.platform.services.storage import get_blob_store

logger = get_logger(__name__)


def generation_countdown(retries: int) -> int:
    """Seconds before the next attempt: 5, 10, 20, ..."""
    return settings.REPORT_GENERATION_BACKOFF_SECONDS * (2 ** retries)


def enqueue_report_generation(job: GenerationJob) -> Optional[str]:
    result = generate_report.apply_async(
        kwargs={"subject_id": job.subject_id, "format": job.format.value, "report_id": job.report_id},
        queue="reports.generation",
    )
    return result.id


async def _generate(subject_id: str, fmt: ReportFormat, report_id: str, attempt: int, task_id: str):
    async with get_async_db() as db:
        generator = ReportGenerator(db, get_blob_store())
        return await generator.generate(subject_id, fmt, report_id, attempt=attempt, task_id=task_id)


async def _mark_failed(report_id: str, error_message: str) -> bool:
    async with get_async_db() as db:
        return await ReportGenerator(db, get_blob_store()).fail(report_id, error_message)


async def _fail_stale() -> int:
    async with get_async_db() as db:
        return await ReportGenerator(db, get_blob_store()).fail_stale()


@celery_app.task(
    bind=True,
    name="app.features.reports.workers.tasks.generate_report",
    max_retries=settings.REPORT_GENERATION_MAX_ATTEMPTS - 1,
)
def generate_report(self, subject_id: str, format: str, report_id: str) -> Dict[str, Any]:
    """
    Render a report and upload it.

    Retries with exponential backoff; a non retryable error or the last
    failed attempt moves the record to FAILED so the pair can be re-requested.
    """
    fmt = ReportFormat(format)
    attempt = self.request.retries + 1
    logger.info(f"[{subject_id}] Report job {self.request.id} attempt {attempt} for report {report_id}")

    try:
        return asyncio.run(_generate(subject_id, fmt, report_id, attempt, self.request.id))
    except Exception as e:
        terminal = isinstance(e, PipelineError) and not e.retryable
        if terminal or self.request.retries >= self.max_retries:
            logger.error(f"[{subject_id}] Report {report_id} failed permanently: {e}")
            asyncio.run(_mark_failed(report_id, str(e)))
            raise

        countdown = generation_countdown(self.request.retries)
        logger.warning(f"[{subject_id}] Report {report_id} attempt {attempt} failed, retrying in {countdown}s: {e}")
        raise self.retry(exc=e, countdown=countdown)


@celery_app.task(name="app.features.reports.workers.tasks.fail_stale_reports")
def fail_stale_reports() -> int:
    """Fail records whose generation job was lost, so their pair is not blocked."""
    failed = asyncio.run(_fail_stale())
    if failed:
        logger.warning(f"Failed {failed} stale report(s)")
    return failed
