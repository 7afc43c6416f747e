"""
Report Generator

Body of the generation job: claim the record, build and render the report,
upload it, then complete the record. Safe to run again for the same record;
terminal records are left untouched.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.reports.models.report import ReportFormat, ReportStatus
from app.features.reports.services.report_builder import ReportBuildError, build_report
from app.features.reports.services.report_renderer import render_report
from app.features.reports.services.report_repository import ReportRepository
from app.features.scan.services.subjects import find_subject
from app.platform.config import settings
from app.platform.exceptions import PipelineError
from app.platform.logger import get_logger, job_logger
from app.platform.services.storage import S3BlobStore

logger = get_logger(__name__)


class ReportGenerationError(PipelineError):
    """Generation cannot succeed for this record, retrying will not help."""

    code = "GENERATION_FAILED"


def storage_key_for(subject_id: str, fmt: ReportFormat) -> str:
    return f"reports/{subject_id}/report.{fmt.extension}"


class ReportGenerator:
    def __init__(
        self,
        db: AsyncSession,
        blob_store: S3BlobStore,
        retention_days: int = settings.REPORT_RETENTION_DAYS,
    ):
        self.db = db
        self.repo = ReportRepository(db)
        self.blob_store = blob_store
        self.retention_days = retention_days

    async def generate(
        self,
        subject_id: str,
        fmt: ReportFormat,
        report_id: str,
        attempt: int = 1,
        task_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        log = job_logger(logger, subject_id)

        record = await self.repo.get_by_id(report_id)
        if record is None:
            raise ReportGenerationError(f"Report record {report_id} does not exist", code="REPORT_NOT_FOUND")

        if record.status in (ReportStatus.COMPLETED, ReportStatus.FAILED):
            log.info(f"Report {report_id} already {record.status.value}, skipping redelivered job")
            return {"report_id": report_id, "status": record.status.value, "skipped": True}

        if not await self.repo.mark_generating(report_id, attempt, task_id):
            record = await self.repo.get_by_id(report_id)
            current = record.status.value if record else "missing"
            log.info(f"Report {report_id} could not be claimed (status {current}), skipping")
            return {"report_id": report_id, "status": current, "skipped": True}

        log.info(f"Generating {fmt.value} report {report_id} (attempt {attempt})")

        subject = await find_subject(self.db, subject_id)
        if subject is None:
            raise ReportGenerationError(f"Subject {subject_id} not found", code="SUBJECT_NOT_FOUND")

        try:
            document = build_report(subject)
        except ReportBuildError as e:
            raise ReportGenerationError(str(e), code="SUBJECT_NOT_COMPLETE", cause=e) from e

        data = render_report(document, fmt)
        key = storage_key_for(subject_id, fmt)
        await asyncio.to_thread(self.blob_store.put, key, data, fmt.content_type)

        expires_at = datetime.now(timezone.utc) + timedelta(days=self.retention_days)
        if not await self.repo.mark_completed(report_id, key, len(data), expires_at):
            # The stale sweeper failed the record while this attempt was running
            log.warning(f"Report {report_id} uploaded to {key} but was no longer GENERATING")
            return {"report_id": report_id, "status": ReportStatus.FAILED.value, "storage_key": key}

        log.info(f"Report {report_id} completed: {key} ({len(data)} bytes)")
        return {
            "report_id": report_id,
            "status": ReportStatus.COMPLETED.value,
            "storage_key": key,
            "file_size_bytes": len(data),
        }

    async def fail(self, report_id: str, error_message: str) -> bool:
        return await self.repo.mark_failed(report_id, error_message)

    async def fail_stale(self, stale_after_minutes: int = settings.REPORT_STALE_AFTER_MINUTES) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=stale_after_minutes)
        failed = 0
        for record in await self.repo.find_stale(cutoff):
            if await self.repo.mark_failed(
                record.id, f"Generation did not finish within {stale_after_minutes} minutes"
            ):
                logger.warning(f"Marked stale report {record.id} ({record.subject_id}/{record.format.value}) as FAILED")
                failed += 1
        return failed
