"""
Export Service

Answers "give me this report" requests. A finished report is returned as a
presigned URL, an in-flight one as "generating", and otherwise exactly one
generation job is started for the (subject, format) pair.

The service never waits for generation and never mutates a record beyond
creating or re-arming it; the generation worker owns every later transition.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.reports.models.report import Report, ReportFormat, ReportStatus
from app.features.reports.schemas.export import ExportResponse, ExportStatus, GenerationJob
from app.features.reports.services.report_repository import ReportRepository
from app.features.scan.services.subjects import find_subject
from app.platform.config import settings
from app.platform.exceptions import ConsistencyError, PipelineError
from app.platform.logger import get_logger
from app.platform.services.storage import S3BlobStore

logger = get_logger(__name__)

REPORT_NOT_FOUND = "Report not found"
REPORT_FILE_MISSING = "Report completed but file not found"
REPORT_GENERATION_FAILED = "Report generation failed"
SUBJECT_NOT_FOUND = "Scan or batch scan not found"

# Takes the job payload, returns the queue's task id
EnqueueGeneration = Callable[[GenerationJob], Optional[str]]


class ExportError(PipelineError):
    """Any store, queue or blob store failure while serving an export request."""

    code = "EXPORT_FAILED"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class ExportService:
    def __init__(
        self,
        db: AsyncSession,
        enqueue: EnqueueGeneration,
        blob_store: S3BlobStore,
        url_ttl_seconds: int = settings.S3_PRESIGNED_URL_EXPIRES_SECONDS,
    ):
        self.repo = ReportRepository(db)
        self.db = db
        self.enqueue = enqueue
        self.blob_store = blob_store
        self.url_ttl_seconds = url_ttl_seconds

    async def request_export(self, subject_id: str, fmt: ReportFormat) -> ExportResponse:
        try:
            return await self._request_export(subject_id, fmt)
        except ExportError:
            raise
        except Exception as e:
            logger.error(f"Export request failed for {subject_id}/{fmt.value}: {e}")
            raise ExportError("Failed to request report export", cause=e) from e

    async def get_export_status(self, report_id: str) -> ExportResponse:
        """Read only status poll by report id."""
        try:
            record = await self.repo.get_by_id(report_id)
            return self._to_response(record, report_id=report_id)
        except Exception as e:
            raise ExportError("Failed to get report status", cause=e) from e

    async def get_export_status_for_subject(self, subject_id: str, fmt: ReportFormat) -> ExportResponse:
        """Read only status poll by (subject, format). Never starts a generation."""
        try:
            record = await self.repo.get_by_subject_and_format(subject_id, fmt)
            return self._to_response(record)
        except Exception as e:
            raise ExportError("Failed to get report status", cause=e) from e

    async def _request_export(self, subject_id: str, fmt: ReportFormat) -> ExportResponse:
        if await find_subject(self.db, subject_id) is None:
            return ExportResponse(status=ExportStatus.FAILED, error_message=SUBJECT_NOT_FOUND)

        record = await self.repo.get_by_subject_and_format(subject_id, fmt)

        if record is None:
            record, created = await self.repo.create_pending(subject_id, fmt)
            if created:
                return await self._start_generation(record)
            return self._to_response(record)

        if record.status == ReportStatus.FAILED:
            if await self.repo.reset_failed_to_pending(record.id):
                logger.info(f"Re-armed failed report {record.id} for {subject_id}/{fmt.value}")
                return await self._start_generation(record)
            # Another request re-armed it first
            record = await self.repo.get_by_id(record.id)

        return self._to_response(record)

    async def _start_generation(self, record: Report) -> ExportResponse:
        job = GenerationJob(subject_id=record.subject_id, format=record.format, report_id=record.id)
        try:
            task_id = self.enqueue(job)
        except Exception as e:
            # Leave the pair re-requestable instead of blocked behind a job that never ran
            await self.repo.mark_failed(record.id, f"Failed to enqueue report generation: {e}")
            raise ExportError("Failed to enqueue report generation", cause=e) from e

        logger.info(
            f"Queued {record.format.value} generation for {record.subject_id} "
            f"(report {record.id}, task {task_id})"
        )
        return ExportResponse(status=ExportStatus.GENERATING, report_id=record.id)

    def _to_response(self, record: Optional[Report], report_id: Optional[str] = None) -> ExportResponse:
        if record is None:
            return ExportResponse(status=ExportStatus.FAILED, report_id=report_id, error_message=REPORT_NOT_FOUND)

        if record.status in (ReportStatus.PENDING, ReportStatus.GENERATING):
            return ExportResponse(status=ExportStatus.GENERATING, report_id=record.id)

        if record.status == ReportStatus.FAILED:
            return ExportResponse(
                status=ExportStatus.FAILED, report_id=record.id, error_message=REPORT_GENERATION_FAILED
            )

        if not record.storage_key:
            anomaly = ConsistencyError(f"Report {record.id} is COMPLETED without a storage key")
            logger.error(f"{anomaly.code}: {anomaly.message}")
            return ExportResponse(status=ExportStatus.FAILED, report_id=record.id, error_message=REPORT_FILE_MISSING)

        url = self.blob_store.presigned_url(record.storage_key, self.url_ttl_seconds)
        return ExportResponse(
            status=ExportStatus.READY,
            report_id=record.id,
            url=url,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.url_ttl_seconds),
        )
