from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.reports.models.report import ReportFormat
from app.features.reports.schemas.export import ExportRequest, ExportStatus
from app.features.reports.services.export_service import ExportService
from app.features.reports.workers.tasks import enqueue_report_generation
from app.platform.db.session import get_db
from app.platform.exceptions import ValidationError
from app.platform.response import api_response
from app.platform.services.storage import get_blob_store

router = APIRouter(prefix="/reports", tags=["Reports"])

_MESSAGES = {
    ExportStatus.READY: "Report is ready",
    ExportStatus.GENERATING: "Report is being generated",
    ExportStatus.FAILED: "Report is not available",
}


def get_export_service(db: AsyncSession = Depends(get_db)) -> ExportService:
    return ExportService(db, enqueue=enqueue_report_generation, blob_store=get_blob_store())


def _respond(result, created: bool = False):
    status_code = status.HTTP_200_OK
    if created and result.status == ExportStatus.GENERATING:
        status_code = status.HTTP_202_ACCEPTED
    data = result.model_dump(mode="json", exclude_none=True)
    data.setdefault("report_id", None)
    return api_response(
        data=data,
        message=result.error_message or _MESSAGES[result.status],
        status_code=status_code,
    )


@router.post("/exports", status_code=status.HTTP_202_ACCEPTED)
async def request_export(
    payload: ExportRequest,
    service: ExportService = Depends(get_export_service),
):
    """
    Get a download link for a report, starting generation when needed.

    Returns ``ready`` with a presigned URL, ``generating`` while a job is
    running (poll the status endpoint), or ``failed`` with a reason.
    """
    result = await service.request_export(payload.subject_id, payload.format)
    return _respond(result, created=True)


@router.get("/exports/{report_id}")
async def get_export_status(
    report_id: str,
    service: ExportService = Depends(get_export_service),
):
    result = await service.get_export_status(report_id)
    return _respond(result)


@router.get("/exports")
async def get_export_status_for_subject(
    subject_id: str = Query(..., min_length=1),
    format: str = Query(..., description="pdf, json or csv"),
    service: ExportService = Depends(get_export_service),
):
    try:
        fmt = ReportFormat(format.upper())
    except ValueError:
        raise ValidationError(f"Unsupported report format: {format}")
    result = await service.get_export_status_for_subject(subject_id, fmt)
    return _respond(result)
