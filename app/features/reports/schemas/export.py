"""
Export Schemas

Request and response models for report export requests and status polling.
"""
import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.features.reports.models.report import ReportFormat


class ExportStatus(str, enum.Enum):
    READY = "ready"
    GENERATING = "generating"
    FAILED = "failed"


class ExportRequest(BaseModel):
    """Request a report for a scan or batch scan."""
    subject_id: str = Field(..., min_length=1, max_length=64)
    format: ReportFormat

    @field_validator("subject_id")
    @classmethod
    def strip_subject_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("subject_id must not be blank")
        return value

    @field_validator("format", mode="before")
    @classmethod
    def normalize_format(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "subject_id": "batch-456",
                "format": "pdf"
            }
        }
    )


class ExportResponse(BaseModel):
    """
    Export status as seen by the caller.

    ``report_id`` is always sent and is null only when no record exists, as
    for an unknown subject. ``url`` and ``expires_at`` are present only when
    ``status`` is ready, ``error_message`` only when it is failed.
    """
    status: ExportStatus
    report_id: Optional[str] = None
    url: Optional[str] = None
    expires_at: Optional[datetime] = None
    error_message: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "ready",
                "report_id": "0192f7a4-5c1e-7b7e-9a51-2a3c4d5e6f70",
                "url": "https://reports.example.com/reports/batch-456/report.pdf?X-Amz-Signature=...",
                "expires_at": "2026-01-01T12:00:00Z"
            }
        }
    )


class GenerationJob(BaseModel):
    """Payload enqueued for the report generation worker."""
    subject_id: str
    format: ReportFormat
    report_id: str
