import enum

from sqlalchemy import BigInteger, Column, DateTime, Enum, Index, Integer, String, Text, UniqueConstraint

from app.platform.db.base import BaseModel


class ReportFormat(enum.Enum):
    PDF = "PDF"
    JSON = "JSON"
    CSV = "CSV"

    @property
    def extension(self) -> str:
        return self.value.lower()

    @property
    def content_type(self) -> str:
        return {
            ReportFormat.PDF: "application/pdf",
            ReportFormat.JSON: "application/json",
            ReportFormat.CSV: "text/csv",
        }[self]


class ReportStatus(enum.Enum):
    """Report lifecycle: PENDING -> GENERATING -> COMPLETED | FAILED"""
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


ACTIVE_STATUSES = (ReportStatus.PENDING, ReportStatus.GENERATING)


class Report(BaseModel):
    """
    Export record, one row per (subject, format).

    The subject is either a scan or a batch scan, so ``subject_id`` carries no
    foreign key. A failed row is re-armed in place instead of inserting a new one.
    """
    __tablename__ = "reports"

    subject_id = Column(String, nullable=False, index=True)
    format = Column(Enum(ReportFormat), nullable=False)
    status = Column(Enum(ReportStatus), default=ReportStatus.PENDING, nullable=False, index=True)

    # Set only once the file is uploaded
    storage_key = Column(String(1024), nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)  # stored file retention

    error_message = Column(Text, nullable=True)
    generation_attempts = Column(Integer, default=0, nullable=False)
    celery_task_id = Column(String(128), nullable=True)

    __table_args__ = (
        UniqueConstraint("subject_id", "format", name="uq_reports_subject_format"),
        Index("idx_reports_status_updated", "status", "updated_at"),
    )
