import enum

from sqlalchemy import Column, DateTime, Enum, Integer, String
from sqlalchemy.orm import relationship

from app.features.scan.models.scan import WcagLevel
from app.platform.db.base import BaseModel


class BatchStatus(enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    STALE = "STALE"


class BatchScan(BaseModel):
    """A group of page scans submitted together for one site."""
    __tablename__ = "batch_scans"

    homepage_url = Column(String(2048), nullable=False)
    wcag_level = Column(Enum(WcagLevel), default=WcagLevel.AA, nullable=False)
    status = Column(Enum(BatchStatus), default=BatchStatus.PENDING, nullable=False, index=True)

    notification_email = Column(String(255), nullable=True)

    total_urls = Column(Integer, default=0, nullable=False)
    completed_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)

    completed_at = Column(DateTime(timezone=True), nullable=True)

    scans = relationship("Scan", back_populates="batch", lazy="selectin", order_by="Scan.created_at")
