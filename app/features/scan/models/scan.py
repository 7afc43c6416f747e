import enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from app.platform.db.base import BaseModel


class ScanStatus(enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class WcagLevel(enum.Enum):
    A = "A"
    AA = "AA"
    AAA = "AAA"


class IssueImpact(enum.Enum):
    """Issue severity, most severe first"""
    CRITICAL = "CRITICAL"
    SERIOUS = "SERIOUS"
    MODERATE = "MODERATE"
    MINOR = "MINOR"


class Scan(BaseModel):
    """
    A single page accessibility scan.

    Only the columns the job pipeline reads or writes live here: the scanner
    fills the result counters, the dispatcher clears ``notification_email``
    and the AI verification worker writes the criteria coverage.
    """
    __tablename__ = "scans"

    batch_id = Column(String, ForeignKey("batch_scans.id", ondelete="SET NULL"), nullable=True, index=True)

    url = Column(String(2048), nullable=False)
    wcag_level = Column(Enum(WcagLevel), default=WcagLevel.AA, nullable=False)
    status = Column(Enum(ScanStatus), default=ScanStatus.PENDING, nullable=False, index=True)

    # PII, cleared once the completion email reached a terminal outcome
    notification_email = Column(String(255), nullable=True)

    duration_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Result summary
    total_issues = Column(Integer, default=0, nullable=False)
    critical_count = Column(Integer, default=0, nullable=False)
    serious_count = Column(Integer, default=0, nullable=False)
    moderate_count = Column(Integer, default=0, nullable=False)
    minor_count = Column(Integer, default=0, nullable=False)
    passed_checks = Column(Integer, default=0, nullable=False)

    # AI criteria verification
    ai_enabled = Column(Boolean, default=False, nullable=False)
    ai_status = Column(String(32), nullable=True)
    criteria_verified = Column(Integer, nullable=True)
    criteria_passed = Column(Integer, nullable=True)
    criteria_failed = Column(Integer, nullable=True)
    criteria_not_tested = Column(Integer, nullable=True)
    ai_tokens_used = Column(Integer, nullable=True)
    ai_completed_at = Column(DateTime(timezone=True), nullable=True)

    issues = relationship("ScanIssue", back_populates="scan", lazy="selectin", cascade="all, delete-orphan")
    batch = relationship("BatchScan", back_populates="scans", lazy="select")

    __table_args__ = (
        Index("idx_scans_status_completed", "status", "completed_at"),
    )


class ScanIssue(BaseModel):
    """One rule violation found on a scanned page."""
    __tablename__ = "scan_issues"

    scan_id = Column(String, ForeignKey("scans.id", ondelete="CASCADE"), nullable=False, index=True)

    rule_id = Column(String(100), nullable=False)
    impact = Column(Enum(IssueImpact), nullable=False, index=True)
    description = Column(Text, nullable=False)
    help_text = Column(Text, nullable=False)
    help_url = Column(String(2048), nullable=False)
    wcag_criteria = Column(JSON, nullable=True)  # e.g. ["1.1.1", "4.1.2"]

    css_selector = Column(String(1024), nullable=False)
    html_snippet = Column(Text, nullable=False)

    scan = relationship("Scan", back_populates="issues")
