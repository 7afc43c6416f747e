"""
Imports every model so ``Base.metadata`` is complete for migrations and tests.
"""
from app.features.notifications.models.dead_letter import NotificationDeadLetter
from app.features.reports.models.report import Report
from app.features.scan.models.batch_scan import BatchScan
from app.features.scan.models.scan import Scan, ScanIssue
from app.platform.db.base import Base

__all__ = ["Base", "Scan", "ScanIssue", "BatchScan", "Report", "NotificationDeadLetter"]
