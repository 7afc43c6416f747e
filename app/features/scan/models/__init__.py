"""
Scan models package.
"""
from app.features.scan.models.scan import IssueImpact, Scan, ScanIssue, ScanStatus, WcagLevel
from app.features.scan.models.batch_scan import BatchScan, BatchStatus

__all__ = ["Scan", "ScanIssue", "ScanStatus", "WcagLevel", "IssueImpact", "BatchScan", "BatchStatus"]
