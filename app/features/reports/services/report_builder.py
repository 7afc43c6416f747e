from datetime import datetime, timezone
from typing import List, Optional

from app.features.reports.schemas.report_document import (
    CriteriaCoverage,
    IssueEntry,
    PageSummary,
    ReportDocument,
    SeverityCounts,
)
from app.features.scan.models.batch_scan import BatchScan
from app.features.scan.models.scan import IssueImpact, Scan, ScanStatus
from app.features.scan.services.subjects import Subject
from app.platform.config import settings

_IMPACT_ORDER = {impact: index for index, impact in enumerate(IssueImpact)}


class ReportBuildError(Exception):
    """The subject cannot be reported on yet."""


def _coverage(scan: Scan) -> Optional[CriteriaCoverage]:
    if scan.criteria_verified is None:
        return None
    return CriteriaCoverage(
        verified=scan.criteria_verified,
        passed=scan.criteria_passed or 0,
        failed=scan.criteria_failed or 0,
        not_tested=scan.criteria_not_tested or 0,
        ai_tokens_used=scan.ai_tokens_used,
    )


def _severity(scan: Scan) -> SeverityCounts:
    return SeverityCounts(
        critical=scan.critical_count,
        serious=scan.serious_count,
        moderate=scan.moderate_count,
        minor=scan.minor_count,
    )


def _issues(scan: Scan) -> List[IssueEntry]:
    ordered = sorted(scan.issues, key=lambda issue: (_IMPACT_ORDER[issue.impact], issue.rule_id))
    return [
        IssueEntry(
            id=issue.id,
            page_url=scan.url,
            rule_id=issue.rule_id,
            impact=issue.impact.value.lower(),
            description=issue.description,
            help=issue.help_text,
            help_url=issue.help_url,
            wcag_criteria=list(issue.wcag_criteria or []),
            selector=issue.css_selector,
            html=issue.html_snippet,
        )
        for issue in ordered
    ]


def _page_summary(scan: Scan) -> PageSummary:
    return PageSummary(
        scan_id=scan.id,
        url=scan.url,
        status=scan.status.value,
        total_issues=scan.total_issues,
        by_severity=_severity(scan),
        passed=scan.passed_checks,
        coverage=_coverage(scan),
    )


def build_scan_report(scan: Scan) -> ReportDocument:
    if scan.status != ScanStatus.COMPLETED:
        raise ReportBuildError(f"Scan {scan.id} is not complete (status: {scan.status.value})")

    return ReportDocument(
        generated_at=datetime.now(timezone.utc),
        tool_name=settings.APP_NAME,
        subject_id=scan.id,
        subject_kind="scan",
        url=scan.url,
        wcag_level=scan.wcag_level.value,
        completed_at=scan.completed_at,
        duration_ms=scan.duration_ms,
        total_issues=scan.total_issues,
        by_severity=_severity(scan),
        passed=scan.passed_checks,
        coverage=_coverage(scan),
        pages=[_page_summary(scan)],
        issues=_issues(scan),
    )


def build_batch_report(batch: BatchScan) -> ReportDocument:
    completed = [scan for scan in batch.scans if scan.status == ScanStatus.COMPLETED]
    if not completed:
        raise ReportBuildError(f"Batch {batch.id} has no completed scans")

    severity = SeverityCounts()
    issues: List[IssueEntry] = []
    for scan in completed:
        severity.critical += scan.critical_count
        severity.serious += scan.serious_count
        severity.moderate += scan.moderate_count
        severity.minor += scan.minor_count
        issues.extend(_issues(scan))

    coverages = [c for c in (_coverage(scan) for scan in completed) if c is not None]
    coverage = None
    if coverages:
        coverage = CriteriaCoverage(
            verified=sum(c.verified for c in coverages),
            passed=sum(c.passed for c in coverages),
            failed=sum(c.failed for c in coverages),
            not_tested=sum(c.not_tested for c in coverages),
            ai_tokens_used=sum(c.ai_tokens_used or 0 for c in coverages),
        )

    return ReportDocument(
        generated_at=datetime.now(timezone.utc),
        tool_name=settings.APP_NAME,
        subject_id=batch.id,
        subject_kind="batch",
        url=batch.homepage_url,
        wcag_level=batch.wcag_level.value,
        completed_at=batch.completed_at,
        total_issues=sum(scan.total_issues for scan in completed),
        by_severity=severity,
        passed=sum(scan.passed_checks for scan in completed),
        coverage=coverage,
        pages=[_page_summary(scan) for scan in batch.scans],
        issues=issues,
        batch_counts={
            "total_urls": batch.total_urls,
            "completed": batch.completed_count,
            "failed": batch.failed_count,
        },
    )


def build_report(subject: Subject) -> ReportDocument:
    if isinstance(subject, BatchScan):
        return build_batch_report(subject)
    return build_scan_report(subject)
