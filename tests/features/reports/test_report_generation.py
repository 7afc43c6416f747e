"""
Tests for building, rendering and generating reports.
"""
import csv
import io
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from app.features.reports.models.report import Report, ReportFormat, ReportStatus
from app.features.reports.services.report_builder import ReportBuildError, build_report
from app.features.reports.services.report_generator import (
    ReportGenerationError,
    ReportGenerator,
    storage_key_for,
)
from app.features.reports.services.report_renderer import CSV_COLUMNS, render_report
from app.features.reports.services.report_repository import ReportRepository
from app.features.reports.workers.tasks import generation_countdown
from app.features.scan.models.batch_scan import BatchScan, BatchStatus
from app.features.scan.models.scan import IssueImpact, Scan, ScanIssue, ScanStatus, WcagLevel


def _issue(rule_id, impact):
    return ScanIssue(
        id=f"issue-{rule_id}",
        rule_id=rule_id,
        impact=impact,
        description=f"{rule_id} violated",
        help_text=f"Fix {rule_id}",
        help_url=f"https://dequeuniversity.com/rules/axe/{rule_id}",
        wcag_criteria=["1.1.1"],
        css_selector="main > img",
        html_snippet='<img src="logo.png">',
    )


def _scan(**overrides):
    values = dict(
        id="scan-1",
        url="https://example.com",
        wcag_level=WcagLevel.AA,
        status=ScanStatus.COMPLETED,
        completed_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        duration_ms=45_000,
        total_issues=2,
        critical_count=1,
        serious_count=0,
        moderate_count=0,
        minor_count=1,
        passed_checks=40,
    )
    values.update(overrides)
    scan = Scan(**values)
    scan.issues = [_issue("region", IssueImpact.MINOR), _issue("image-alt", IssueImpact.CRITICAL)]
    return scan


class TestReportBuilder:
    def test_scan_issues_are_ordered_by_severity(self):
        doc = build_report(_scan())

        assert doc.subject_kind == "scan"
        assert [issue.rule_id for issue in doc.issues] == ["image-alt", "region"]
        assert doc.issues[0].impact == "critical"
        assert doc.by_severity.critical == 1
        assert doc.coverage is None

    def test_incomplete_scan_cannot_be_reported(self):
        with pytest.raises(ReportBuildError):
            build_report(_scan(status=ScanStatus.RUNNING))

    def test_scan_coverage_included_when_verified(self):
        doc = build_report(_scan(criteria_verified=50, criteria_passed=40, criteria_failed=6, criteria_not_tested=4))

        assert doc.coverage.verified == 50
        assert doc.coverage.not_tested == 4

    def test_batch_aggregates_completed_scans(self):
        batch = BatchScan(
            id="batch-1",
            homepage_url="https://example.com",
            wcag_level=WcagLevel.AA,
            status=BatchStatus.COMPLETED,
            total_urls=2,
            completed_count=1,
            failed_count=1,
        )
        batch.scans = [_scan(), _scan(id="scan-2", status=ScanStatus.FAILED, total_issues=0)]

        doc = build_report(batch)

        assert doc.subject_kind == "batch"
        assert doc.total_issues == 2
        assert len(doc.pages) == 2
        assert doc.batch_counts == {"total_urls": 2, "completed": 1, "failed": 1}

    def test_batch_without_completed_scans_cannot_be_reported(self):
        batch = BatchScan(id="batch-1", homepage_url="https://example.com", wcag_level=WcagLevel.AA, total_urls=1)
        batch.scans = [_scan(status=ScanStatus.FAILED)]

        with pytest.raises(ReportBuildError):
            build_report(batch)


class TestReportRenderer:
    def test_json_uses_camel_case_keys(self):
        data = json.loads(render_report(build_report(_scan()), ReportFormat.JSON))

        assert data["scan"]["id"] == "scan-1"
        assert data["summary"]["totalIssues"] == 2
        assert data["issues"][0]["ruleId"] == "image-alt"
        assert data["issues"][0]["element"]["selector"] == "main > img"
        assert "criteriaCoverage" not in data

    def test_csv_has_one_row_per_issue(self):
        raw = render_report(build_report(_scan()), ReportFormat.CSV)

        assert raw.startswith(b"\xef\xbb\xbf")
        rows = list(csv.DictReader(io.StringIO(raw.decode("utf-8-sig"))))
        assert len(rows) == 2
        assert list(rows[0].keys()) == CSV_COLUMNS
        assert rows[0]["wcag_criteria"] == "1.1.1"

    def test_pdf_is_a_pdf(self):
        raw = render_report(build_report(_scan()), ReportFormat.PDF)

        assert raw.startswith(b"%PDF")

    def test_pdf_without_issues(self):
        scan = _scan(total_issues=0, critical_count=0, minor_count=0)
        scan.issues = []

        assert render_report(build_report(scan), ReportFormat.PDF).startswith(b"%PDF")


@pytest.fixture
def blob_store():
    return MagicMock()


@pytest.fixture
async def stored_scan(db):
    scan = _scan()
    db.add(scan)
    await db.commit()
    return scan


class TestReportGenerator:
    @pytest.mark.asyncio
    async def test_generate_uploads_and_completes(self, db, stored_scan, blob_store):
        report, _ = await ReportRepository(db).create_pending(stored_scan.id, ReportFormat.JSON)

        result = await ReportGenerator(db, blob_store).generate(
            stored_scan.id, ReportFormat.JSON, report.id, attempt=1, task_id="task-1"
        )

        key = storage_key_for(stored_scan.id, ReportFormat.JSON)
        assert result["status"] == "COMPLETED"
        assert result["storage_key"] == key
        blob_store.put.assert_called_once()
        assert blob_store.put.call_args[0][0] == key
        assert blob_store.put.call_args[0][2] == "application/json"

        record = await ReportRepository(db).get_by_id(report.id)
        assert record.status == ReportStatus.COMPLETED
        assert record.storage_key == key
        assert record.generation_attempts == 1
        assert record.celery_task_id == "task-1"

    @pytest.mark.asyncio
    async def test_redelivered_job_for_completed_record_is_skipped(self, db, stored_scan, blob_store):
        repo = ReportRepository(db)
        report, _ = await repo.create_pending(stored_scan.id, ReportFormat.PDF)
        generator = ReportGenerator(db, blob_store)
        await generator.generate(stored_scan.id, ReportFormat.PDF, report.id)
        blob_store.put.reset_mock()

        result = await generator.generate(stored_scan.id, ReportFormat.PDF, report.id, attempt=2)

        assert result["skipped"] is True
        blob_store.put.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_record_is_terminal(self, db, blob_store):
        with pytest.raises(ReportGenerationError) as exc_info:
            await ReportGenerator(db, blob_store).generate("scan-1", ReportFormat.PDF, "no-such-report")

        assert exc_info.value.retryable is False
        assert exc_info.value.code == "REPORT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_incomplete_subject_is_terminal(self, db, blob_store):
        scan = _scan(id="scan-running", status=ScanStatus.RUNNING)
        db.add(scan)
        await db.commit()
        report, _ = await ReportRepository(db).create_pending(scan.id, ReportFormat.CSV)

        with pytest.raises(ReportGenerationError) as exc_info:
            await ReportGenerator(db, blob_store).generate(scan.id, ReportFormat.CSV, report.id)

        assert exc_info.value.code == "SUBJECT_NOT_COMPLETE"
        blob_store.put.assert_not_called()

    @pytest.mark.asyncio
    async def test_fail_stale_only_touches_old_active_records(self, db, stored_scan, blob_store):
        repo = ReportRepository(db)
        stuck, _ = await repo.create_pending(stored_scan.id, ReportFormat.PDF)
        fresh, _ = await repo.create_pending(stored_scan.id, ReportFormat.CSV)
        await repo.transition(
            stuck.id,
            [ReportStatus.PENDING],
            ReportStatus.GENERATING,
            updated_at=datetime.now(timezone.utc) - timedelta(hours=2),
        )

        failed = await ReportGenerator(db, blob_store).fail_stale(stale_after_minutes=30)

        assert failed == 1
        assert (await repo.get_by_id(stuck.id)).status == ReportStatus.FAILED
        assert (await repo.get_by_id(fresh.id)).status == ReportStatus.PENDING


def test_generation_backoff_doubles():
    assert [generation_countdown(n) for n in range(3)] == [5, 10, 20]
