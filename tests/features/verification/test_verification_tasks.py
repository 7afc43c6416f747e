from unittest.mock import MagicMock, patch

import pytest
from celery.exceptions import Retry

from app.features.notifications.schemas.notification import NotificationKind
from app.features.scan.models.scan import Scan, ScanStatus, WcagLevel
from app.features.verification.schemas.verification import CoverageSummary, VerificationOutcome
from app.features.verification.workers import tasks
from app.features.verification.workers.tasks import PageFetchError, run_criteria_verification

ADDRESS = "owner@example.com"


@pytest.fixture
def scan_id(sync_session_factory):
    db = sync_session_factory()
    scan = Scan(
        url="https://example.com",
        wcag_level=WcagLevel.A,
        status=ScanStatus.COMPLETED,
        notification_email=ADDRESS,
        ai_enabled=True,
        ai_status="PENDING",
    )
    db.add(scan)
    db.commit()
    scan_id = scan.id
    db.close()
    return scan_id


@pytest.fixture
def processor():
    processor = MagicMock()
    processor.process_criteria_batches.return_value = VerificationOutcome(
        scan_id="ignored",
        level=WcagLevel.A,
        total_batches=3,
        batches_processed=3,
        complete=True,
        coverage=CoverageSummary(
            criteria_verified=30, criteria_passed=25, criteria_failed=3, criteria_not_tested=2, tokens_used=900
        ),
    )
    return processor


@pytest.fixture
def worker(sync_session_factory, processor):
    with patch.object(tasks, "get_sync_db", sync_session_factory), \
            patch.object(tasks, "get_processor", return_value=processor), \
            patch.object(tasks, "fetch_page_html", return_value="<html></html>") as fetch, \
            patch.object(tasks, "enqueue_notification") as enqueue:
        yield MagicMock(fetch=fetch, enqueue=enqueue)


def _run(scan_id, retries=0):
    run_criteria_verification.push_request(id="task-1", retries=retries)
    try:
        return run_criteria_verification.run(scan_id=scan_id)
    finally:
        run_criteria_verification.pop_request()


def _load(sync_session_factory, scan_id):
    db = sync_session_factory()
    try:
        return db.query(Scan).filter(Scan.id == scan_id).one()
    finally:
        db.close()


def test_commits_coverage_and_queues_ai_email(scan_id, worker, processor, sync_session_factory):
    result = _run(scan_id)

    assert result["status"] == "completed"
    scan = _load(sync_session_factory, scan_id)
    assert scan.ai_status == "COMPLETED"
    assert scan.criteria_verified == 30
    assert scan.criteria_not_tested == 2
    assert scan.ai_tokens_used == 900
    assert scan.ai_completed_at is not None

    processor.checkpoint_store.clear_checkpoint.assert_called_once_with(scan_id)
    job = worker.enqueue.call_args[0][0]
    assert job.kind == NotificationKind.AI_SCAN_COMPLETE
    assert job.recipient_address == ADDRESS


def test_completed_scan_is_skipped(scan_id, worker, processor):
    _run(scan_id)
    processor.reset_mock()

    result = _run(scan_id)

    assert result["reason"] == "not_required"
    processor.process_criteria_batches.assert_not_called()


def test_missing_scan_is_skipped(worker, processor):
    result = _run("missing-scan")

    assert result["reason"] == "scan_not_found"


def test_incomplete_run_is_retried(scan_id, worker, processor):
    processor.process_criteria_batches.return_value.complete = False

    with patch.object(run_criteria_verification, "retry", side_effect=Retry()) as retry:
        with pytest.raises(Retry):
            _run(scan_id)

    assert retry.call_args.kwargs["countdown"] == 300
    processor.checkpoint_store.clear_checkpoint.assert_not_called()


def test_incomplete_run_commits_partial_coverage_on_last_attempt(scan_id, worker, processor, sync_session_factory):
    processor.process_criteria_batches.return_value.complete = False

    result = _run(scan_id, retries=2)

    assert result["complete"] is False
    assert _load(sync_session_factory, scan_id).ai_status == "COMPLETED"


def test_permanent_failure_clears_address(scan_id, worker, sync_session_factory):
    worker.fetch.side_effect = PageFetchError("Could not fetch https://example.com: 503")

    with pytest.raises(PageFetchError):
        _run(scan_id, retries=2)

    scan = _load(sync_session_factory, scan_id)
    assert scan.ai_status == "FAILED"
    assert scan.notification_email is None
    worker.enqueue.assert_not_called()
