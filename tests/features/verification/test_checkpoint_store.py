"""
Tests for the file backed checkpoint store: atomic writes, idempotent batch
marking, resume bookkeeping and corrupt file handling.
"""
import json
import os
from unittest.mock import patch

import pytest

from app.features.scan.models.scan import WcagLevel
from app.features.verification.schemas.verification import (
    CoverageSummary,
    CriterionStatus,
    CriterionVerification,
)
from app.features.verification.services.checkpoint_store import (
    CheckpointError,
    CheckpointReadError,
    CheckpointStore,
)

SCAN_ID = "scan-123"


def _verification(criterion_id, status=CriterionStatus.AI_VERIFIED_PASS):
    return CriterionVerification(criterion_id=criterion_id, status=status, confidence=90, reasoning="ok")


@pytest.fixture
def store(tmp_path):
    return CheckpointStore(str(tmp_path / "checkpoints"))


@pytest.fixture
def saved(store):
    return store.save_checkpoint(store.init_checkpoint(SCAN_ID, "https://example.com", WcagLevel.AA, 5))


class TestInitAndSave:
    def test_init_is_pure(self, store):
        checkpoint = store.init_checkpoint(SCAN_ID, "https://example.com", WcagLevel.AA, 5)

        assert checkpoint.completed_batches == []
        assert checkpoint.tokens_used == 0
        assert checkpoint.finalization_complete is False
        assert store.get_checkpoint(SCAN_ID) is None

    def test_saved_file_uses_camel_case(self, store, saved):
        with open(os.path.join(store.checkpoint_dir, f"{SCAN_ID}.json")) as f:
            data = json.load(f)

        assert data["scanId"] == SCAN_ID
        assert data["totalBatches"] == 5
        assert data["completedBatches"] == []
        assert data["finalizationComplete"] is False

    def test_round_trip(self, store, saved):
        loaded = store.get_checkpoint(SCAN_ID)

        assert loaded.scan_id == SCAN_ID
        assert loaded.level == WcagLevel.AA
        assert loaded.total_batches == 5

    def test_no_temporary_files_left(self, store, saved):
        assert os.listdir(store.checkpoint_dir) == [f"{SCAN_ID}.json"]

    def test_missing_checkpoint(self, store):
        assert store.get_checkpoint("never-started") is None

    @pytest.mark.parametrize("scan_id", ["", "..", "a/b"])
    def test_unsafe_scan_ids_are_rejected(self, store, scan_id):
        with pytest.raises(ValueError):
            store.get_checkpoint(scan_id)


class TestMarkBatchComplete:
    def test_records_results_and_tokens(self, store, saved):
        checkpoint = store.mark_batch_complete(SCAN_ID, 2, [_verification("1.1.1")], 120)

        assert checkpoint.completed_batches == [2]
        assert checkpoint.tokens_used == 120
        assert store.get_checkpoint(SCAN_ID).partial_results[0].criterion_id == "1.1.1"

    def test_indices_stay_sorted(self, store, saved):
        for index in (4, 0, 2):
            store.mark_batch_complete(SCAN_ID, index, [], 10)

        assert store.get_checkpoint(SCAN_ID).completed_batches == [0, 2, 4]

    def test_replay_changes_nothing(self, store, saved):
        store.mark_batch_complete(SCAN_ID, 1, [_verification("1.1.1")], 100)

        checkpoint = store.mark_batch_complete(SCAN_ID, 1, [_verification("1.2.1")], 100)

        assert checkpoint.completed_batches == [1]
        assert checkpoint.tokens_used == 100
        assert [v.criterion_id for v in store.get_checkpoint(SCAN_ID).partial_results] == ["1.1.1"]

    def test_out_of_range_index(self, store, saved):
        with pytest.raises(ValueError):
            store.mark_batch_complete(SCAN_ID, 5, [], 0)
        with pytest.raises(ValueError):
            store.mark_batch_complete(SCAN_ID, -1, [], 0)

    def test_negative_tokens(self, store, saved):
        with pytest.raises(ValueError):
            store.mark_batch_complete(SCAN_ID, 0, [], -1)

    def test_absent_checkpoint(self, store):
        with pytest.raises(CheckpointError):
            store.mark_batch_complete("no-checkpoint", 0, [], 0)

    def test_failed_write_keeps_previous_state(self, store, saved):
        store.mark_batch_complete(SCAN_ID, 0, [_verification("1.1.1")], 50)

        with patch("app.features.verification.services.checkpoint_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.mark_batch_complete(SCAN_ID, 1, [_verification("1.2.1")], 50)

        checkpoint = store.get_checkpoint(SCAN_ID)
        assert checkpoint.completed_batches == [0]
        assert checkpoint.tokens_used == 50
        assert os.listdir(store.checkpoint_dir) == [f"{SCAN_ID}.json"]


class TestResume:
    def test_incomplete_batches(self, store, saved):
        for index in (0, 2, 4):
            store.mark_batch_complete(SCAN_ID, index, [], 10)

        checkpoint = store.get_checkpoint(SCAN_ID)

        assert store.get_incomplete_batches(checkpoint) == [1, 3]
        assert store.is_batch_complete(checkpoint, 2)
        assert not store.is_batch_complete(checkpoint, 3)

    def test_all_complete(self, store, saved):
        for index in range(5):
            store.mark_batch_complete(SCAN_ID, index, [], 10)

        assert store.get_incomplete_batches(store.get_checkpoint(SCAN_ID)) == []


class TestFinalization:
    def test_set_once(self, store, saved):
        first = CoverageSummary(criteria_verified=50, criteria_passed=50, tokens_used=500)
        store.mark_finalization_complete(SCAN_ID, first, tokens_used=25)

        checkpoint = store.mark_finalization_complete(SCAN_ID, CoverageSummary(criteria_verified=1), tokens_used=25)

        assert checkpoint.finalization_complete is True
        assert checkpoint.finalization_result.criteria_verified == 50
        assert checkpoint.tokens_used == 25

    def test_absent_checkpoint(self, store):
        with pytest.raises(CheckpointError):
            store.mark_finalization_complete("no-checkpoint", CoverageSummary())


class TestCorruption:
    def _write(self, store, content):
        os.makedirs(store.checkpoint_dir, exist_ok=True)
        path = os.path.join(store.checkpoint_dir, f"{SCAN_ID}.json")
        with open(path, "wb") as f:
            f.write(content)
        return path

    def test_unparsable_file_is_quarantined(self, store):
        path = self._write(store, b"{not json")

        assert store.get_checkpoint(SCAN_ID) is None
        assert not os.path.exists(path)
        assert os.path.exists(f"{path}.corrupt")

    def test_invalid_structure_is_quarantined(self, store):
        path = self._write(
            store,
            json.dumps(
                {
                    "scanId": SCAN_ID,
                    "subjectUrl": "https://example.com",
                    "level": "AA",
                    "totalBatches": 3,
                    "completedBatches": [2, 0],
                }
            ).encode(),
        )

        assert store.get_checkpoint(SCAN_ID) is None
        assert os.path.exists(f"{path}.corrupt")

    def test_undecodable_bytes_are_quarantined(self, store):
        path = self._write(store, b"\xff\xfe\x00garbage")

        assert store.get_checkpoint(SCAN_ID) is None
        assert os.path.exists(f"{path}.corrupt")

    def test_file_for_another_scan_is_quarantined(self, store):
        other = store.init_checkpoint("other-scan", "https://example.com", WcagLevel.A, 3)
        path = self._write(store, other.model_dump_json(by_alias=True).encode())

        assert store.get_checkpoint(SCAN_ID) is None
        assert os.path.exists(f"{path}.corrupt")

    def test_unreadable_file_raises(self, store, saved):
        with patch("builtins.open", side_effect=PermissionError("denied")):
            with pytest.raises(CheckpointReadError):
                store.get_checkpoint(SCAN_ID)


class TestClear:
    def test_clear_removes_file(self, store, saved):
        store.clear_checkpoint(SCAN_ID)

        assert store.get_checkpoint(SCAN_ID) is None

    def test_clear_absent_checkpoint(self, store):
        store.clear_checkpoint("never-started")
