"""
Criteria Checkpoint Store

One JSON file per scan under the checkpoint directory. Every mutation is
written to a temporary file in the same directory, fsynced and then moved
over the canonical file with os.replace, so a reader sees either the whole
previous state or the whole new state.

A file that parses but is structurally invalid, or does not parse at all,
is treated as absent and moved aside to ``<scanId>.json.corrupt``. A file
that exists but cannot be read raises CheckpointReadError instead, since
starting over would re-run (and re-bill) finished batches.
"""
import json
import os
import tempfile
from typing import List, Optional

from pydantic import ValidationError as SchemaValidationError

from app.features.scan.models.scan import WcagLevel
from app.features.verification.schemas.verification import (
    CoverageSummary,
    CriteriaCheckpoint,
    CriterionVerification,
    utcnow,
)
from app.platform.config import settings
from app.platform.exceptions import ConsistencyError, TransientInfrastructureError
from app.platform.logger import get_logger

logger = get_logger(__name__)


class CheckpointError(ConsistencyError):
    code = "CHECKPOINT_ERROR"


class CheckpointReadError(TransientInfrastructureError):
    code = "CHECKPOINT_UNREADABLE"


class CheckpointStore:
    def __init__(self, checkpoint_dir: Optional[str] = None):
        self.checkpoint_dir = checkpoint_dir or settings.CHECKPOINT_DIR

    def _path(self, scan_id: str) -> str:
        if not scan_id or scan_id in (".", "..") or "/" in scan_id or os.sep in scan_id:
            raise ValueError(f"Invalid scan id for a checkpoint: {scan_id!r}")
        return os.path.join(self.checkpoint_dir, f"{scan_id}.json")

    def get_checkpoint(self, scan_id: str) -> Optional[CriteriaCheckpoint]:
        path = self._path(scan_id)
        try:
            with open(path, "rb") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CheckpointReadError(f"Checkpoint for scan {scan_id} exists but cannot be read", cause=e) from e

        try:
            checkpoint = CriteriaCheckpoint.model_validate(json.loads(raw))
        except (ValueError, SchemaValidationError) as e:
            logger.warning(f"[{scan_id}] Corrupt checkpoint treated as absent: {e}")
            self._quarantine(path)
            return None

        if checkpoint.scan_id != scan_id:
            logger.warning(f"[{scan_id}] Checkpoint file holds scan {checkpoint.scan_id}, treated as absent")
            self._quarantine(path)
            return None

        return checkpoint

    def _quarantine(self, path: str) -> None:
        try:
            os.replace(path, f"{path}.corrupt")
        except OSError as e:
            logger.error(f"Could not move corrupt checkpoint {path} aside: {e}")

    def init_checkpoint(self, scan_id: str, subject_url: str, level: WcagLevel, total_batches: int) -> CriteriaCheckpoint:
        """Fresh state with no progress and zero cost. Nothing is written."""
        now = utcnow()
        return CriteriaCheckpoint(
            scan_id=scan_id,
            subject_url=subject_url,
            level=level,
            total_batches=total_batches,
            started_at=now,
            updated_at=now,
        )

    def save_checkpoint(self, checkpoint: CriteriaCheckpoint) -> CriteriaCheckpoint:
        checkpoint.updated_at = utcnow()
        path = self._path(checkpoint.scan_id)
        os.makedirs(self.checkpoint_dir, exist_ok=True)

        content = checkpoint.model_dump_json(by_alias=True, indent=2)

        fd, tmp_path = tempfile.mkstemp(dir=self.checkpoint_dir, prefix=f".{checkpoint.scan_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        self._sync_directory()
        return checkpoint

    def _sync_directory(self) -> None:
        # Makes the rename itself durable; not available on Windows
        if os.name != "posix":
            return
        dir_fd = os.open(self.checkpoint_dir, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def _require(self, scan_id: str) -> CriteriaCheckpoint:
        checkpoint = self.get_checkpoint(scan_id)
        if checkpoint is None:
            raise CheckpointError(f"No checkpoint found for scan {scan_id}")
        return checkpoint

    def mark_batch_complete(
        self,
        scan_id: str,
        batch_index: int,
        results: List[CriterionVerification],
        tokens_used: int,
    ) -> CriteriaCheckpoint:
        """
        Record one finished sub-batch.

        Replaying an index that is already complete changes nothing: its
        results and token cost were recorded the first time.
        """
        if tokens_used < 0:
            raise ValueError("tokens_used cannot be negative")

        checkpoint = self._require(scan_id)
        if not 0 <= batch_index < checkpoint.total_batches:
            raise ValueError(
                f"Batch index {batch_index} outside [0, {checkpoint.total_batches}) for scan {scan_id}"
            )

        if batch_index in checkpoint.completed_batches:
            logger.info(f"[{scan_id}] Batch {batch_index} already recorded, ignoring replay")
            return checkpoint

        checkpoint.completed_batches = sorted(checkpoint.completed_batches + [batch_index])
        checkpoint.partial_results.extend(results)
        checkpoint.tokens_used += tokens_used
        return self.save_checkpoint(checkpoint)

    def mark_finalization_complete(
        self,
        scan_id: str,
        result: CoverageSummary,
        tokens_used: int = 0,
    ) -> CriteriaCheckpoint:
        """Store the final result once and add any cost spent producing it."""
        if tokens_used < 0:
            raise ValueError("tokens_used cannot be negative")

        checkpoint = self._require(scan_id)
        if checkpoint.finalization_complete:
            logger.info(f"[{scan_id}] Finalization already recorded, ignoring replay")
            return checkpoint

        checkpoint.finalization_complete = True
        checkpoint.finalization_result = result
        checkpoint.tokens_used += tokens_used
        return self.save_checkpoint(checkpoint)

    def clear_checkpoint(self, scan_id: str) -> None:
        try:
            os.remove(self._path(scan_id))
        except FileNotFoundError:
            pass

    @staticmethod
    def get_incomplete_batches(checkpoint: CriteriaCheckpoint) -> List[int]:
        completed = set(checkpoint.completed_batches)
        return [index for index in range(checkpoint.total_batches) if index not in completed]

    @staticmethod
    def is_batch_complete(checkpoint: CriteriaCheckpoint, batch_index: int) -> bool:
        return batch_index in checkpoint.completed_batches
