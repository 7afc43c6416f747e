"""
Verification Schemas

Criteria verification results and the checkpoint persisted between
sub-batches. The checkpoint is stored as camelCase JSON.
"""
import enum
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.features.scan.models.scan import WcagLevel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CriterionStatus(str, enum.Enum):
    AI_VERIFIED_PASS = "AI_VERIFIED_PASS"
    AI_VERIFIED_FAIL = "AI_VERIFIED_FAIL"
    NOT_TESTED = "NOT_TESTED"


class CriterionVerification(CamelModel):
    criterion_id: str = Field(..., min_length=1)
    status: CriterionStatus
    confidence: int = Field(0, ge=0, le=100)
    reasoning: str = ""
    related_issue_ids: List[str] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value):
        # Models often answer with the short form
        if isinstance(value, str):
            value = value.strip().upper()
            return {"PASS": "AI_VERIFIED_PASS", "FAIL": "AI_VERIFIED_FAIL"}.get(value, value)
        return value


class CoverageSummary(CamelModel):
    criteria_verified: int = 0
    criteria_passed: int = 0
    criteria_failed: int = 0
    criteria_not_tested: int = 0
    tokens_used: int = 0
    verifications: List[CriterionVerification] = Field(default_factory=list)


class CriteriaCheckpoint(CamelModel):
    """
    Progress of one scan's batched verification.

    ``completed_batches`` is kept sorted and unique and every index lies in
    ``[0, total_batches)``; a record breaking that is treated as corrupt.
    """
    scan_id: str = Field(..., min_length=1)
    subject_url: str = Field(..., min_length=1)
    level: WcagLevel
    total_batches: int = Field(..., ge=0)
    completed_batches: List[int] = Field(default_factory=list)
    partial_results: List[CriterionVerification] = Field(default_factory=list)
    tokens_used: int = Field(0, ge=0)
    finalization_complete: bool = False
    finalization_result: Optional[CoverageSummary] = None
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_completed_batches(self):
        if self.completed_batches != sorted(set(self.completed_batches)):
            raise ValueError("completedBatches must be sorted and unique")
        if any(index < 0 or index >= self.total_batches for index in self.completed_batches):
            raise ValueError("completedBatches holds an index outside [0, totalBatches)")
        return self


class BatchResult(BaseModel):
    batch_index: int
    criteria_verified: int
    verifications: List[CriterionVerification]
    tokens_used: int = 0
    duration_ms: int = 0
    from_cache: bool = False
    errors: List[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


class VerificationOutcome(BaseModel):
    scan_id: str
    level: WcagLevel
    total_batches: int
    batches_processed: int = 0
    batches_skipped: int = 0
    resumed: bool = False
    complete: bool = False
    coverage: CoverageSummary
    batch_results: List[BatchResult] = Field(default_factory=list)
