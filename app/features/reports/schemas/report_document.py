"""
Report Document Schemas

Format independent content of a generated report. The builder fills these
from a scan or batch scan, the renderers turn them into PDF, JSON or CSV.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

COVERAGE_NOTE = (
    "Automated testing detects approximately 57% of WCAG issues. "
    "Manual testing is recommended for complete compliance."
)


class SeverityCounts(BaseModel):
    critical: int = 0
    serious: int = 0
    moderate: int = 0
    minor: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.serious + self.moderate + self.minor


class CriteriaCoverage(BaseModel):
    verified: int
    passed: int
    failed: int
    not_tested: int
    ai_tokens_used: Optional[int] = None


class IssueEntry(BaseModel):
    id: str
    page_url: str
    rule_id: str
    impact: str
    description: str
    help: str
    help_url: str
    wcag_criteria: List[str] = Field(default_factory=list)
    selector: str
    html: str


class PageSummary(BaseModel):
    scan_id: str
    url: str
    status: str
    total_issues: int
    by_severity: SeverityCounts
    passed: int
    coverage: Optional[CriteriaCoverage] = None


class ReportDocument(BaseModel):
    version: Literal["1.0"] = "1.0"
    generated_at: datetime
    tool_name: str
    subject_id: str
    subject_kind: Literal["scan", "batch"]
    url: str
    wcag_level: str
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    total_issues: int
    by_severity: SeverityCounts
    passed: int
    coverage: Optional[CriteriaCoverage] = None

    pages: List[PageSummary] = Field(default_factory=list)
    issues: List[IssueEntry] = Field(default_factory=list)
    disclaimer: str = COVERAGE_NOTE

    # Batch only
    batch_counts: Optional[Dict[str, int]] = None
