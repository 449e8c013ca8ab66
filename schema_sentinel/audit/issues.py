"""
Issue and fix schemas.

An Issue is the unit of finding produced by audit modules. Issues are built
once per run and never mutated afterwards; anything that needs a changed
copy uses ``model_copy(update=...)``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..enums import DetectionMethod, FixStatus, IssueCategory, SafetyRating, Severity


class SqlFix(BaseModel):
    """One proposed SQL remediation statement."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    description: str
    sql: str
    safety_rating: SafetyRating = SafetyRating.RISKY
    reasoning: str = ""
    # Only meaningful on a verification run's fix plan
    status: Optional[FixStatus] = None
    resolved_at: Optional[datetime] = None


class FixPlan(BaseModel):
    """Aggregated remediation plan."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    canonical_rule: Optional[str] = None
    migrations: List[SqlFix] = Field(default_factory=list)
    backfills: List[SqlFix] = Field(default_factory=list)
    verification_queries: List[str] = Field(default_factory=list)
    app_code_changes: List[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "FixPlan":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not (
            self.migrations
            or self.backfills
            or self.verification_queries
            or self.app_code_changes
            or self.canonical_rule
        )


class Evidence(BaseModel):
    """What an issue's claim rests on."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    sql: str
    result_sample: Optional[List[Dict[str, Any]]] = None
    affected_tables: List[str] = Field(default_factory=list)
    affected_columns: List[str] = Field(default_factory=list)
    row_count: Optional[int] = None


class Issue(BaseModel):
    """A single detected integrity problem."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    module_id: str
    category: IssueCategory
    severity: Severity
    title: str
    description: str
    evidence: Evidence
    impact: str = ""
    confidence: Annotated[float, Field(ge=0.0, le=1.0)]
    detection_method: DetectionMethod
    attached_fix: Optional[FixPlan] = None
