"""
Verification diffing between a baseline run and a follow-up run.

Issues are matched across runs by a composite key rather than by id. Fix
status annotation is a best-effort substring match and is not
authoritative.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..audit.issues import FixPlan, Issue, SqlFix
from ..enums import FixStatus

_BACKTICK_RE = re.compile(r"`([^`]+)`")

IssueKey = Tuple[str, str, str, Tuple[str, ...], Optional[str]]


class VerificationComparison(BaseModel):
    """Outcome of comparing a follow-up audit against its baseline."""

    model_config = ConfigDict(extra="forbid")

    resolved: List[Issue] = Field(default_factory=list)
    remaining: List[Issue] = Field(default_factory=list)
    new: List[Issue] = Field(default_factory=list)
    progress_percent: int = Field(0, ge=0, le=100)

    def summary(self) -> Dict[str, int]:
        return {
            "resolved": len(self.resolved),
            "remaining": len(self.remaining),
            "new": len(self.new),
            "progress_percent": self.progress_percent,
        }


def issue_key(issue: Issue) -> IssueKey:
    """Identity of an issue across runs.

    ``(module_id, category, title, sorted affected tables)`` plus, for
    constraint-style titles, the first backtick-quoted identifier in the
    description.
    """
    disambiguator = None
    if "Missing" in issue.title or "Constraint" in issue.title:
        match = _BACKTICK_RE.search(issue.description)
        if match:
            disambiguator = match.group(1)

    return (
        issue.module_id,
        issue.category.value,
        issue.title,
        tuple(sorted(issue.evidence.affected_tables)),
        disambiguator,
    )


def _progress_percent(resolved: int, baseline: int) -> int:
    if baseline == 0:
        return 0
    # round half up
    return (200 * resolved + baseline) // (2 * baseline)


def compare_audit_results(
    baseline: Sequence[Issue], current: Sequence[Issue]
) -> VerificationComparison:
    """Classify baseline issues as resolved or remaining and find new ones.

    Remaining issues are taken from ``current`` so their evidence is fresh.
    Issues sharing a key are matched one-to-one in order.
    """
    pending: "OrderedDict[IssueKey, List[Issue]]" = OrderedDict()
    for issue in current:
        pending.setdefault(issue_key(issue), []).append(issue)

    resolved: List[Issue] = []
    remaining: List[Issue] = []
    for issue in baseline:
        matches = pending.get(issue_key(issue))
        if matches:
            remaining.append(matches.pop(0))
        else:
            resolved.append(issue)

    new = [issue for matches in pending.values() for issue in matches]

    return VerificationComparison(
        resolved=resolved,
        remaining=remaining,
        new=new,
        progress_percent=_progress_percent(len(resolved), len(baseline)),
    )


def _fix_matches(fix: SqlFix, issues: Sequence[Issue]) -> bool:
    sql = fix.sql.lower()
    for issue in issues:
        if issue.title and issue.title in fix.description:
            return True
        if any(table.lower() in sql for table in issue.evidence.affected_tables if table):
            return True
    return False


def classify_fix(fix: SqlFix, comparison: VerificationComparison) -> FixStatus:
    """RESOLVED when the fix matches a resolved issue, else NEW or PENDING.

    A fix matching both a resolved and a new issue is RESOLVED.
    """
    if _fix_matches(fix, comparison.resolved):
        return FixStatus.RESOLVED
    if _fix_matches(fix, comparison.new):
        return FixStatus.NEW
    return FixStatus.PENDING


def annotate_fixes(
    fixes: Sequence[SqlFix],
    comparison: VerificationComparison,
    now: Optional[datetime] = None,
) -> List[SqlFix]:
    """Copies of ``fixes`` carrying a status; resolved ones get ``resolved_at``."""
    now = now or datetime.now(timezone.utc)
    annotated: List[SqlFix] = []
    for fix in fixes:
        status = classify_fix(fix, comparison)
        update = {"status": status}
        if status == FixStatus.RESOLVED:
            update["resolved_at"] = now
        annotated.append(fix.model_copy(update=update))
    return annotated


def annotate_fix_plan(
    plan: FixPlan, comparison: VerificationComparison, now: Optional[datetime] = None
) -> FixPlan:
    """Tag every migration and backfill, dropping those already resolved."""
    migrations = annotate_fixes(plan.migrations, comparison, now)
    backfills = annotate_fixes(plan.backfills, comparison, now)
    return plan.model_copy(
        update={
            "migrations": [f for f in migrations if f.status != FixStatus.RESOLVED],
            "backfills": [f for f in backfills if f.status != FixStatus.RESOLVED],
        }
    )
