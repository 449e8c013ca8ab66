"""
Ambiguous entities: reports the inferrer's source-of-truth conflicts.
"""

from __future__ import annotations

from typing import List

from ...enums import DetectionMethod, IssueCategory, Severity
from ..issues import Evidence, FixPlan, Issue
from .base import AuditContext, AuditModule


def _bare(table_name: str) -> str:
    return table_name.split(".", 1)[-1]


class AmbiguousEntitiesModule(AuditModule):
    id = "GENERIC_AMBIGUOUS_ENTITIES"
    name = "Ambiguous Entity Detection"

    def run(self, context: AuditContext) -> List[Issue]:
        issues: List[Issue] = []

        for candidate in context.model.source_of_truth_candidates:
            tables = [_bare(name) for name in candidate.tables]
            canonical = _bare(candidate.recommended_canonical)
            issues.append(
                Issue(
                    id=f"ambiguous-{candidate.concept}",
                    module_id=self.id,
                    category=IssueCategory.METRIC,
                    severity=Severity.HIGH,
                    title=f"Multiple tables represent '{candidate.concept}'",
                    description=candidate.reasoning,
                    evidence=Evidence(
                        sql=f"-- Tables: {', '.join(tables)}",
                        affected_tables=tables,
                    ),
                    impact=(
                        "Dashboard metrics will differ depending on which table is "
                        "queried. No single source of truth."
                    ),
                    confidence=candidate.confidence,
                    detection_method=DetectionMethod.HEURISTIC,
                    attached_fix=FixPlan(
                        canonical_rule=(
                            f"Treat {canonical} as the canonical source for "
                            f"'{candidate.concept}'; derive or retire "
                            + ", ".join(t for t in tables if t != canonical)
                            + "."
                        )
                    ),
                )
            )

        return issues
