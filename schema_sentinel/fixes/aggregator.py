"""
Fix aggregation.

Merges the fixes modules attach to their issues with a plan drafted by the
completion collaborator. Heuristic fixes always come first; nothing is
deduplicated.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from ..audit.issues import FixPlan, Issue, SqlFix

logger = logging.getLogger(__name__)


def heuristic_fix_plans(issues: Iterable[Issue]) -> List[FixPlan]:
    """Fix plans attached to issues, in issue order."""
    return [issue.attached_fix for issue in issues if issue.attached_fix is not None]


def aggregate_fix_plan(
    issues: Iterable[Issue], external_plan: Optional[FixPlan] = None
) -> FixPlan:
    """Build one FixPlan from attached fixes plus an external plan.

    Args:
        issues: Issues from this run, in module order
        external_plan: Collaborator-drafted plan; None or empty when the
            collaborator was unavailable

    Returns:
        Plan with heuristic entries ahead of external ones in every list
    """
    external = external_plan or FixPlan()
    attached = heuristic_fix_plans(issues)

    migrations: List[SqlFix] = []
    backfills: List[SqlFix] = []
    verification_queries: List[str] = []
    app_code_changes: List[str] = []
    heuristic_rule: Optional[str] = None

    for plan in attached:
        migrations.extend(plan.migrations)
        backfills.extend(plan.backfills)
        verification_queries.extend(plan.verification_queries)
        app_code_changes.extend(plan.app_code_changes)
        if heuristic_rule is None and plan.canonical_rule:
            heuristic_rule = plan.canonical_rule

    logger.info(
        f"Aggregated {len(migrations)} heuristic and "
        f"{len(external.migrations)} drafted migrations"
    )

    return FixPlan(
        canonical_rule=external.canonical_rule or heuristic_rule,
        migrations=migrations + list(external.migrations),
        backfills=backfills + list(external.backfills),
        verification_queries=verification_queries + list(external.verification_queries),
        app_code_changes=app_code_changes + list(external.app_code_changes),
    )
