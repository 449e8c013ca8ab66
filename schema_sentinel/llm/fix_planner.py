"""
Collaborator-drafted fix plans.

A drafted plan is optional: any failure downgrades to an empty FixPlan so
the heuristic fixes still reach the user.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..audit.issues import FixPlan, Issue, SqlFix
from ..enums import SafetyRating
from .client import CompletionClient, CompletionError
from .summarizer import select_top_issues, summarize_issues

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a database integrity expert who generates precise, safe SQL fixes. "
    "Always return valid JSON."
)

FIX_PLAN_PROMPT = """You are a database integrity expert. Analyze these database issues and generate a comprehensive fix plan.

ISSUES FOUND:
{summary}

Generate a fix plan with:
1. SQL migrations (DDL) to add constraints, indexes, etc.
2. SQL backfills (DML) to clean up data
3. Verification queries to confirm fixes
4. App code recommendations

For each SQL fix, assign a safety rating:
- SAFE: No data loss risk (e.g., adding indexes)
- RISKY: Potential issues (e.g., type changes)
- DESTRUCTIVE: Data loss possible (e.g., dropping columns)

Return your response as JSON in this exact format:
{{
  "canonicalRule": "Brief statement of the recommended source of truth approach",
  "migrations": [
    {{"description": "...", "sql": "ALTER TABLE ... ;", "safetyRating": "SAFE|RISKY|DESTRUCTIVE", "reasoning": "..."}}
  ],
  "backfills": [
    {{"description": "...", "sql": "UPDATE ... ;", "safetyRating": "SAFE|RISKY|DESTRUCTIVE", "reasoning": "..."}}
  ],
  "verificationQueries": ["SELECT COUNT(*) FROM ... WHERE ..."],
  "appCodeChanges": ["..."]
}}"""


def _sql_fix_from_payload(item: Any) -> Optional[SqlFix]:
    if not isinstance(item, dict):
        return None
    rating = str(item.get("safetyRating") or item.get("safety_rating") or "RISKY").upper()
    if rating not in SafetyRating.__members__:
        rating = SafetyRating.RISKY.value
    try:
        return SqlFix(
            description=str(item.get("description") or ""),
            sql=str(item["sql"]),
            safety_rating=SafetyRating(rating),
            reasoning=str(item.get("reasoning") or ""),
        )
    except (KeyError, ValidationError):
        return None


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def fix_plan_from_payload(payload: Dict[str, Any]) -> FixPlan:
    """Build a FixPlan from a collaborator JSON object, skipping bad entries."""
    migrations = [f for f in map(_sql_fix_from_payload, payload.get("migrations") or []) if f]
    backfills = [f for f in map(_sql_fix_from_payload, payload.get("backfills") or []) if f]
    canonical_rule = payload.get("canonicalRule") or payload.get("canonical_rule")
    return FixPlan(
        canonical_rule=str(canonical_rule) if canonical_rule else None,
        migrations=migrations,
        backfills=backfills,
        verification_queries=_strings(payload.get("verificationQueries")),
        app_code_changes=_strings(payload.get("appCodeChanges")),
    )


def draft_fix_plan(
    issues: Sequence[Issue], client: CompletionClient, max_issues: int = 30
) -> FixPlan:
    """Ask the collaborator for a plan covering the top issues.

    Returns an empty plan when there are no issues or the collaborator fails.
    """
    if not issues:
        return FixPlan()

    summary = summarize_issues(select_top_issues(issues, max_issues))
    try:
        payload = client.complete_json(SYSTEM_PROMPT, FIX_PLAN_PROMPT.format(summary=summary))
    except CompletionError as e:
        logger.warning(f"Fix plan drafting failed, continuing without it: {e.code}")
        return FixPlan()

    plan = fix_plan_from_payload(payload)
    logger.info(
        f"Drafted fix plan with {len(plan.migrations)} migrations "
        f"and {len(plan.backfills)} backfills"
    )
    return plan
