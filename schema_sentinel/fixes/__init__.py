"""
Fix plans: aggregation, verification diffing and application.
"""

from .aggregator import aggregate_fix_plan, heuristic_fix_plans
from .executor import FixApplier, FixExecutionError, FixExecutionResult
from .verification import (
    VerificationComparison,
    annotate_fix_plan,
    annotate_fixes,
    classify_fix,
    compare_audit_results,
    issue_key,
)

__all__ = [
    "aggregate_fix_plan",
    "heuristic_fix_plans",
    "VerificationComparison",
    "compare_audit_results",
    "issue_key",
    "classify_fix",
    "annotate_fixes",
    "annotate_fix_plan",
    "FixApplier",
    "FixExecutionError",
    "FixExecutionResult",
]
