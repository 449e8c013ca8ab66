"""
Budgeted audit modules, their registry and the sequential runner.
"""

from .budget import (
    DEFAULT_BUDGET,
    BudgetConfig,
    BudgetExceededError,
    BudgetTracker,
    should_sample,
)
from .issues import Evidence, FixPlan, Issue, SqlFix
from .registry import get_audit_modules, get_module_by_id
from .runner import run_audit

__all__ = [
    "BudgetConfig",
    "BudgetTracker",
    "BudgetExceededError",
    "DEFAULT_BUDGET",
    "should_sample",
    "Issue",
    "Evidence",
    "FixPlan",
    "SqlFix",
    "get_audit_modules",
    "get_module_by_id",
    "run_audit",
]
