"""
Text-completion collaborator: client, fix-plan drafting and investigations.
"""

from .client import CompletionClient, CompletionError, HttpCompletionClient
from .fix_planner import draft_fix_plan, fix_plan_from_payload
from .investigator import (
    InvestigationAnalysis,
    ProactiveInvestigationResult,
    ProblemAnalysis,
    UnsafeQueryError,
    VerificationQuery,
    analyze_investigation_results,
    analyze_problem_statement,
    ensure_read_only_query,
    generate_verification_query,
    run_proactive_investigation,
)
from .summarizer import select_top_issues, summarize_issues

__all__ = [
    "CompletionClient",
    "CompletionError",
    "HttpCompletionClient",
    "draft_fix_plan",
    "fix_plan_from_payload",
    "select_top_issues",
    "summarize_issues",
    "UnsafeQueryError",
    "ensure_read_only_query",
    "generate_verification_query",
    "analyze_investigation_results",
    "analyze_problem_statement",
    "run_proactive_investigation",
    "VerificationQuery",
    "InvestigationAnalysis",
    "ProblemAnalysis",
    "ProactiveInvestigationResult",
]
