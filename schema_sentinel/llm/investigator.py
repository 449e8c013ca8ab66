"""
Hypothesis investigation.

Turns natural-language suspicions about the data into read-only queries,
runs them and asks the collaborator whether the rows confirm the suspicion.
Every collaborator-written query passes through ensure_read_only_query
before it reaches the target database.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError

from ..audit.issues import Evidence, FixPlan, Issue
from ..enums import DetectionMethod, IssueCategory, Severity
from ..introspection.models import Snapshot
from ..modeling.models import InferredModel
from ..target import QueryExecutor
from .client import CompletionClient, CompletionError
from .fix_planner import fix_plan_from_payload
from .summarizer import describe_schema

logger = logging.getLogger(__name__)

PROACTIVE_MODULE_ID = "PROACTIVE_INVESTIGATOR"
MAX_PROACTIVE_HYPOTHESES = 3


class UnsafeQueryError(Exception):
    """
    Raised when collaborator-written SQL is not a single read-only SELECT.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "error": "unsafe_query",
            "code": self.code,
            "message": self.message,
        }


class Hypothesis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    description: str
    likelihood: str = "MEDIUM"


class ProblemAnalysis(BaseModel):
    model_config = ConfigDict(extra="forbid")

    problem: str
    hypotheses: List[Hypothesis] = Field(default_factory=list)


class VerificationQuery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    hypothesis: str
    sql: str
    explanation: str = ""


class InvestigationAnalysis(BaseModel):
    model_config = ConfigDict(extra="forbid")

    confirmed: bool
    evidence: str
    fix_plan: Optional[FixPlan] = None


class ProactiveInvestigationResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    issues: List[Issue] = Field(default_factory=list)
    log: List[Dict[str, Any]] = Field(default_factory=list)


def ensure_read_only_query(sql: str, row_limit: int = 20) -> str:
    """Validate collaborator SQL and force a row cap.

    The query is always wrapped in an outer SELECT carrying the cap, so a
    LIMIT inside a subquery or a larger LIMIT of its own never widens it.

    Args:
        sql: Query text as returned by the collaborator
        row_limit: Maximum number of rows the query may return

    Returns:
        The query, trailing semicolon removed, wrapped with a LIMIT clause

    Raises:
        UnsafeQueryError: If the query does not start with SELECT or holds
            more than one statement
    """
    query = (sql or "").strip().rstrip(";").strip()
    if not query.upper().startswith("SELECT"):
        raise UnsafeQueryError("NOT_SELECT", "Only SELECT queries are allowed")
    if ";" in query:
        raise UnsafeQueryError("MULTIPLE_STATEMENTS", "Only a single statement is allowed")
    return f"SELECT * FROM ({query}) AS capped LIMIT {int(row_limit)}"


VERIFICATION_PROMPT = """You are a SQL expert. Convert this hypothesis into a SQL verification query.

HYPOTHESIS: "{hypothesis}"

DATABASE CONTEXT:
{schema}

RULES:
1. Return a SELECT query that returns rows proving the issue exists.
2. If checking for duplicates, use GROUP BY ... HAVING COUNT(*) > 1.
3. If checking for missing FKs, use LEFT JOIN ... WHERE right.id IS NULL.
4. The query must be READ-ONLY (SELECT only).
5. Limit results to 10 rows.
6. Always use table aliases and fully qualify all column names.

Response JSON format:
{{"sql": "SELECT ...", "explanation": "Brief explanation of what this query checks"}}"""

ANALYSIS_PROMPT = """Analyze these query results for the hypothesis: "{hypothesis}"

QUERY: {sql}

RESULTS (first {count} rows):
{rows}

Does this confirm the issue? If YES, generate a fix plan.
The "reasoning" field of each migration must be plain English.
Include an "appCodeChanges" array of "ACTION: ... | REASON: ..." instructions.

Response JSON format:
{{
  "confirmed": true,
  "evidence": "Explanation of findings",
  "fixPlan": {{
    "migrations": [{{"description": "...", "sql": "...", "safetyRating": "SAFE", "reasoning": "..."}}],
    "appCodeChanges": ["ACTION: ... | REASON: ..."]
  }}
}}"""

PROBLEM_PROMPT = """You are a senior database architect. Analyze this user problem and brainstorm potential database-level causes.

USER PROBLEM: "{problem}"

DATABASE CONTEXT:
{schema}

RULES:
1. Brainstorm 3-5 specific, testable hypotheses about what could be wrong in the database.
2. Focus on missing rows, disconnected relationships, duplicate data or missing columns.
3. Ignore application-layer bugs unless they leave a trace in the database.

Response JSON format:
{{"hypotheses": [{{"id": "hyp_1", "title": "...", "description": "...", "likelihood": "HIGH|MEDIUM|LOW"}}]}}"""


def generate_verification_query(
    client: CompletionClient,
    hypothesis: str,
    model: InferredModel,
    snapshot: Snapshot,
) -> VerificationQuery:
    """Ask the collaborator for one query that would prove ``hypothesis``.

    Raises:
        CompletionError: If the collaborator fails or returns no SQL
    """
    payload = client.complete_json(
        "You are a SQL expert. Output JSON only.",
        VERIFICATION_PROMPT.format(
            hypothesis=hypothesis, schema=describe_schema(snapshot, model)
        ),
    )
    sql = payload.get("sql")
    if not isinstance(sql, str) or not sql.strip():
        raise CompletionError("MALFORMED_RESPONSE", "Verification query missing from response")
    return VerificationQuery(
        hypothesis=hypothesis,
        sql=sql.strip(),
        explanation=str(payload.get("explanation") or ""),
    )


def analyze_investigation_results(
    client: CompletionClient,
    hypothesis: str,
    sql: str,
    rows: List[Dict[str, Any]],
) -> InvestigationAnalysis:
    """Decide whether ``rows`` confirm ``hypothesis``.

    No rows means not confirmed, without asking the collaborator. When the
    collaborator fails the presence of rows is taken as confirmation.
    """
    if not rows:
        return InvestigationAnalysis(
            confirmed=False,
            evidence="Query returned no rows, suggesting the hypothesized issue does not exist.",
        )

    try:
        payload = client.complete_json(
            "You are a database expert. Output JSON only.",
            ANALYSIS_PROMPT.format(
                hypothesis=hypothesis,
                sql=sql,
                count=len(rows),
                rows=json.dumps(rows, indent=2, default=str),
            ),
        )
    except CompletionError as e:
        logger.warning(f"Result analysis failed, falling back to row evidence: {e.code}")
        return InvestigationAnalysis(
            confirmed=True,
            evidence=f"Found {len(rows)} rows matching the criteria.",
        )

    fix_payload = payload.get("fixPlan")
    return InvestigationAnalysis(
        confirmed=bool(payload.get("confirmed")),
        evidence=str(payload.get("evidence") or ""),
        fix_plan=fix_plan_from_payload(fix_payload) if isinstance(fix_payload, dict) else None,
    )


def analyze_problem_statement(
    client: CompletionClient,
    problem: str,
    model: InferredModel,
    snapshot: Snapshot,
) -> ProblemAnalysis:
    """Break a vague problem into testable hypotheses.

    Raises:
        CompletionError: If the collaborator fails
    """
    payload = client.complete_json(
        "You are a database detective. Output JSON only.",
        PROBLEM_PROMPT.format(problem=problem, schema=describe_schema(snapshot, model)),
    )
    hypotheses = []
    for index, item in enumerate(payload.get("hypotheses") or []):
        if not isinstance(item, dict) or not item.get("description"):
            continue
        hypotheses.append(
            Hypothesis(
                id=str(item.get("id") or f"hyp_{index + 1}"),
                title=str(item.get("title") or item["description"]),
                description=str(item["description"]),
                likelihood=str(item.get("likelihood") or "MEDIUM").upper(),
            )
        )
    return ProblemAnalysis(problem=problem, hypotheses=hypotheses)


def run_query(executor: QueryExecutor, sql: str, row_limit: int) -> List[Dict[str, Any]]:
    """Validate and execute a collaborator query on the read-only connection."""
    return executor.fetch_all(ensure_read_only_query(sql, row_limit))


def run_proactive_investigation(
    client: CompletionClient,
    problem: str,
    snapshot: Snapshot,
    model: InferredModel,
    executor: QueryExecutor,
    row_limit: int = 20,
) -> ProactiveInvestigationResult:
    """Investigate a user-reported problem end to end.

    Up to three non-LOW hypotheses are tested. Each confirmed one becomes a
    HIGH issue carrying the drafted fixes. A hypothesis that fails at any
    step is logged and skipped.
    """
    logger.info("Analyzing problem statement")
    log: List[Dict[str, Any]] = []
    issues: List[Issue] = []

    analysis = analyze_problem_statement(client, problem, model, snapshot)
    log.append({"step": "analyze", "result": analysis.model_dump(mode="json")})

    hypotheses = [h for h in analysis.hypotheses if h.likelihood != "LOW"]
    for hypothesis in hypotheses[:MAX_PROACTIVE_HYPOTHESES]:
        logger.info(f"Testing hypothesis {hypothesis.id}")
        try:
            query = generate_verification_query(client, hypothesis.description, model, snapshot)
            sql = ensure_read_only_query(query.sql, row_limit)
            log.append({"step": "generate", "hypothesis": hypothesis.id, "sql": sql})

            rows = executor.fetch_all(sql)
            log.append({"step": "execute", "hypothesis": hypothesis.id, "row_count": len(rows)})

            findings = analyze_investigation_results(client, hypothesis.description, sql, rows)
        except (CompletionError, UnsafeQueryError, SQLAlchemyError) as e:
            logger.warning(f"Hypothesis {hypothesis.id} could not be verified: {e.__class__.__name__}")
            log.append({"step": "error", "hypothesis": hypothesis.id, "error": str(e)})
            continue

        log.append(
            {"step": "analyze_results", "hypothesis": hypothesis.id, "confirmed": findings.confirmed}
        )
        if not findings.confirmed:
            continue

        issues.append(
            Issue(
                id=f"investigation-{hypothesis.id}",
                module_id=PROACTIVE_MODULE_ID,
                category=IssueCategory.RELATIONSHIP,
                severity=Severity.HIGH,
                title=f"User Reported: {hypothesis.title}",
                description=f"Investigation confirmed: {findings.evidence}",
                evidence=Evidence(
                    sql=sql,
                    result_sample=rows[:5],
                    row_count=len(rows),
                ),
                impact="This issue was explicitly reported by the user as a blocking problem.",
                confidence=1.0,
                detection_method=DetectionMethod.DATA_EVIDENCE,
                attached_fix=findings.fix_plan,
            )
        )

    return ProactiveInvestigationResult(issues=issues, log=log)
