"""
Submission, polling and follow-up operations on audit runs.

These are the entry points an outer surface (the CLI, or any host
application) calls. Each takes a ledger session and returns plain data or
ledger models; none of them runs the pipeline inline.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.models import AuditRunModel
from .db.services import AuditResultService, AuditRunService, ConnectionService
from .enums import RunStatus
from .fixes.executor import FixApplier, FixExecutionResult
from .llm.client import CompletionClient, HttpCompletionClient
from .llm.investigator import (
    InvestigationAnalysis,
    analyze_investigation_results,
    ensure_read_only_query,
    generate_verification_query,
)
from .target import (
    CredentialResolver,
    QueryExecutor,
    TargetConnectionError,
    describe_error,
    open_target,
    plaintext_credential,
)
from .worker.loop import AuditJobRunner

logger = logging.getLogger(__name__)


class AuditRequestError(Exception):
    """
    Raised when a request refers to something that does not exist or is
    not in a usable state.

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
            "error": "audit_request",
            "code": self.code,
            "message": self.message,
        }


class HypothesisInvestigation(BaseModel):
    """Outcome of an ad-hoc hypothesis check against a completed run."""

    model_config = ConfigDict(extra="forbid")

    hypothesis: str
    sql: str
    explanation: str = ""
    row_count: int = 0
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    analysis: InvestigationAnalysis


def submit_audit(
    db: Session,
    connection_id: str,
    problem_statement: Optional[str] = None,
    runner: Optional[AuditJobRunner] = None,
) -> AuditRunModel:
    """Queue an audit run and wake the job runner.

    Args:
        db: Ledger session
        connection_id: Registered connection to audit
        problem_statement: Optional description of a suspected data problem
        runner: Job runner to trigger in the background; when omitted the
            run stays queued for a separate worker process

    Raises:
        AuditRequestError: If the connection is not registered
    """
    if ConnectionService(db).get_connection(connection_id) is None:
        raise AuditRequestError("CONNECTION_NOT_FOUND", f"Connection {connection_id} not found")

    run = AuditRunService(db).create_run(
        connection_id=connection_id,
        problem_statement=(problem_statement or "").strip() or None,
    )
    logger.info(f"Queued audit run {run.id} for connection {connection_id}")

    if runner is not None:
        runner.trigger_in_background()
    return run


def get_run_status(db: Session, run_id: str) -> Dict[str, Any]:
    """Status, progress and latest log message of one run.

    Raises:
        AuditRequestError: If the run does not exist
    """
    status = AuditRunService(db).get_status(run_id)
    if status is None:
        raise AuditRequestError("RUN_NOT_FOUND", f"Audit run {run_id} not found")
    return status


def apply_fixes(
    db: Session,
    result_id: str,
    fix_indices: Sequence[int],
    runner: Optional[AuditJobRunner] = None,
    credential_resolver: CredentialResolver = plaintext_credential,
    settings: Optional[Settings] = None,
) -> FixExecutionResult:
    """Apply selected migrations from a result and queue its verification run.

    Raises:
        FixExecutionError: If anything prevents the whole set from applying
    """
    settings = settings or get_settings()
    bind = db.get_bind()

    def session_factory() -> Session:
        return Session(bind=bind, autoflush=False)

    applier = FixApplier(
        session_factory,
        credential_resolver=credential_resolver,
        statement_timeout_ms=settings.statement_timeout_ms,
        on_enqueued=runner.trigger_in_background if runner is not None else None,
    )
    return applier.apply(result_id, fix_indices)


def investigate_hypothesis(
    db: Session,
    run_id: str,
    hypothesis: str,
    client: Optional[CompletionClient] = None,
    credential_resolver: CredentialResolver = plaintext_credential,
    settings: Optional[Settings] = None,
) -> HypothesisInvestigation:
    """Test one natural-language hypothesis against a completed run's target.

    The collaborator drafts a query from the run's schema, the query is
    checked to be a single SELECT capped at ``investigation_row_limit`` rows,
    and it is executed on a read-only connection.

    Raises:
        AuditRequestError: If the run has no result or its target is unreachable
        CompletionError: If the collaborator cannot draft a query
        UnsafeQueryError: If the drafted query is not read-only
    """
    settings = settings or get_settings()

    run = AuditRunService(db).get_run(run_id)
    if run is None:
        raise AuditRequestError("RUN_NOT_FOUND", f"Audit run {run_id} not found")
    if run.status != RunStatus.COMPLETED.value:
        raise AuditRequestError("RUN_NOT_COMPLETED", f"Audit run {run_id} is {run.status}")
    result = AuditResultService(db).get_result_for_run(run_id)
    if result is None:
        raise AuditRequestError("RESULT_NOT_FOUND", f"Audit run {run_id} has no result")
    connection = ConnectionService(db).get_connection(run.connection_id)
    if connection is None:
        raise AuditRequestError(
            "CONNECTION_NOT_FOUND", f"Connection {run.connection_id} not found"
        )

    snapshot = AuditResultService.load_snapshot(result)
    model = AuditResultService.load_inferred_model(result)
    dsn = credential_resolver(connection.encrypted_credential)

    owns_client = client is None
    client = client or HttpCompletionClient.from_settings(settings)
    try:
        query = generate_verification_query(client, hypothesis, model, snapshot)
        sql = ensure_read_only_query(query.sql, settings.investigation_row_limit)

        try:
            with open_target(dsn, settings.statement_timeout_ms) as target:
                rows = QueryExecutor(target).fetch_all(sql)
        except TargetConnectionError as e:
            raise AuditRequestError(e.code, e.message) from e
        except SQLAlchemyError as e:
            raise AuditRequestError("QUERY_FAILED", describe_error(e)) from e

        analysis = analyze_investigation_results(client, hypothesis, sql, rows)
    finally:
        if owns_client:
            client.close()

    logger.info(
        f"Hypothesis on run {run_id}: {len(rows)} rows, confirmed={analysis.confirmed}"
    )
    return HypothesisInvestigation(
        hypothesis=hypothesis,
        sql=sql,
        explanation=query.explanation,
        row_count=len(rows),
        rows=rows,
        analysis=analysis,
    )
