"""
Fix execution surface.

Applies selected migrations from a completed run's fix plan inside one
transaction on the target database, then queues a verification run that
re-audits against the same connection.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..db.services import AuditResultService, AuditRunService, ConnectionService
from ..enums import RunStatus
from ..target import (
    CredentialResolver,
    TargetConnectionError,
    describe_error,
    open_target,
    plaintext_credential,
)

logger = logging.getLogger(__name__)


class FixExecutionError(Exception):
    """
    Raised when selected fixes cannot be applied. Nothing from the
    transaction is kept.

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
            "error": "fix_execution_failed",
            "code": self.code,
            "message": self.message,
        }


class FixExecutionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    executed: int = 0
    applied_indices: List[int] = Field(default_factory=list)
    verification_run_id: Optional[str] = None


class FixApplier:
    """Runs selected migrations and enqueues the follow-up verification run."""

    def __init__(
        self,
        session_factory: sessionmaker,
        credential_resolver: CredentialResolver = plaintext_credential,
        statement_timeout_ms: int = 30000,
        on_enqueued: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            session_factory: Ledger sessionmaker
            credential_resolver: Maps a stored credential to a DSN
            statement_timeout_ms: Timeout for each migration statement
            on_enqueued: Called after the verification run is queued,
                typically the job runner's trigger
        """
        self.session_factory = session_factory
        self.credential_resolver = credential_resolver
        self.statement_timeout_ms = statement_timeout_ms
        self.on_enqueued = on_enqueued

    def apply(self, result_id: str, fix_indices: Sequence[int]) -> FixExecutionResult:
        """Apply ``fix_plan.migrations[i]`` for each selected index, in order.

        Raises:
            FixExecutionError: If the result is missing, an index is out of
                range, the target is unreachable or any statement fails
        """
        db: Session = self.session_factory()
        try:
            results = AuditResultService(db)
            result = results.get_result(result_id)
            if result is None:
                raise FixExecutionError("RESULT_NOT_FOUND", f"Audit result {result_id} not found")

            run = result.run
            if run is None or run.status != RunStatus.COMPLETED.value:
                raise FixExecutionError(
                    "RUN_NOT_COMPLETED", f"Audit result {result_id} has no completed run"
                )
            connection = ConnectionService(db).get_connection(run.connection_id)
            if connection is None:
                raise FixExecutionError(
                    "CONNECTION_NOT_FOUND", f"Connection {run.connection_id} not found"
                )

            migrations = results.load_fix_plan(result).migrations
            indices = list(dict.fromkeys(int(i) for i in fix_indices))
            invalid = [i for i in indices if i < 0 or i >= len(migrations)]
            if invalid:
                raise FixExecutionError(
                    "INVALID_FIX_INDEX", f"No migration at index {', '.join(map(str, invalid))}"
                )
            if not indices:
                return FixExecutionResult()

            dsn = self.credential_resolver(connection.encrypted_credential)
            self._execute(dsn, [(i, migrations[i]) for i in indices])

            verification_run = AuditRunService(db).create_run(
                connection_id=run.connection_id, parent_run_id=run.id
            )
            logger.info(
                f"Applied {len(indices)} fixes from result {result_id}; "
                f"queued verification run {verification_run.id}"
            )
        finally:
            db.close()

        if self.on_enqueued is not None:
            self.on_enqueued()

        return FixExecutionResult(
            executed=len(indices),
            applied_indices=indices,
            verification_run_id=verification_run.id,
        )

    def _execute(self, dsn: str, selected) -> None:
        """Run every statement in one transaction; the first failure rolls back all."""
        try:
            with open_target(
                dsn, self.statement_timeout_ms, read_only=False, autocommit=False
            ) as connection:
                with connection.begin():
                    for index, migration in selected:
                        logger.info(f"Executing migration {index}: {migration.description}")
                        try:
                            connection.execute(text(migration.sql))
                        except SQLAlchemyError as e:
                            raise FixExecutionError(
                                "STATEMENT_FAILED",
                                f"Migration {index} ({migration.description}): {describe_error(e)}",
                            ) from e
        except TargetConnectionError as e:
            raise FixExecutionError(e.code, e.message) from e
