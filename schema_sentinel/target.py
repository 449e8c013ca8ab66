"""
Target database access.

Every connection to an audited database goes through this module: it is
opened scoped (closed and disposed on exit, whatever happens inside), put in
autocommit mode so one failing statement never poisons the statements after
it, given a statement timeout before anything else runs, and, for audits,
marked read-only.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.exc import ArgumentError, NoSuchModuleError, SQLAlchemyError
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)

# Turns a stored connection credential into a usable DSN
CredentialResolver = Callable[[str], str]


def plaintext_credential(stored: str) -> str:
    """Resolver for ledgers that store DSNs as-is."""
    return stored


class TargetConnectionError(Exception):
    """
    Raised when a target database cannot be reached or configured.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description (never contains credentials)
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "error": "target_connection",
            "code": self.code,
            "message": self.message,
        }


def describe_error(exc: SQLAlchemyError) -> str:
    """Summarize a driver error without echoing the DSN."""
    source = getattr(exc, "orig", None) or exc
    lines = str(source).strip().splitlines()
    first_line = lines[0] if lines else ""
    return f"{source.__class__.__name__}: {first_line}"


def set_statement_timeout(connection: Connection, timeout_ms: int) -> None:
    """Bound the runtime of every subsequent statement on this connection."""
    dialect = connection.dialect.name
    if dialect == "postgresql":
        connection.execute(text(f"SET statement_timeout = {int(timeout_ms)}"))
    elif dialect in ("mysql", "mariadb"):
        connection.execute(text(f"SET SESSION max_execution_time = {int(timeout_ms)}"))
    else:
        logger.debug(f"Statement timeout not supported by dialect {dialect}, skipping")


def set_read_only(connection: Connection) -> None:
    """Refuse writes for the rest of the session."""
    dialect = connection.dialect.name
    if dialect == "postgresql":
        connection.execute(text("SET SESSION CHARACTERISTICS AS TRANSACTION READ ONLY"))
    elif dialect == "sqlite":
        connection.execute(text("PRAGMA query_only = ON"))
    elif dialect in ("mysql", "mariadb"):
        connection.execute(text("SET SESSION TRANSACTION READ ONLY"))


@contextmanager
def open_target(
    dsn: str,
    statement_timeout_ms: int,
    read_only: bool = True,
    autocommit: bool = True,
) -> Iterator[Connection]:
    """Open a scoped connection to a target database.

    Args:
        dsn: Decrypted connection string
        statement_timeout_ms: Per-statement timeout applied before any query
        read_only: Put the session in read-only mode
        autocommit: Run each statement in its own transaction

    Yields:
        A live SQLAlchemy Connection, closed on exit

    Raises:
        TargetConnectionError: If the DSN is invalid or the database is unreachable
    """
    try:
        url = make_url(dsn)
        connect_args = {}
        if url.get_backend_name() == "sqlite":
            # stage threads share the connection, one at a time
            connect_args["check_same_thread"] = False
        engine = create_engine(url, poolclass=NullPool, connect_args=connect_args)
    except (ArgumentError, NoSuchModuleError) as e:
        raise TargetConnectionError(
            "INVALID_DSN", f"Connection string could not be parsed ({e.__class__.__name__})"
        ) from e

    try:
        try:
            connection = engine.connect()
        except SQLAlchemyError as e:
            raise TargetConnectionError(
                "CONNECTION_FAILED", f"Could not connect to target database: {describe_error(e)}"
            ) from e

        try:
            if autocommit:
                connection = connection.execution_options(isolation_level="AUTOCOMMIT")
            try:
                set_statement_timeout(connection, statement_timeout_ms)
                if read_only:
                    set_read_only(connection)
                if not autocommit:
                    # session settings persist; callers start their own transaction
                    connection.commit()
            except SQLAlchemyError as e:
                raise TargetConnectionError(
                    "SESSION_SETUP_FAILED",
                    f"Could not configure target session: {describe_error(e)}",
                ) from e
            yield connection
        finally:
            connection.close()
    finally:
        engine.dispose()


class QueryExecutor:
    """Thin read path used by audit modules and investigations.

    Wraps a Connection so modules only see "run this SQL, give me rows" plus
    dialect-correct identifier quoting.
    """

    def __init__(self, connection: Connection):
        self.connection = connection

    @property
    def dialect_name(self) -> str:
        return self.connection.dialect.name

    def quote(self, identifier: str) -> str:
        """Quote an identifier for the target dialect when required."""
        return self.connection.dialect.identifier_preparer.quote(identifier)

    def qualify(self, schema: Optional[str], table: str) -> str:
        """Render a schema-qualified table reference."""
        if schema:
            return f"{self.quote(schema)}.{self.quote(table)}"
        return self.quote(table)

    def fetch_all(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Execute a statement and return every row as a dict."""
        result = self.connection.execute(text(sql), dict(params or {}))
        return [dict(row) for row in result.mappings().all()]

    def fetch_scalar(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Execute a statement and return the first column of the first row."""
        result = self.connection.execute(text(sql), dict(params or {}))
        return result.scalar()


def interrupt_connection(connection: Connection) -> None:
    """Ask the driver to abort whatever statement is running on ``connection``.

    Safe to call from a thread other than the one executing. Drivers without
    a cancel hook are left to the statement timeout.
    """
    try:
        dbapi_connection = connection.connection.dbapi_connection
    except SQLAlchemyError:
        return
    for hook in ("cancel", "interrupt"):
        cancel = getattr(dbapi_connection, hook, None)
        if callable(cancel):
            try:
                cancel()
            except Exception as e:
                logger.warning(f"Could not interrupt target statement: {e.__class__.__name__}")
            return
