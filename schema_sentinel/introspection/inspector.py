"""
Schema introspection.

Produces an immutable Snapshot of a live database through SQLAlchemy's
reflection API plus a dialect-specific planner-statistics row estimate.

Failure semantics: any metadata query that fails for any table aborts the
whole introspection with an IntrospectionError. A partial snapshot is never
returned.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import CompileError, SQLAlchemyError

from ..enums import ConstraintType
from ..target import set_statement_timeout
from .models import Column, ConstraintInfo, ForeignKeyEdge, IndexInfo, Snapshot, Table

logger = logging.getLogger(__name__)

EXCLUDED_SCHEMAS = {"pg_catalog", "information_schema", "pg_toast"}
EXCLUDED_SCHEMA_PREFIXES = ("pg_temp", "pg_toast_temp")


class IntrospectionError(Exception):
    """
    Raised when the catalog cannot be read.

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
            "error": "introspection_failed",
            "code": self.code,
            "message": self.message,
        }


def _type_name(type_: Any, connection: Connection) -> Tuple[str, Optional[int]]:
    """Render a reflected type as a lower-case base name plus length."""
    try:
        rendered = type_.compile(dialect=connection.dialect)
    except (CompileError, NotImplementedError, AttributeError):
        rendered = type_.__class__.__name__
    base = str(rendered).split("(")[0].strip().lower()
    length = getattr(type_, "length", None)
    return base, length if isinstance(length, int) else None


def _audited_schemas(inspector: Inspector) -> List[str]:
    return [
        schema
        for schema in inspector.get_schema_names()
        if schema not in EXCLUDED_SCHEMAS
        and not schema.startswith(EXCLUDED_SCHEMA_PREFIXES)
    ]


def approximate_row_count(connection: Connection, schema: str, table: str) -> Optional[int]:
    """Read the planner's row estimate for a table.

    Never runs COUNT(*). Returns None when the dialect keeps no statistics
    or the table has never been analyzed.
    """
    dialect = connection.dialect.name

    if dialect == "postgresql":
        estimate = connection.execute(
            text(
                """
                SELECT c.reltuples::bigint AS estimate
                FROM pg_class c
                JOIN pg_namespace n ON n.oid = c.relnamespace
                WHERE n.nspname = :schema AND c.relname = :table
                """
            ),
            {"schema": schema, "table": table},
        ).scalar()
        if estimate is None or estimate < 0:
            return None
        return int(estimate)

    if dialect == "sqlite":
        has_stats = connection.execute(
            text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_stat1'")
        ).scalar()
        if not has_stats:
            return None
        stat = connection.execute(
            text("SELECT stat FROM sqlite_stat1 WHERE tbl = :table LIMIT 1"),
            {"table": table},
        ).scalar()
        if not stat:
            return None
        first = str(stat).split()[0]
        return int(first) if first.isdigit() else None

    if dialect in ("mysql", "mariadb"):
        estimate = connection.execute(
            text(
                """
                SELECT table_rows FROM information_schema.tables
                WHERE table_schema = :schema AND table_name = :table
                """
            ),
            {"schema": schema, "table": table},
        ).scalar()
        return int(estimate) if estimate is not None else None

    return None


def _extract_table(
    connection: Connection, inspector: Inspector, schema: str, name: str
) -> Table:
    """Read columns, indexes, constraints and row estimate for one table."""
    pk = inspector.get_pk_constraint(name, schema=schema) or {}
    pk_columns = list(pk.get("constrained_columns") or [])

    uniques = inspector.get_unique_constraints(name, schema=schema)
    raw_indexes = inspector.get_indexes(name, schema=schema)
    foreign_keys = inspector.get_foreign_keys(name, schema=schema)
    try:
        checks = inspector.get_check_constraints(name, schema=schema)
    except NotImplementedError:
        checks = []

    unique_columns = {
        u["column_names"][0] for u in uniques if len(u.get("column_names") or []) == 1
    }
    unique_columns.update(
        ix["column_names"][0]
        for ix in raw_indexes
        if ix.get("unique") and len(ix.get("column_names") or []) == 1
        and ix["column_names"][0] is not None
    )

    columns: List[Column] = []
    for raw in inspector.get_columns(name, schema=schema):
        data_type, max_length = _type_name(raw["type"], connection)
        is_pk = raw["name"] in pk_columns
        columns.append(
            Column(
                name=raw["name"],
                data_type=data_type,
                nullable=bool(raw.get("nullable", True)) and not is_pk,
                has_default=raw.get("default") is not None,
                is_primary_key=is_pk,
                is_unique=raw["name"] in unique_columns,
                max_length=max_length,
            )
        )

    indexes: List[IndexInfo] = [
        IndexInfo(
            name=ix.get("name") or "",
            columns=[c for c in (ix.get("column_names") or []) if c is not None],
            is_unique=bool(ix.get("unique")),
            is_primary=False,
        )
        for ix in raw_indexes
    ]
    if pk_columns:
        indexes.insert(
            0,
            IndexInfo(
                name=pk.get("name") or f"{name}_pkey",
                columns=pk_columns,
                is_unique=True,
                is_primary=True,
            ),
        )

    constraints: List[ConstraintInfo] = []
    if pk_columns:
        constraints.append(
            ConstraintInfo(
                name=pk.get("name") or f"{name}_pkey",
                type=ConstraintType.PRIMARY_KEY,
                columns=pk_columns,
            )
        )
    for fk in foreign_keys:
        constraints.append(
            ConstraintInfo(
                name=fk.get("name") or f"fk_{name}_{'_'.join(fk['constrained_columns'])}",
                type=ConstraintType.FOREIGN_KEY,
                columns=list(fk["constrained_columns"]),
                referenced_table=fk.get("referred_table"),
                referenced_columns=list(fk.get("referred_columns") or []),
            )
        )
    for u in uniques:
        constraints.append(
            ConstraintInfo(
                name=u.get("name") or f"uq_{name}_{'_'.join(u['column_names'])}",
                type=ConstraintType.UNIQUE,
                columns=list(u["column_names"]),
            )
        )
    for check in checks:
        constraints.append(
            ConstraintInfo(name=check.get("name") or f"ck_{name}", type=ConstraintType.CHECK)
        )

    return Table(
        schema=schema,
        name=name,
        columns=columns,
        indexes=indexes,
        constraints=constraints,
        approx_row_count=approximate_row_count(connection, schema, name),
    )


def _extract_relationships(inspector: Inspector, schemas: List[str]) -> List[ForeignKeyEdge]:
    """Collect every declared foreign key in one pass per schema."""
    edges: List[ForeignKeyEdge] = []
    for schema in schemas:
        multi: Dict[Tuple[Optional[str], str], List[Dict[str, Any]]] = (
            inspector.get_multi_foreign_keys(schema=schema)
        )
        for (key_schema, table_name), fks in sorted(
            multi.items(), key=lambda item: item[0][1]
        ):
            from_schema = key_schema or schema
            for fk in fks:
                to_schema = fk.get("referred_schema") or from_schema
                for from_col, to_col in zip(
                    fk["constrained_columns"], fk.get("referred_columns") or []
                ):
                    edges.append(
                        ForeignKeyEdge(
                            from_table=f"{from_schema}.{table_name}",
                            from_column=from_col,
                            to_table=f"{to_schema}.{fk['referred_table']}",
                            to_column=to_col,
                            constraint_name=fk.get("name"),
                        )
                    )
    return edges


def introspect(connection: Connection, statement_timeout_ms: int = 30000) -> Snapshot:
    """Capture a Snapshot of the database behind ``connection``.

    Args:
        connection: Open connection to the target database
        statement_timeout_ms: Applied before the first metadata query

    Returns:
        Snapshot with tables ordered by (schema, name)

    Raises:
        IntrospectionError: If any metadata query fails
    """
    current: Optional[str] = None
    try:
        set_statement_timeout(connection, statement_timeout_ms)
        inspector = inspect(connection)
        schemas = _audited_schemas(inspector)

        tables: List[Table] = []
        for schema in sorted(schemas):
            for name in sorted(inspector.get_table_names(schema=schema)):
                current = f"{schema}.{name}"
                tables.append(_extract_table(connection, inspector, schema, name))

        current = None
        relationships = _extract_relationships(inspector, schemas)
    except SQLAlchemyError as e:
        where = f" while reading {current}" if current else ""
        raise IntrospectionError(
            "METADATA_QUERY_FAILED",
            f"Catalog query failed{where}: {e.__class__.__name__}",
        ) from e

    logger.info(
        f"Introspection captured {len(tables)} tables and {len(relationships)} foreign keys"
    )
    return Snapshot(
        tables=tables,
        relationships=relationships,
        extracted_at=datetime.now(timezone.utc),
    )
