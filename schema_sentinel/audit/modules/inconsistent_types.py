"""
Type inconsistencies visible in the schema alone.

Two checks: an FK-shaped column whose type differs from the key it appears
to reference, and date/time-named columns stored as free text.
"""

from __future__ import annotations

from typing import List

from ...enums import DetectionMethod, IssueCategory, SafetyRating, Severity
from ..issues import Evidence, FixPlan, Issue, SqlFix
from .base import (
    AuditContext,
    AuditModule,
    ansi_quote,
    ansi_table,
    find_referenced_table,
    is_fk_shaped,
    key_column,
)

_DATE_NAME_MARKERS = ("date", "time", "created", "updated")
_TEXT_TYPE_MARKERS = ("char", "text", "string", "clob")


def looks_like_date(column_name: str) -> bool:
    name = column_name.lower()
    return any(marker in name for marker in _DATE_NAME_MARKERS)


def is_text_type(data_type: str) -> bool:
    data_type = data_type.lower()
    return any(marker in data_type for marker in _TEXT_TYPE_MARKERS)


class InconsistentTypesModule(AuditModule):
    id = "GENERIC_TYPE_MISMATCH"
    name = "Type Inconsistency Detection"

    def run(self, context: AuditContext) -> List[Issue]:
        snapshot = context.snapshot
        issues: List[Issue] = []

        for table in snapshot.tables:
            for column in table.columns:
                if not is_fk_shaped(column.name):
                    continue
                referenced = find_referenced_table(snapshot, column.name)
                if referenced is None or referenced is table:
                    continue
                key_name = key_column(referenced)
                key = referenced.get_column(key_name) if key_name else None
                if key is None or key.data_type == column.data_type:
                    continue

                issues.append(
                    Issue(
                        id=f"type-mismatch-{table.name}-{column.name}",
                        module_id=self.id,
                        category=IssueCategory.TYPE,
                        severity=Severity.HIGH,
                        title=(
                            f"Type mismatch: {table.name}.{column.name} vs "
                            f"{referenced.name}.{key.name}"
                        ),
                        description=(
                            f"Column `{column.name}` in {table.name} is {column.data_type} "
                            f"but references {referenced.name}.{key.name} which is "
                            f"{key.data_type}."
                        ),
                        evidence=Evidence(
                            sql="-- Detected from schema",
                            affected_tables=[table.name, referenced.name],
                            affected_columns=[column.name, key.name],
                        ),
                        impact=(
                            "Joins may fail silently or perform poorly. "
                            "Inserts risk implicit conversion errors."
                        ),
                        confidence=0.95,
                        detection_method=DetectionMethod.CONSTRAINT,
                    )
                )

        for table in snapshot.tables:
            for column in table.columns:
                if not (looks_like_date(column.name) and is_text_type(column.data_type)):
                    continue

                col = ansi_quote(column.name)
                issues.append(
                    Issue(
                        id=f"date-as-text-{table.name}-{column.name}",
                        module_id=self.id,
                        category=IssueCategory.TYPE,
                        severity=Severity.MEDIUM,
                        title=f"Date stored as text: {table.name}.{column.name}",
                        description=(
                            f"Column `{column.name}` appears to hold a date/time "
                            f"but is stored as {column.data_type}."
                        ),
                        evidence=Evidence(
                            sql="-- Detected from schema",
                            affected_tables=[table.name],
                            affected_columns=[column.name],
                        ),
                        impact=(
                            "Date comparisons and sorting will not work correctly. "
                            "Timezone handling is impossible."
                        ),
                        confidence=0.7,
                        detection_method=DetectionMethod.HEURISTIC,
                        attached_fix=FixPlan(
                            migrations=[
                                SqlFix(
                                    description=(
                                        f"Convert {table.name}.{column.name} to timestamptz"
                                    ),
                                    sql=(
                                        f"ALTER TABLE {ansi_table(table)} ALTER COLUMN {col} "
                                        f"TYPE timestamptz USING {col}::timestamptz;"
                                    ),
                                    safety_rating=SafetyRating.RISKY,
                                    reasoning="Fails on any value that does not parse as a timestamp.",
                                )
                            ]
                        ),
                    )
                )

        return issues
