"""
Constraint gaps: identity keys with no uniqueness constraint and FK-shaped
columns with no foreign key. Schema-only; issues no queries.
"""

from __future__ import annotations

from typing import List

from ...enums import DetectionMethod, IdentityKeyType, IssueCategory, SafetyRating, Severity
from ..issues import Evidence, FixPlan, Issue, SqlFix
from .base import (
    AuditContext,
    AuditModule,
    ansi_quote,
    ansi_table,
    find_referenced_table,
    key_column,
    undeclared_fk_columns,
)

_HIGH_RISK_KEYS = (IdentityKeyType.EMAIL, IdentityKeyType.EXTERNAL_ID)


class ConstraintGapsModule(AuditModule):
    id = "GENERIC_CONSTRAINT_GAPS"
    name = "Missing Constraints Detection"

    def run(self, context: AuditContext) -> List[Issue]:
        issues: List[Issue] = []
        snapshot = context.snapshot

        for identity_key in context.model.identity_keys:
            if identity_key.has_unique_constraint:
                continue
            table = snapshot.find_table(identity_key.table_name)
            if table is None:
                continue

            column_name = identity_key.column_name
            constraint_name = f"uq_{table.name}_{column_name}"
            issues.append(
                Issue(
                    id=f"missing-unique-{table.name}-{column_name}",
                    module_id=self.id,
                    category=IssueCategory.IDENTITY,
                    severity=(
                        Severity.HIGH
                        if identity_key.key_type in _HIGH_RISK_KEYS
                        else Severity.MEDIUM
                    ),
                    title=f"Missing unique constraint on {table.name}.{column_name}",
                    description=(
                        f"Identity column `{column_name}` ({identity_key.key_type.value}) "
                        f"lacks a unique constraint."
                    ),
                    evidence=Evidence(
                        sql="-- Detected from schema",
                        affected_tables=[table.name],
                        affected_columns=[column_name],
                    ),
                    impact=(
                        "Allows duplicate identity values, leading to data quality "
                        "issues and query ambiguity."
                    ),
                    confidence=0.9,
                    detection_method=DetectionMethod.CONSTRAINT,
                    attached_fix=FixPlan(
                        migrations=[
                            SqlFix(
                                description=f"Add unique constraint on {table.name}.{column_name}",
                                sql=(
                                    f"ALTER TABLE {ansi_table(table)} ADD CONSTRAINT "
                                    f"{ansi_quote(constraint_name)} UNIQUE ({ansi_quote(column_name)});"
                                ),
                                safety_rating=SafetyRating.RISKY,
                                reasoning=(
                                    "Fails if duplicate values already exist; "
                                    "deduplicate first."
                                ),
                            )
                        ]
                    ),
                )
            )

        for table in snapshot.tables:
            for column in undeclared_fk_columns(table):
                referenced = find_referenced_table(snapshot, column.name)
                if referenced is None:
                    continue
                referenced_key = key_column(referenced) or "id"

                suggested = (
                    f"ALTER TABLE {ansi_table(table)} ADD CONSTRAINT "
                    f"{ansi_quote(f'fk_{table.name}_{column.name}')} "
                    f"FOREIGN KEY ({ansi_quote(column.name)}) "
                    f"REFERENCES {ansi_table(referenced)}({ansi_quote(referenced_key)}) "
                    f"ON DELETE SET NULL;"
                )
                issues.append(
                    Issue(
                        id=f"missing-fk-{table.name}-{column.name}",
                        module_id=self.id,
                        category=IssueCategory.RELATIONSHIP,
                        severity=Severity.MEDIUM,
                        title=f"Missing foreign key constraint on {table.name}.{column.name}",
                        description=(
                            f"Column `{column.name}` appears to reference "
                            f"`{referenced.name}` but has no foreign key constraint."
                        ),
                        evidence=Evidence(
                            sql=f"-- Suggested: {suggested}",
                            affected_tables=[table.name, referenced.name],
                            affected_columns=[column.name],
                        ),
                        impact="Allows orphan rows and referential integrity violations.",
                        confidence=0.75,
                        detection_method=DetectionMethod.HEURISTIC,
                        attached_fix=FixPlan(
                            migrations=[
                                SqlFix(
                                    description=(
                                        f"Add foreign key constraint on {table.name}.{column.name}"
                                    ),
                                    sql=suggested,
                                    safety_rating=SafetyRating.SAFE,
                                    reasoning=(
                                        f"Enforces referential integrity between "
                                        f"{table.name} and {referenced.name}."
                                    ),
                                )
                            ]
                        ),
                    )
                )

        return issues
