"""
Orphan rows: FK-shaped columns without a declared constraint whose values
point at parent rows that do not exist.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ...enums import DetectionMethod, IssueCategory, SafetyRating
from ..budget import should_sample
from ..issues import Evidence, FixPlan, Issue, SqlFix
from .base import (
    AuditContext,
    AuditModule,
    ansi_quote,
    ansi_table,
    bounded_source,
    find_referenced_table,
    key_column,
    severity_for_count,
    undeclared_fk_columns,
)

logger = logging.getLogger(__name__)


class OrphanRowsModule(AuditModule):
    """Counts child rows whose parent is missing, one anti-join per candidate column."""

    id = "GENERIC_ORPHANS"
    name = "Orphan Rows Detection"

    def run(self, context: AuditContext) -> List[Issue]:
        issues: List[Issue] = []
        snapshot, executor, budget, config = (
            context.snapshot,
            context.executor,
            context.budget,
            context.config,
        )
        if executor is None:
            return issues

        for table in snapshot.tables:
            if not budget.can_run_query():
                break

            for column in undeclared_fk_columns(table):
                if not budget.can_run_query():
                    break

                parent = find_referenced_table(snapshot, column.name)
                if parent is None:
                    continue
                parent_key = key_column(parent)
                if parent_key is None:
                    continue

                child_col = executor.quote(column.name)
                query = (
                    f"SELECT COUNT(*) AS orphan_count "
                    f"FROM {bounded_source(executor, table, config)} t "
                    f"WHERE t.{child_col} IS NOT NULL "
                    f"AND NOT EXISTS (SELECT 1 FROM {executor.qualify(parent.schema_name, parent.name)} r "
                    f"WHERE r.{executor.quote(parent_key)} = t.{child_col})"
                )

                try:
                    orphan_count = int(executor.fetch_scalar(query) or 0)
                except SQLAlchemyError as e:
                    budget.record_query(0)
                    logger.warning(
                        f"Orphan check failed for {table.name}.{column.name}: {e.__class__.__name__}"
                    )
                    continue
                budget.record_query(1)

                if orphan_count == 0:
                    continue

                sampled = should_sample(table.approx_row_count, config.sample_threshold_rows)
                issues.append(
                    Issue(
                        id=f"orphan-{table.name}-{column.name}",
                        module_id=self.id,
                        category=IssueCategory.RELATIONSHIP,
                        severity=severity_for_count(orphan_count, config.severity_escalation_rows),
                        title=f"Orphan rows detected in {table.name}.{column.name}",
                        description=(
                            f"Found {orphan_count} rows in `{table.name}` where `{column.name}` "
                            f"references non-existent records in `{parent.name}`"
                            + (" (sampled)." if sampled else ".")
                        ),
                        evidence=Evidence(
                            sql=query,
                            affected_tables=[table.name, parent.name],
                            affected_columns=[column.name],
                            row_count=orphan_count,
                        ),
                        impact=(
                            "Dashboard queries may show inconsistent counts. "
                            "Related data may appear incomplete."
                        ),
                        confidence=0.75 if sampled else 0.85,
                        detection_method=DetectionMethod.DATA_EVIDENCE,
                        attached_fix=self._clear_orphans_fix(table, column, parent, parent_key),
                    )
                )

        return issues

    @staticmethod
    def _clear_orphans_fix(table, column, parent, parent_key) -> Optional[FixPlan]:
        """Backfill that nulls out dangling references so a constraint can be added."""
        if not column.nullable:
            return None
        col = ansi_quote(column.name)
        return FixPlan(
            backfills=[
                SqlFix(
                    description=f"Clear orphaned references in {table.name}.{column.name}",
                    sql=(
                        f"UPDATE {ansi_table(table)} SET {col} = NULL "
                        f"WHERE {col} IS NOT NULL AND NOT EXISTS ("
                        f"SELECT 1 FROM {ansi_table(parent)} r "
                        f"WHERE r.{ansi_quote(parent_key)} = {ansi_table(table)}.{col});"
                    ),
                    safety_rating=SafetyRating.RISKY,
                    reasoning=(
                        f"Rows pointing at missing {parent.name} records cannot be joined; "
                        "clearing them allows a foreign key to be added."
                    ),
                )
            ]
        )
