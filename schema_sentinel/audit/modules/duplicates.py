"""
Duplicates: identity-key columns without a uniqueness constraint that
already hold repeated values.
"""

from __future__ import annotations

import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from ...enums import DetectionMethod, IssueCategory
from ..budget import should_sample
from ..issues import Evidence, Issue
from .base import AuditContext, AuditModule, bounded_source, severity_for_count

logger = logging.getLogger(__name__)

SAMPLE_ROWS_IN_EVIDENCE = 10


class DuplicatesModule(AuditModule):
    """Runs one GROUP BY ... HAVING COUNT(*) > 1 per unconstrained identity key."""

    id = "GENERIC_DUPLICATES"
    name = "Duplicate Entity Detection"

    def run(self, context: AuditContext) -> List[Issue]:
        issues: List[Issue] = []
        executor, budget, config = context.executor, context.budget, context.config
        if executor is None:
            return issues

        for identity_key in context.model.identity_keys:
            if not budget.can_run_query():
                break
            if identity_key.has_unique_constraint:
                continue

            table = context.snapshot.find_table(identity_key.table_name)
            if table is None or table.get_column(identity_key.column_name) is None:
                continue

            col = executor.quote(identity_key.column_name)
            query = (
                f"SELECT t.{col} AS value, COUNT(*) AS dup_count "
                f"FROM {bounded_source(executor, table, config)} t "
                f"WHERE t.{col} IS NOT NULL "
                f"GROUP BY t.{col} "
                f"HAVING COUNT(*) > 1 "
                f"ORDER BY COUNT(*) DESC "
                f"LIMIT {int(config.max_rows_per_query)}"
            )

            try:
                rows = executor.fetch_all(query)
            except SQLAlchemyError as e:
                budget.record_query(0)
                logger.warning(
                    f"Duplicate check failed for {table.name}.{identity_key.column_name}: "
                    f"{e.__class__.__name__}"
                )
                continue
            budget.record_query(len(rows))

            if not rows:
                continue

            # rows beyond the first occurrence of each value
            total_duplicates = sum(int(row["dup_count"]) - 1 for row in rows)
            key_type = identity_key.key_type.value
            sampled = should_sample(table.approx_row_count, config.sample_threshold_rows)

            issues.append(
                Issue(
                    id=f"duplicate-{table.name}-{identity_key.column_name}",
                    module_id=self.id,
                    category=IssueCategory.IDENTITY,
                    severity=severity_for_count(
                        total_duplicates, config.duplicate_escalation_rows
                    ),
                    title=f"Duplicate {key_type} values in {table.name}.{identity_key.column_name}",
                    description=(
                        f"Found {len(rows)} duplicate {key_type} values in "
                        f"`{table.name}`.`{identity_key.column_name}`, affecting "
                        f"{total_duplicates} rows" + (" (sampled)." if sampled else ".")
                    ),
                    evidence=Evidence(
                        sql=query,
                        result_sample=rows[:SAMPLE_ROWS_IN_EVIDENCE],
                        affected_tables=[table.name],
                        affected_columns=[identity_key.column_name],
                        row_count=total_duplicates,
                    ),
                    impact=(
                        "User-facing screens will show inconsistent totals. "
                        "Queries may return unexpected results."
                    ),
                    confidence=0.85 if sampled else 0.95,
                    detection_method=DetectionMethod.DATA_EVIDENCE,
                )
            )

        return issues
