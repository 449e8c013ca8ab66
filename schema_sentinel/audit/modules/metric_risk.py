"""
Metric risk: rows attached to more than one kind of parent at once.

A table with several FK-shaped columns pointing at different concepts can be
aggregated along any of them; rows that populate more than one make totals
depend on which path a report picks.
"""

from __future__ import annotations

import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from ...enums import DetectionMethod, IssueCategory
from ..budget import should_sample
from ..issues import Evidence, Issue
from .base import (
    AuditContext,
    AuditModule,
    bounded_source,
    is_fk_shaped,
    referenced_concept,
    severity_for_count,
)

logger = logging.getLogger(__name__)


class MetricRiskModule(AuditModule):
    id = "GENERIC_METRIC_RISK"
    name = "Metric Divergence Risk Detection"

    def run(self, context: AuditContext) -> List[Issue]:
        issues: List[Issue] = []
        executor, budget, config = context.executor, context.budget, context.config
        if executor is None:
            return issues

        for table in context.snapshot.tables:
            fk_columns = [c.name for c in table.columns if is_fk_shaped(c.name)]
            if len(fk_columns) < 2:
                continue
            concepts = {referenced_concept(name).lower() for name in fk_columns}
            if len(concepts) < 2:
                continue
            if not budget.can_run_query():
                break

            conditions = " AND ".join(f"t.{executor.quote(name)} IS NOT NULL" for name in fk_columns)
            query = (
                f"SELECT COUNT(*) AS multi_parent_count "
                f"FROM {bounded_source(executor, table, config)} t "
                f"WHERE {conditions}"
            )

            try:
                multi_parent_count = int(executor.fetch_scalar(query) or 0)
            except SQLAlchemyError as e:
                budget.record_query(0)
                logger.warning(f"Metric risk check failed for {table.name}: {e.__class__.__name__}")
                continue
            budget.record_query(1)

            if multi_parent_count == 0:
                continue

            sampled = should_sample(table.approx_row_count, config.sample_threshold_rows)
            issues.append(
                Issue(
                    id=f"metric-risk-{table.name}",
                    module_id=self.id,
                    category=IssueCategory.METRIC,
                    severity=severity_for_count(multi_parent_count, config.severity_escalation_rows),
                    title=f"Multi-parent relationship in {table.name}",
                    description=(
                        f"Table `{table.name}` has {len(fk_columns)} potential parent "
                        f"relationships ({', '.join(fk_columns)}). {multi_parent_count} rows "
                        f"have multiple parents populated" + (" (sampled)." if sampled else ".")
                    ),
                    evidence=Evidence(
                        sql=query,
                        affected_tables=[table.name],
                        affected_columns=fk_columns,
                        row_count=multi_parent_count,
                    ),
                    impact=(
                        "Dashboard counts will diverge depending on which relationship "
                        "is used for aggregation."
                    ),
                    confidence=0.75 if sampled else 0.85,
                    detection_method=DetectionMethod.DATA_EVIDENCE,
                )
            )

        return issues
