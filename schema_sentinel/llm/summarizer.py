"""
Compact text renderings of issues and schemas for completion prompts.
"""

from __future__ import annotations

from typing import List, Sequence

from ..audit.issues import Issue
from ..introspection.models import Snapshot
from ..modeling.models import InferredModel


def select_top_issues(issues: Sequence[Issue], max_count: int = 30) -> List[Issue]:
    """Highest severity first, then highest confidence. Stable for ties."""
    ranked = sorted(issues, key=lambda i: (-i.severity.rank, -i.confidence))
    return ranked[:max_count]


def summarize_issues(issues: Sequence[Issue]) -> str:
    blocks = []
    for issue in issues:
        if issue.evidence.row_count:
            evidence = f"Affects {issue.evidence.row_count} rows"
        else:
            evidence = "Schema-level issue"
        blocks.append(
            f"- {issue.title} ({issue.severity.value}, confidence: {issue.confidence})\n"
            f"  Tables: {', '.join(issue.evidence.affected_tables)}\n"
            f"  {evidence}\n"
            f"  Impact: {issue.impact}"
        )
    return "\n\n".join(blocks)


def describe_schema(snapshot: Snapshot, model: InferredModel) -> str:
    """Entities, relationships and every table's columns, one table per block."""
    lines = [
        f"Entities: {', '.join(e.table_name for e in model.entities)}",
        "Relationships: "
        + ", ".join(f"{r.from_table} -> {r.to_table}" for r in model.relationships),
        "",
        "FULL SCHEMA:",
    ]
    for table in snapshot.tables:
        columns = []
        for column in table.columns:
            flags = ""
            if column.is_primary_key:
                flags += ", PK"
            if column.is_unique:
                flags += ", Unique"
            columns.append(f"{column.name} ({column.data_type}{flags})")
        lines.append(f"Table: {table.qualified_name}")
        lines.append(f"Columns: {', '.join(columns)}")
    return "\n".join(lines)
