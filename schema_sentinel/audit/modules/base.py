"""
Audit module interface and shared heuristics.

A module receives an AuditContext and returns zero or more Issues. Modules
that query the target must consult ``context.budget.can_run_query()`` first
and record every query they run.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ...enums import ModuleCategory, Severity
from ...introspection.models import Column, Snapshot, Table
from ...modeling.models import InferredModel
from ...target import QueryExecutor
from ..budget import BudgetConfig, BudgetTracker, should_sample
from ..issues import Issue

_ID_SUFFIX_RE = re.compile(r"(_id|Id)$")


@dataclass
class AuditContext:
    """Everything a module may look at while it runs."""

    snapshot: Snapshot
    model: InferredModel
    executor: Optional[QueryExecutor]
    budget: BudgetTracker
    config: BudgetConfig


class AuditModule(ABC):
    """Abstract base class for audit modules."""

    id: str = ""
    name: str = ""
    category: ModuleCategory = ModuleCategory.GENERIC

    @abstractmethod
    def run(self, context: AuditContext) -> List[Issue]:
        """Inspect the context and report issues.

        Args:
            context: Snapshot, inferred model, executor and this module's budget

        Returns:
            Issues found, in a stable order
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.id}>"


def is_fk_shaped(column_name: str) -> bool:
    """``customer_id`` and ``customerId`` look like foreign keys; ``id`` does not."""
    if column_name.lower() == "id":
        return False
    return bool(_ID_SUFFIX_RE.search(column_name)) or column_name.lower().endswith("_id")


def referenced_concept(column_name: str) -> str:
    """The entity name a foreign-key-shaped column points at."""
    stripped = _ID_SUFFIX_RE.sub("", column_name)
    if stripped.lower().endswith("_id"):
        stripped = stripped[:-3]
    return stripped


def find_referenced_table(snapshot: Snapshot, column_name: str) -> Optional[Table]:
    """Guess the table an FK-shaped column refers to by name.

    ``customer_id`` matches ``customer``, ``customers`` or, for
    ``company_id``, ``companies``.
    """
    guess = referenced_concept(column_name).lower()
    if not guess:
        return None
    candidates = [guess, f"{guess}s", f"{guess}es"]
    if guess.endswith("y"):
        candidates.append(f"{guess[:-1]}ies")
    for candidate in candidates:
        for table in snapshot.tables:
            if table.name.lower() == candidate:
                return table
    return None


def undeclared_fk_columns(table: Table) -> List[Column]:
    """FK-shaped columns with no declared foreign-key constraint."""
    return [
        column
        for column in table.columns
        if is_fk_shaped(column.name) and not table.has_foreign_key_on(column.name)
    ]


def severity_for_count(count: int, threshold: int) -> Severity:
    """MEDIUM up to ``threshold`` affected rows, HIGH above it."""
    return Severity.HIGH if count > threshold else Severity.MEDIUM


def bounded_source(
    executor: QueryExecutor, table: Table, config: BudgetConfig, columns: str = "*"
) -> str:
    """FROM-clause source for ``table``, restricted when the table is large.

    Large tables are read through a LIMITed subquery so the limit bounds the
    scan itself rather than the aggregate output.
    """
    qualified = executor.qualify(table.schema_name, table.name)
    if should_sample(table.approx_row_count, config.sample_threshold_rows):
        return f"(SELECT {columns} FROM {qualified} LIMIT {int(config.sample_row_limit)})"
    return qualified


def ansi_quote(identifier: str) -> str:
    """Double-quote an identifier for generated fix SQL."""
    return '"' + identifier.replace('"', '""') + '"'


def ansi_table(table: Table) -> str:
    return f"{ansi_quote(table.schema_name)}.{ansi_quote(table.name)}"


def key_column(table: Table) -> Optional[str]:
    """The column other tables would reference: a single-column primary key, else ``id``."""
    pk_columns = [c.name for c in table.columns if c.is_primary_key]
    if len(pk_columns) == 1:
        return pk_columns[0]
    if table.get_column("id") is not None:
        return "id"
    return None
