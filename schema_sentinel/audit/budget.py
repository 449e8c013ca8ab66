"""
Per-module query budgets.

Each audit module gets its own BudgetTracker. The tracker only informs:
modules must call ``can_run_query()`` before every query and stop when it
returns False. The one hard stop is the row ceiling, which raises
BudgetExceededError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class BudgetExceededError(Exception):
    """
    Raised when a module processes more rows than its budget allows.

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
            "error": "budget_exceeded",
            "code": self.code,
            "message": self.message,
        }


@dataclass(frozen=True)
class BudgetConfig:
    """Resource ceilings applied to every audit module."""

    max_queries_per_module: int = 10
    max_rows_per_query: int = 10000
    statement_timeout_ms: int = 30000
    sample_threshold_rows: int = 100000
    sample_row_limit: int = 50000
    severity_escalation_rows: int = 100
    duplicate_escalation_rows: int = 50

    @property
    def max_total_rows(self) -> int:
        return self.max_rows_per_query * self.max_queries_per_module

    @classmethod
    def from_settings(cls, settings) -> "BudgetConfig":
        return cls(
            max_queries_per_module=settings.max_queries_per_module,
            max_rows_per_query=settings.max_rows_per_query,
            statement_timeout_ms=settings.statement_timeout_ms,
            sample_threshold_rows=settings.sample_threshold_rows,
            sample_row_limit=settings.sample_row_limit,
            severity_escalation_rows=settings.severity_escalation_rows,
            duplicate_escalation_rows=settings.duplicate_escalation_rows,
        )


DEFAULT_BUDGET = BudgetConfig()


class BudgetTracker:
    """Counts queries and rows for one module."""

    def __init__(self, max_queries_per_module: int, max_rows_per_query: int):
        self.max_queries_per_module = max_queries_per_module
        self.max_rows_per_query = max_rows_per_query
        self._queries_remaining = max_queries_per_module
        self.total_rows_processed = 0

    @classmethod
    def from_config(cls, config: BudgetConfig) -> "BudgetTracker":
        return cls(config.max_queries_per_module, config.max_rows_per_query)

    def queries_remaining(self) -> int:
        return self._queries_remaining

    def can_run_query(self) -> bool:
        return self._queries_remaining > 0

    def record_query(self, row_count: int) -> None:
        """Account for one executed query that returned ``row_count`` rows.

        Raises:
            BudgetExceededError: If the module's cumulative rows pass
                max_rows_per_query * max_queries_per_module
        """
        self._queries_remaining -= 1
        self.total_rows_processed += max(0, int(row_count))

        ceiling = self.max_rows_per_query * self.max_queries_per_module
        if self.total_rows_processed > ceiling:
            raise BudgetExceededError(
                "ROW_BUDGET_EXCEEDED",
                f"Row processing budget exceeded: {self.total_rows_processed} > {ceiling}",
            )


def should_sample(row_count: Optional[int], threshold: int = 100000) -> bool:
    """Whether a table is large enough that its audit query must be bounded."""
    return (row_count or 0) > threshold
