"""
Tests for per-module budgets and the sampling threshold.
"""

import pytest

from schema_sentinel.audit.budget import (
    BudgetConfig,
    BudgetExceededError,
    BudgetTracker,
    should_sample,
)
from schema_sentinel.config import Settings


class TestBudgetTracker:
    """Tests for BudgetTracker accounting."""

    def test_queries_count_down(self):
        tracker = BudgetTracker(max_queries_per_module=2, max_rows_per_query=10)
        assert tracker.queries_remaining() == 2
        assert tracker.can_run_query()

        tracker.record_query(3)
        tracker.record_query(4)

        assert tracker.queries_remaining() == 0
        assert not tracker.can_run_query()
        assert tracker.total_rows_processed == 7

    def test_exhaustion_does_not_raise(self):
        tracker = BudgetTracker(max_queries_per_module=1, max_rows_per_query=10)
        tracker.record_query(1)
        tracker.record_query(1)
        assert tracker.queries_remaining() == -1
        assert not tracker.can_run_query()

    def test_row_ceiling_raises(self):
        tracker = BudgetTracker(max_queries_per_module=2, max_rows_per_query=10)
        tracker.record_query(20)
        with pytest.raises(BudgetExceededError) as exc_info:
            tracker.record_query(1)
        assert exc_info.value.code == "ROW_BUDGET_EXCEEDED"
        assert exc_info.value.to_dict()["error"] == "budget_exceeded"

    def test_from_settings(self):
        config = BudgetConfig.from_settings(
            Settings(max_queries_per_module=3, max_rows_per_query=7)
        )
        tracker = BudgetTracker.from_config(config)
        assert tracker.queries_remaining() == 3
        assert config.max_total_rows == 21


class TestShouldSample:
    """Tests for should_sample()."""

    @pytest.mark.parametrize(
        "row_count,expected",
        [(None, False), (0, False), (100000, False), (100001, True)],
    )
    def test_default_threshold(self, row_count, expected):
        assert should_sample(row_count) is expected

    def test_custom_threshold(self):
        assert should_sample(11, threshold=10)
