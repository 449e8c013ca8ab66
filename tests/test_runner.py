"""
Tests for the audit module registry and runner.
"""

import threading

from schema_sentinel.audit import get_audit_modules, get_module_by_id, run_audit
from schema_sentinel.audit.modules import AuditModule
from schema_sentinel.introspection.models import Snapshot
from schema_sentinel.modeling.models import InferredModel

from fakes import make_issue


class ExplodingModule(AuditModule):
    id = "TEST_EXPLODING"
    name = "Exploding"

    def run(self, context):
        raise RuntimeError("boom")


class StaticModule(AuditModule):
    id = "TEST_STATIC"
    name = "Static"

    def __init__(self, title):
        self.title = title
        self.budgets = []

    def run(self, context):
        self.budgets.append(context.budget)
        context.budget.record_query(1)
        return [make_issue(title=self.title, module_id=self.id)]


class TestRegistry:
    """Tests for the fixed module registry."""

    def test_registry_order(self):
        assert [m.id for m in get_audit_modules()] == [
            "GENERIC_ORPHANS",
            "GENERIC_DUPLICATES",
            "GENERIC_CONSTRAINT_GAPS",
            "GENERIC_TYPE_MISMATCH",
            "GENERIC_AMBIGUOUS_ENTITIES",
            "GENERIC_METRIC_RISK",
        ]

    def test_lookup_by_id(self):
        assert get_module_by_id("GENERIC_DUPLICATES").name == "Duplicate Entity Detection"
        assert get_module_by_id("NOPE") is None


class TestRunAudit:
    """Tests for run_audit()."""

    def test_failing_module_is_isolated(self):
        first, last = StaticModule("first"), StaticModule("last")
        issues = run_audit(
            Snapshot(), InferredModel(), None, modules=[first, ExplodingModule(), last]
        )
        assert [i.title for i in issues] == ["first", "last"]

    def test_each_module_gets_a_fresh_budget(self):
        first, second = StaticModule("a"), StaticModule("b")
        run_audit(Snapshot(), InferredModel(), None, modules=[first, second])
        assert first.budgets[0] is not second.budgets[0]
        assert second.budgets[0].queries_remaining() == 9

    def test_progress_reported_before_each_module(self):
        calls = []
        run_audit(
            Snapshot(),
            InferredModel(),
            None,
            modules=[StaticModule("a"), StaticModule("b")],
            on_progress=lambda done, total, name: calls.append((done, total, name)),
        )
        assert calls == [(0, 2, "Static"), (1, 2, "Static")]

    def test_stop_event_prevents_further_modules(self):
        stop = threading.Event()
        stop.set()
        issues = run_audit(
            Snapshot(), InferredModel(), None, modules=[StaticModule("a")], stop_event=stop
        )
        assert issues == []

    def test_empty_snapshot_yields_no_issues(self):
        assert run_audit(Snapshot(), InferredModel(), None) == []
