"""
Tests for the built-in audit modules.

Data-backed modules run against an in-memory SQLite target; schema-only
modules run against hand-built snapshots.
"""

import pytest
from sqlalchemy import text

from schema_sentinel.audit.budget import DEFAULT_BUDGET, BudgetConfig, BudgetTracker
from schema_sentinel.audit.modules import (
    AmbiguousEntitiesModule,
    AuditContext,
    ConstraintGapsModule,
    DuplicatesModule,
    InconsistentTypesModule,
    MetricRiskModule,
    OrphanRowsModule,
)
from schema_sentinel.audit.modules.base import find_referenced_table, is_fk_shaped
from schema_sentinel.enums import DetectionMethod, IssueCategory, SafetyRating, Severity
from schema_sentinel.introspection import introspect
from schema_sentinel.introspection.models import Column, Snapshot, Table
from schema_sentinel.modeling import infer_model
from schema_sentinel.target import QueryExecutor

SHOP = [
    "CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT, email TEXT)",
    "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER, total INTEGER)",
    "INSERT INTO customers (id, name, email) VALUES "
    "(1, 'Ada', 'ada@example.com'), (2, 'Bob', 'bob@example.com'), "
    "(3, 'Bobby', 'bob@example.com')",
    "INSERT INTO orders (id, customer_id, total) VALUES "
    "(1, 1, 10), (2, 2, 20), (3, 7, 30), (4, 8, 40), (5, 9, 50), (6, NULL, 60)",
]


def load(connection, statements):
    for statement in statements:
        connection.execute(text(statement))
    connection.commit()
    snapshot = introspect(connection)
    return snapshot, infer_model(snapshot), QueryExecutor(connection)


def run_module(module, snapshot, model=None, executor=None, config=DEFAULT_BUDGET):
    context = AuditContext(
        snapshot=snapshot,
        model=model if model is not None else infer_model(snapshot),
        executor=executor,
        budget=BudgetTracker.from_config(config),
        config=config,
    )
    return module.run(context), context.budget


def with_row_estimate(snapshot, table_name, estimate):
    tables = [
        t.model_copy(update={"approx_row_count": estimate}) if t.name == table_name else t
        for t in snapshot.tables
    ]
    return snapshot.model_copy(update={"tables": tables})


def column(name, data_type="integer", **kwargs):
    return Column(name=name, data_type=data_type, **kwargs)


def pk(name="id", data_type="integer"):
    return Column(name=name, data_type=data_type, nullable=False, is_primary_key=True)


class TestHeuristics:
    """Tests for shared naming heuristics."""

    @pytest.mark.parametrize(
        "name,expected",
        [("customer_id", True), ("customerId", True), ("id", False), ("ID", False), ("paid", False)],
    )
    def test_is_fk_shaped(self, name, expected):
        assert is_fk_shaped(name) is expected

    def test_find_referenced_table_plural_forms(self):
        snapshot = Snapshot(
            tables=[
                Table(schema="public", name="companies", columns=[pk()]),
                Table(schema="public", name="boxes", columns=[pk()]),
            ]
        )
        assert find_referenced_table(snapshot, "company_id").name == "companies"
        assert find_referenced_table(snapshot, "boxId").name == "boxes"
        assert find_referenced_table(snapshot, "user_id") is None


class TestOrphanRows:
    """Tests for OrphanRowsModule."""

    def test_counts_orphans(self, target_connection):
        snapshot, model, executor = load(target_connection, SHOP)
        issues, budget = run_module(OrphanRowsModule(), snapshot, model, executor)

        (issue,) = issues
        assert issue.id == "orphan-orders-customer_id"
        assert issue.module_id == "GENERIC_ORPHANS"
        assert issue.category == IssueCategory.RELATIONSHIP
        assert issue.severity == Severity.MEDIUM
        assert issue.detection_method == DetectionMethod.DATA_EVIDENCE
        assert issue.evidence.row_count == 3
        assert issue.evidence.affected_tables == ["orders", "customers"]
        assert issue.confidence == pytest.approx(0.85)
        assert budget.queries_remaining() == 9

        (backfill,) = issue.attached_fix.backfills
        assert backfill.safety_rating == SafetyRating.RISKY
        assert backfill.sql.startswith('UPDATE "main"."orders" SET "customer_id" = NULL')

    def test_severity_escalates_past_threshold(self, target_connection):
        snapshot, model, executor = load(target_connection, SHOP)
        config = BudgetConfig(severity_escalation_rows=2)
        (issue,), _ = run_module(OrphanRowsModule(), snapshot, model, executor, config)
        assert issue.severity == Severity.HIGH

    def test_sampled_table_lowers_confidence(self, target_connection):
        snapshot, model, executor = load(target_connection, SHOP)
        snapshot = with_row_estimate(snapshot, "orders", 200000)

        (issue,), _ = run_module(OrphanRowsModule(), snapshot, model, executor)

        assert issue.confidence == pytest.approx(0.75)
        assert "LIMIT 50000" in issue.evidence.sql
        assert issue.description.endswith("(sampled).")

    def test_stops_when_budget_is_spent(self, target_connection):
        snapshot, model, executor = load(
            target_connection,
            [
                "CREATE TABLE customers (id INTEGER PRIMARY KEY)",
                "CREATE TABLE products (id INTEGER PRIMARY KEY)",
                "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER, product_id INTEGER)",
                "INSERT INTO orders VALUES (1, 5, 6)",
            ],
        )
        config = BudgetConfig(max_queries_per_module=1)
        issues, budget = run_module(OrphanRowsModule(), snapshot, model, executor, config)
        assert len(issues) == 1
        assert not budget.can_run_query()

    def test_no_executor_no_issues(self, target_connection):
        snapshot, model, _ = load(target_connection, SHOP)
        issues, _ = run_module(OrphanRowsModule(), snapshot, model, None)
        assert issues == []


class TestDuplicates:
    """Tests for DuplicatesModule."""

    def test_duplicate_emails(self, target_connection):
        snapshot, model, executor = load(target_connection, SHOP)
        (issue,), budget = run_module(DuplicatesModule(), snapshot, model, executor)

        assert issue.id == "duplicate-customers-email"
        assert issue.title == "Duplicate email values in customers.email"
        assert issue.category == IssueCategory.IDENTITY
        assert issue.severity == Severity.MEDIUM
        assert issue.detection_method == DetectionMethod.DATA_EVIDENCE
        assert issue.evidence.row_count == 1
        assert issue.evidence.result_sample == [{"value": "bob@example.com", "dup_count": 2}]
        assert issue.confidence == pytest.approx(0.95)
        assert budget.total_rows_processed == 1

    def test_unique_backed_keys_are_skipped(self, target_connection):
        snapshot, model, executor = load(
            target_connection,
            [
                "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT,"
                " CONSTRAINT uq_users_email UNIQUE (email))",
                "INSERT INTO users VALUES (1, 'a@example.com')",
            ],
        )
        issues, budget = run_module(DuplicatesModule(), snapshot, model, executor)
        assert issues == []
        assert budget.queries_remaining() == 10


class TestConstraintGaps:
    """Tests for ConstraintGapsModule."""

    def test_missing_unique_and_foreign_key(self, target_connection):
        snapshot, model, _ = load(target_connection, SHOP)
        issues, _ = run_module(ConstraintGapsModule(), snapshot, model)
        by_id = {i.id: i for i in issues}

        unique = by_id["missing-unique-customers-email"]
        assert unique.severity == Severity.HIGH
        assert unique.category == IssueCategory.IDENTITY
        assert unique.detection_method == DetectionMethod.CONSTRAINT
        assert unique.confidence == pytest.approx(0.9)
        assert unique.description == "Identity column `email` (email) lacks a unique constraint."
        assert unique.attached_fix.migrations[0].sql == (
            'ALTER TABLE "main"."customers" ADD CONSTRAINT "uq_customers_email" UNIQUE ("email");'
        )

        fk = by_id["missing-fk-orders-customer_id"]
        assert fk.severity == Severity.MEDIUM
        assert fk.category == IssueCategory.RELATIONSHIP
        assert fk.detection_method == DetectionMethod.HEURISTIC
        assert fk.confidence == pytest.approx(0.75)
        (migration,) = fk.attached_fix.migrations
        assert migration.safety_rating == SafetyRating.SAFE
        assert 'REFERENCES "main"."customers"("id") ON DELETE SET NULL;' in migration.sql

    def test_declared_foreign_keys_are_not_reported(self, target_connection):
        snapshot, model, _ = load(
            target_connection,
            [
                "CREATE TABLE customers (id INTEGER PRIMARY KEY)",
                "CREATE TABLE orders (id INTEGER PRIMARY KEY,"
                " customer_id INTEGER REFERENCES customers(id))",
            ],
        )
        issues, _ = run_module(ConstraintGapsModule(), snapshot, model)
        assert issues == []


class TestInconsistentTypes:
    """Tests for InconsistentTypesModule."""

    @pytest.fixture
    def snapshot(self):
        return Snapshot(
            tables=[
                Table(schema="public", name="customers", columns=[pk(), column("name", "text")]),
                Table(
                    schema="public",
                    name="orders",
                    columns=[pk(), column("customer_id", "varchar")],
                ),
                Table(
                    schema="public",
                    name="events",
                    columns=[pk(), column("created_at", "text"), column("updated_at", "timestamp")],
                ),
            ]
        )

    def test_foreign_key_type_mismatch(self, snapshot):
        issues, _ = run_module(InconsistentTypesModule(), snapshot)
        mismatch = next(i for i in issues if i.id == "type-mismatch-orders-customer_id")
        assert mismatch.severity == Severity.HIGH
        assert mismatch.category == IssueCategory.TYPE
        assert mismatch.confidence == pytest.approx(0.95)
        assert mismatch.title == "Type mismatch: orders.customer_id vs customers.id"

    def test_date_stored_as_text(self, snapshot):
        issues, _ = run_module(InconsistentTypesModule(), snapshot)
        dates = [i for i in issues if i.id.startswith("date-as-text")]
        assert [i.id for i in dates] == ["date-as-text-events-created_at"]
        (issue,) = dates
        assert issue.severity == Severity.MEDIUM
        assert issue.confidence == pytest.approx(0.7)
        assert "timestamptz" in issue.attached_fix.migrations[0].sql

    def test_matching_types_are_clean(self):
        snapshot = Snapshot(
            tables=[
                Table(schema="public", name="customers", columns=[pk()]),
                Table(schema="public", name="orders", columns=[pk(), column("customer_id")]),
            ]
        )
        issues, _ = run_module(InconsistentTypesModule(), snapshot)
        assert issues == []


class TestAmbiguousEntities:
    """Tests for AmbiguousEntitiesModule."""

    def test_company_and_companies(self):
        snapshot = Snapshot(
            tables=[
                Table(schema="public", name="company", columns=[pk(), column("name", "text")]),
                Table(
                    schema="public",
                    name="companies",
                    columns=[pk(), column("name", "text"), column("domain", "text")],
                ),
            ]
        )
        (issue,), _ = run_module(AmbiguousEntitiesModule(), snapshot)

        assert issue.id == "ambiguous-compan"
        assert issue.category == IssueCategory.METRIC
        assert issue.severity == Severity.HIGH
        assert issue.title == "Multiple tables represent 'compan'"
        assert issue.evidence.affected_tables == ["company", "companies"]
        assert issue.attached_fix.canonical_rule.startswith("Treat companies as the canonical")


class TestMetricRisk:
    """Tests for MetricRiskModule."""

    def test_rows_with_multiple_parents(self, target_connection):
        snapshot, model, executor = load(
            target_connection,
            [
                "CREATE TABLE activities (id INTEGER PRIMARY KEY, user_id INTEGER, company_id INTEGER)",
                "INSERT INTO activities VALUES (1, 1, 1), (2, 1, NULL), (3, NULL, 2)",
            ],
        )
        (issue,), _ = run_module(MetricRiskModule(), snapshot, model, executor)

        assert issue.id == "metric-risk-activities"
        assert issue.category == IssueCategory.METRIC
        assert issue.severity == Severity.MEDIUM
        assert issue.evidence.row_count == 1
        assert issue.evidence.affected_columns == ["user_id", "company_id"]

    def test_same_concept_columns_are_ignored(self, target_connection):
        snapshot, model, executor = load(
            target_connection,
            [
                "CREATE TABLE notes (id INTEGER PRIMARY KEY, customer_id INTEGER, customerId INTEGER)",
                "INSERT INTO notes VALUES (1, 1, 1)",
            ],
        )
        issues, budget = run_module(MetricRiskModule(), snapshot, model, executor)
        assert issues == []
        assert budget.queries_remaining() == 10
