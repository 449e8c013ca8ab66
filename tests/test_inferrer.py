"""
Tests for semantic inference over a Snapshot.

Verifies:
- Entity confidence boosts and the common-name override
- Join-table detection
- Identity key heuristics and unique-constraint boost
- Concept normalization and source-of-truth grouping
"""

from itertools import permutations

import pytest

from schema_sentinel.enums import ConstraintType, IdentityKeyType, RelationshipType
from schema_sentinel.introspection.models import (
    Column,
    ConstraintInfo,
    ForeignKeyEdge,
    Snapshot,
    Table,
)
from schema_sentinel.modeling import infer_model
from schema_sentinel.modeling.inferrer import (
    infer_entities,
    infer_identity_keys,
    infer_join_tables,
    normalize_concept,
)


def pk(name="id", data_type="integer"):
    return Column(name=name, data_type=data_type, nullable=False, is_primary_key=True)


def col(name, data_type="text", **kwargs):
    return Column(name=name, data_type=data_type, **kwargs)


def pk_constraint(table):
    return ConstraintInfo(name=f"{table}_pkey", type=ConstraintType.PRIMARY_KEY, columns=["id"])


def fk(column, referenced):
    return ConstraintInfo(
        name=f"fk_{column}",
        type=ConstraintType.FOREIGN_KEY,
        columns=[column],
        referenced_table=referenced,
        referenced_columns=["id"],
    )


@pytest.fixture
def snapshot():
    return Snapshot(
        tables=[
            Table(
                schema="public",
                name="users",
                columns=[pk(), col("email"), col("name")],
                constraints=[pk_constraint("users")],
            ),
            Table(
                schema="public",
                name="roles",
                columns=[pk(), col("label")],
                constraints=[pk_constraint("roles")],
            ),
            Table(
                schema="public",
                name="user_roles",
                columns=[col("user_id", "integer"), col("role_id", "integer")],
                constraints=[fk("user_id", "users"), fk("role_id", "roles")],
            ),
            Table(
                schema="public",
                name="widgets",
                columns=[pk(), col("label")],
                constraints=[pk_constraint("widgets")],
            ),
        ],
        relationships=[
            ForeignKeyEdge(
                from_table="public.user_roles",
                from_column="user_id",
                to_table="public.users",
                to_column="id",
            ),
            ForeignKeyEdge(
                from_table="public.user_roles",
                from_column="role_id",
                to_table="public.roles",
                to_column="id",
            ),
        ],
    )


class TestEntities:
    """Tests for infer_entities()."""

    def test_join_tables_are_not_entities(self, snapshot):
        names = [e.table_name for e in infer_entities(snapshot)]
        assert "public.user_roles" not in names
        assert names == ["public.users", "public.roles", "public.widgets"]

    def test_primary_key_boost(self, snapshot):
        widgets = next(e for e in infer_entities(snapshot) if e.table_name == "public.widgets")
        assert widgets.confidence == pytest.approx(0.8)
        assert "has primary key" in widgets.reasoning

    def test_common_name_is_capped_and_floored(self, snapshot):
        users = next(e for e in infer_entities(snapshot) if e.table_name == "public.users")
        assert users.confidence == pytest.approx(0.95)

        bare = Snapshot(tables=[Table(schema="public", name="events", columns=[col("kind")])])
        (events,) = infer_entities(bare)
        assert events.confidence == pytest.approx(0.85)


class TestJoinTables:
    """Tests for infer_join_tables()."""

    def test_detects_bridge(self, snapshot):
        (join,) = infer_join_tables(snapshot)
        assert join.table_name == "public.user_roles"
        assert {join.left_table, join.right_table} == {"public.users", "public.roles"}
        assert join.confidence == pytest.approx(0.85)

    def test_wide_table_is_not_a_bridge(self):
        wide = Table(
            schema="public",
            name="memberships",
            columns=[col(f"c{i}") for i in range(4)]
            + [col("user_id", "integer"), col("team_id", "integer")],
            constraints=[fk("user_id", "users"), fk("team_id", "teams")],
        )
        assert infer_join_tables(Snapshot(tables=[wide])) == []


    @pytest.mark.parametrize(
        "column_names",
        list(permutations(["id", "user_id", "role_id", "granted_at", "note"])),
    )
    def test_bridge_regardless_of_column_order(self, column_names):
        types = {"id": "integer", "user_id": "integer", "role_id": "integer"}
        bridge = Table(
            schema="public",
            name="grants",
            columns=[col(name, types.get(name, "text")) for name in column_names],
            constraints=[fk("user_id", "users"), fk("role_id", "roles")],
        )
        (join,) = infer_join_tables(Snapshot(tables=[bridge]))
        assert join.table_name == "public.grants"
        assert (join.left_table, join.right_table) == ("roles", "users")


class TestIdentityKeys:
    """Tests for infer_identity_keys()."""

    def test_email_without_unique(self, snapshot):
        (key,) = infer_identity_keys(snapshot)
        assert key.table_name == "public.users"
        assert key.column_name == "email"
        assert key.key_type == IdentityKeyType.EMAIL
        assert key.has_unique_constraint is False
        assert key.confidence == pytest.approx(0.9)

    def test_unique_backed_key_is_boosted(self):
        table = Table(
            schema="public",
            name="accounts",
            columns=[pk(), col("external_id", is_unique=True), col("phone")],
        )
        keys = {k.column_name: k for k in infer_identity_keys(Snapshot(tables=[table]))}
        assert keys["external_id"].has_unique_constraint is True
        assert keys["external_id"].confidence == pytest.approx(1.0)
        assert keys["phone"].key_type == IdentityKeyType.PHONE
        assert keys["phone"].confidence == pytest.approx(0.8)

    def test_uuid_foreign_key_is_not_identity(self):
        table = Table(
            schema="public",
            name="tokens",
            columns=[pk("id", "uuid"), col("owner_id", "uuid")],
        )
        keys = infer_identity_keys(Snapshot(tables=[table]))
        assert [(k.column_name, k.key_type) for k in keys] == [("id", IdentityKeyType.UUID)]


class TestSourceOfTruth:
    """Tests for concept normalization and candidate grouping."""

    @pytest.mark.parametrize(
        "name,concept",
        [
            ("company", "compan"),
            ("companies", "compan"),
            ("companies_enriched", "compan"),
            ("Users", "user"),
            ("base_contacts", "contact"),
        ],
    )
    def test_normalize_concept(self, name, concept):
        assert normalize_concept(name) == concept

    def test_company_and_companies_collapse(self):
        snapshot = Snapshot(
            tables=[
                Table(schema="public", name="company", columns=[pk(), col("name")]),
                Table(
                    schema="public",
                    name="companies",
                    columns=[pk(), col("name"), col("domain"), col("size")],
                ),
            ]
        )
        (candidate,) = infer_model(snapshot).source_of_truth_candidates
        assert candidate.concept == "compan"
        assert candidate.tables == ["public.company", "public.companies"]
        assert candidate.recommended_canonical == "public.companies"
        assert candidate.confidence == pytest.approx(0.75)

    def test_relationships_from_declared_foreign_keys(self, snapshot):
        model = infer_model(snapshot)
        assert len(model.relationships) == 2
        assert all(r.type == RelationshipType.ONE_TO_MANY for r in model.relationships)
        assert all(r.confidence == pytest.approx(0.95) for r in model.relationships)


class TestInferModel:
    """Tests for infer_model() as a whole."""

    def test_repeated_inference_is_identical(self, snapshot):
        first = infer_model(snapshot).model_dump_json()
        second = infer_model(snapshot).model_dump_json()
        assert first == second

    def test_does_not_mutate_snapshot(self, snapshot):
        before = snapshot.model_dump_json()
        infer_model(snapshot)
        assert snapshot.model_dump_json() == before
