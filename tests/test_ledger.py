"""
Tests for the run ledger models and services.

Verifies:
- Run creation, claiming and the queued -> running -> terminal lifecycle
- Append-only logs with clamped progress
- Typed round trip of stored results
"""

from unittest.mock import patch

import pytest

from schema_sentinel.audit.issues import FixPlan
from schema_sentinel.db.models import AuditResultModel, AuditRunModel, ConnectionModel
from schema_sentinel.db.services import AuditResultService, AuditRunService, ConnectionService
from schema_sentinel.introspection.models import Column, Snapshot, Table
from schema_sentinel.modeling import infer_model

from fakes import make_fix, make_issue


@pytest.fixture
def connection(db_session):
    return ConnectionService(db_session).create_connection("shop", "sqlite:///shop.db")


class TestModels:
    """Tests for ledger model structure."""

    def test_run_columns(self):
        columns = {c.name for c in AuditRunModel.__table__.columns}
        assert {
            "id", "connection_id", "status", "progress", "parent_run_id",
            "problem_statement", "logs", "error", "created_at", "started_at",
            "completed_at",
        }.issubset(columns)

    def test_result_run_is_unique(self):
        assert AuditResultModel.__table__.columns["run_id"].unique

    def test_connection_to_dict_hides_credential(self, connection):
        data = connection.to_dict()
        assert data["name"] == "shop"
        assert "encrypted_credential" not in data
        assert "sqlite" not in str(data)


class TestConnectionService:
    """Tests for ConnectionService."""

    def test_create_and_list(self, db_session, connection):
        service = ConnectionService(db_session)
        assert service.get_connection(connection.id).name == "shop"
        assert [c.id for c in service.get_connections()] == [connection.id]
        assert service.get_connection("missing") is None


class TestAuditRunService:
    """Tests for AuditRunService."""

    def test_create_run_is_queued(self, db_session, connection):
        run = AuditRunService(db_session).create_run(connection.id, problem_statement="x")
        assert run.status == "queued"
        assert run.progress == 0
        assert run.logs == []
        assert run.problem_statement == "x"

    def test_claim_oldest_first(self, db_session, connection):
        service = AuditRunService(db_session)
        first = service.create_run(connection.id)
        second = service.create_run(connection.id)

        claimed = service.claim_next()
        assert claimed.id == first.id
        assert claimed.status == "running"
        assert claimed.started_at is not None

        assert service.claim_next().id == second.id
        assert service.claim_next() is None

    def test_claim_lost_race_returns_none(self, session_factory, connection):
        first_session, second_session = session_factory(), session_factory()
        try:
            stale = AuditRunService(first_session).create_run(connection.id)
            assert AuditRunService(second_session).claim_next().id == stale.id

            with patch.object(AuditRunService, "get_oldest_queued", return_value=stale):
                assert AuditRunService(first_session).claim_next() is None
        finally:
            first_session.close()
            second_session.close()

    def test_append_log_clamps_progress(self, db_session, connection):
        service = AuditRunService(db_session)
        run = service.create_run(connection.id)

        service.append_log(run.id, "Starting audit...", 5)
        service.append_log(run.id, "Too far", 140)

        run = service.get_run(run.id)
        assert [entry["message"] for entry in run.logs] == ["Starting audit...", "Too far"]
        assert run.logs[0]["progress"] == 5
        assert run.progress == 100
        assert "timestamp" in run.logs[0]

    def test_mark_failed_records_reason(self, db_session, connection):
        service = AuditRunService(db_session)
        run = service.create_run(connection.id)
        service.append_log(run.id, "Introspecting database schema...", 10)

        service.mark_failed(run.id, "CONNECTION_FAILED: refused")

        status = service.get_status(run.id)
        assert status["status"] == "failed"
        assert status["progress"] == 10
        assert status["latest_log"] == "Audit failed: CONNECTION_FAILED: refused"
        assert status["error"] == "CONNECTION_FAILED: refused"

    def test_mark_completed(self, db_session, connection):
        service = AuditRunService(db_session)
        run = service.create_run(connection.id)
        run = service.mark_completed(run.id)
        assert run.status == "completed"
        assert run.progress == 100
        assert run.completed_at is not None

    def test_status_of_unknown_run(self, db_session):
        assert AuditRunService(db_session).get_status("missing") is None


class TestAuditResultService:
    """Tests for AuditResultService."""

    def test_typed_round_trip(self, db_session, connection):
        run = AuditRunService(db_session).create_run(connection.id)
        snapshot = Snapshot(
            tables=[
                Table(
                    schema="public",
                    name="users",
                    columns=[
                        Column(name="id", data_type="integer", nullable=False, is_primary_key=True),
                        Column(name="email", data_type="text"),
                    ],
                )
            ]
        )
        issue = make_issue(title="Duplicate email values in users.email", tables=["users"])
        plan = FixPlan(migrations=[make_fix("unique", "ALTER TABLE users ...;")])

        service = AuditResultService(db_session)
        service.save_result(run.id, snapshot, infer_model(snapshot), [issue], plan)

        stored = service.get_result_for_run(run.id)
        assert service.load_snapshot(stored).tables[0].schema_name == "public"
        assert service.load_inferred_model(stored).identity_keys[0].column_name == "email"
        assert service.load_issues(stored) == [issue]
        assert service.load_fix_plan(stored) == plan
        assert stored.verification is None
