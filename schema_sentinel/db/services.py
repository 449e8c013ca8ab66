"""
Database services for the run ledger.

Every write commits immediately so that pollers reading from another
session see progress and log entries as soon as a stage reports them.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter
from sqlalchemy import desc, update
from sqlalchemy.orm import Session

from ..audit.issues import FixPlan, Issue
from ..enums import RunStatus
from ..introspection.models import Snapshot
from ..modeling.models import InferredModel
from .models import AuditResultModel, AuditRunModel, ConnectionModel

_ISSUE_LIST = TypeAdapter(List[Issue])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump(model) -> Any:
    return model.model_dump(mode="json", by_alias=True)


class ConnectionService:
    """Service for managing registered target databases."""

    def __init__(self, db: Session):
        self.db = db

    def create_connection(self, name: str, credential: str) -> ConnectionModel:
        connection = ConnectionModel(name=name, encrypted_credential=credential)
        self.db.add(connection)
        self.db.commit()
        self.db.refresh(connection)
        return connection

    def get_connection(self, connection_id: str) -> Optional[ConnectionModel]:
        return (
            self.db.query(ConnectionModel)
            .filter(ConnectionModel.id == connection_id)
            .first()
        )

    def get_connections(self) -> List[ConnectionModel]:
        return self.db.query(ConnectionModel).order_by(ConnectionModel.created_at).all()


class AuditRunService:
    """Service for audit run lifecycle and progress."""

    def __init__(self, db: Session):
        self.db = db

    def create_run(
        self,
        connection_id: str,
        parent_run_id: Optional[str] = None,
        problem_statement: Optional[str] = None,
    ) -> AuditRunModel:
        """Create a run in status 'queued'."""
        run = AuditRunModel(
            connection_id=connection_id,
            status=RunStatus.QUEUED.value,
            progress=0,
            parent_run_id=parent_run_id,
            problem_statement=problem_statement,
            logs=[],
            created_at=_utcnow(),
        )
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        return run

    def get_run(self, run_id: str) -> Optional[AuditRunModel]:
        return self.db.query(AuditRunModel).filter(AuditRunModel.id == run_id).first()

    def get_runs(
        self,
        connection_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[AuditRunModel]:
        query = self.db.query(AuditRunModel)
        if connection_id:
            query = query.filter(AuditRunModel.connection_id == connection_id)
        if status:
            query = query.filter(AuditRunModel.status == status)
        return query.order_by(desc(AuditRunModel.created_at)).limit(limit).all()

    def get_oldest_queued(self) -> Optional[AuditRunModel]:
        return (
            self.db.query(AuditRunModel)
            .filter(AuditRunModel.status == RunStatus.QUEUED.value)
            .order_by(AuditRunModel.created_at.asc(), AuditRunModel.id.asc())
            .first()
        )

    def claim_next(self) -> Optional[AuditRunModel]:
        """Atomically move the oldest queued run to 'running'.

        The UPDATE only matches while the row is still queued, so when two
        consumers race for the same run exactly one sees rowcount == 1.

        Returns:
            The claimed run, or None when nothing is queued or the run was
            claimed elsewhere
        """
        run = self.get_oldest_queued()
        if run is None:
            return None

        result = self.db.execute(
            update(AuditRunModel)
            .where(
                AuditRunModel.id == run.id,
                AuditRunModel.status == RunStatus.QUEUED.value,
            )
            .values(
                status=RunStatus.RUNNING.value,
                started_at=_utcnow(),
                progress=0,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        if result.rowcount == 0:
            return None

        self.db.refresh(run)
        return run

    def append_log(self, run_id: str, message: str, progress: int) -> Optional[AuditRunModel]:
        """Append a log entry and set progress, clamped to [0, 100]."""
        run = self.get_run(run_id)
        if run is None:
            return None

        progress = min(100, max(0, int(progress)))
        entry = {"timestamp": _utcnow().isoformat(), "message": message, "progress": progress}
        # Reassign so the JSON column is flagged dirty
        run.logs = list(run.logs or []) + [entry]
        run.progress = progress
        self.db.commit()
        self.db.refresh(run)
        return run

    def mark_completed(self, run_id: str) -> Optional[AuditRunModel]:
        run = self.get_run(run_id)
        if run is None:
            return None
        run.status = RunStatus.COMPLETED.value
        run.progress = 100
        run.completed_at = _utcnow()
        self.db.commit()
        self.db.refresh(run)
        return run

    def mark_failed(self, run_id: str, error: str) -> Optional[AuditRunModel]:
        """Move a run to 'failed' with ``error`` as its terminal log line."""
        run = self.get_run(run_id)
        if run is None:
            return None
        entry = {
            "timestamp": _utcnow().isoformat(),
            "message": f"Audit failed: {error}",
            "progress": run.progress,
        }
        run.logs = list(run.logs or []) + [entry]
        run.status = RunStatus.FAILED.value
        run.error = error
        run.completed_at = _utcnow()
        self.db.commit()
        self.db.refresh(run)
        return run

    @staticmethod
    def latest_log(run: AuditRunModel) -> Optional[str]:
        logs = run.logs or []
        if not logs:
            return None
        return logs[-1].get("message")

    def get_status(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Polling view: status, progress and the most recent log message."""
        run = self.get_run(run_id)
        if run is None:
            return None
        return {
            "id": run.id,
            "status": run.status,
            "progress": run.progress,
            "latest_log": self.latest_log(run),
            "error": run.error,
        }


class AuditResultService:
    """Service for writing and reading typed audit results."""

    def __init__(self, db: Session):
        self.db = db

    def save_result(
        self,
        run_id: str,
        snapshot: Snapshot,
        inferred_model: InferredModel,
        issues: List[Issue],
        fix_plan: FixPlan,
        investigation_log: Optional[List[Dict[str, Any]]] = None,
        verification: Optional[Dict[str, Any]] = None,
    ) -> AuditResultModel:
        result = AuditResultModel(
            run_id=run_id,
            snapshot=_dump(snapshot),
            inferred_model=_dump(inferred_model),
            issues=[_dump(issue) for issue in issues],
            fix_plan=_dump(fix_plan),
            investigation_log=investigation_log,
            verification=verification,
            created_at=_utcnow(),
        )
        self.db.add(result)
        self.db.commit()
        self.db.refresh(result)
        return result

    def get_result(self, result_id: str) -> Optional[AuditResultModel]:
        return (
            self.db.query(AuditResultModel)
            .filter(AuditResultModel.id == result_id)
            .first()
        )

    def get_result_for_run(self, run_id: str) -> Optional[AuditResultModel]:
        """Most recent result recorded for ``run_id``."""
        return (
            self.db.query(AuditResultModel)
            .filter(AuditResultModel.run_id == run_id)
            .order_by(desc(AuditResultModel.created_at))
            .first()
        )

    @staticmethod
    def load_snapshot(result: AuditResultModel) -> Snapshot:
        return Snapshot.model_validate(result.snapshot)

    @staticmethod
    def load_inferred_model(result: AuditResultModel) -> InferredModel:
        return InferredModel.model_validate(result.inferred_model)

    @staticmethod
    def load_issues(result: AuditResultModel) -> List[Issue]:
        return _ISSUE_LIST.validate_python(result.issues or [])

    @staticmethod
    def load_fix_plan(result: AuditResultModel) -> FixPlan:
        return FixPlan.model_validate(result.fix_plan or {})
