"""
SQLAlchemy models for the Schema Sentinel run ledger.

The ledger holds connections, audit runs and their results. Structured
payloads (snapshot, inferred model, issues, fix plan) are stored as JSON and
only ever read back through their pydantic models.
"""

import uuid
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


audit_run_status_enum = Enum(
    "queued",
    "running",
    "completed",
    "failed",
    name="audit_run_status",
)


class ConnectionModel(Base):
    """A target database registered for auditing."""

    __tablename__ = "connections"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(256), nullable=False, index=True)
    # Opaque to the core; turned into a DSN by the credential resolver
    encrypted_credential = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    runs = relationship("AuditRunModel", back_populates="connection")

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary. Never includes the credential."""
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AuditRunModel(Base):
    """One execution of the audit pipeline against one connection."""

    __tablename__ = "audit_runs"

    id = Column(String(36), primary_key=True, default=_new_id)
    connection_id = Column(
        String(36), ForeignKey("connections.id"), nullable=False, index=True
    )
    status = Column(audit_run_status_enum, nullable=False, default="queued", index=True)
    progress = Column(Integer, nullable=False, default=0)

    # Verification runs point at the baseline they re-check
    parent_run_id = Column(
        String(36), ForeignKey("audit_runs.id"), nullable=True, index=True
    )
    problem_statement = Column(Text, nullable=True)

    # Append-only list of {timestamp, message, progress}
    logs = Column(JSON, nullable=False, default=list)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    connection = relationship("ConnectionModel", back_populates="runs")
    result = relationship("AuditResultModel", back_populates="run", uselist=False)

    __table_args__ = (Index("ix_audit_runs_status_created", "status", "created_at"),)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "connection_id": self.connection_id,
            "status": self.status,
            "progress": self.progress,
            "parent_run_id": self.parent_run_id,
            "problem_statement": self.problem_statement,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class AuditResultModel(Base):
    """Outputs of a completed run. Written once, never updated."""

    __tablename__ = "audit_results"

    id = Column(String(36), primary_key=True, default=_new_id)
    run_id = Column(
        String(36), ForeignKey("audit_runs.id"), nullable=False, unique=True, index=True
    )

    snapshot = Column(JSON, nullable=False)
    inferred_model = Column(JSON, nullable=False)
    issues = Column(JSON, nullable=False, default=list)
    fix_plan = Column(JSON, nullable=False, default=dict)
    investigation_log = Column(JSON, nullable=True)
    verification = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    run = relationship("AuditRunModel", back_populates="result")
