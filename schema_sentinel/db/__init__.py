"""
Run ledger for Schema Sentinel.
"""

from .base import Base, get_db, get_engine, get_session_local, init_database
from .models import AuditResultModel, AuditRunModel, ConnectionModel
from .services import AuditResultService, AuditRunService, ConnectionService

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "ConnectionModel",
    "AuditRunModel",
    "AuditResultModel",
    "ConnectionService",
    "AuditRunService",
    "AuditResultService",
]
