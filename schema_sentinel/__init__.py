"""
Schema Sentinel

Audits a relational database for integrity problems the schema alone does
not prevent, and drafts the SQL to fix them.
"""

import importlib.metadata

__version__ = importlib.metadata.version("schema-sentinel")

from .audit import run_audit
from .fixes import aggregate_fix_plan, compare_audit_results
from .introspection import introspect
from .modeling import infer_model
from .worker import AuditJobRunner

__all__ = [
    "AuditJobRunner",
    "aggregate_fix_plan",
    "compare_audit_results",
    "infer_model",
    "introspect",
    "run_audit",
]
