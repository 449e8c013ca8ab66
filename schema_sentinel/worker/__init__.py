"""
Audit job runner - drains the queue of audit runs one at a time.

Usage:
    python -m schema_sentinel.worker

Components:
    - loop: AuditJobRunner (claim, introspect, infer, audit, draft, verify, persist)
"""

from .loop import (
    AuditJobRunner,
    ProgressTracker,
    StageTimeoutError,
    module_progress,
    run_stage,
    run_worker,
)

__all__ = [
    "AuditJobRunner",
    "ProgressTracker",
    "StageTimeoutError",
    "module_progress",
    "run_stage",
    "run_worker",
]
