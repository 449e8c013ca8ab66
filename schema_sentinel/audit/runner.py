"""
Audit runner.

Executes registered modules one after another over a single target
connection. A module that raises is logged and skipped; the audit always
returns whatever the remaining modules found.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Sequence

from ..introspection.models import Snapshot
from ..modeling.models import InferredModel
from ..target import QueryExecutor
from .budget import DEFAULT_BUDGET, BudgetConfig, BudgetTracker
from .issues import Issue
from .modules.base import AuditContext, AuditModule
from .registry import get_audit_modules

logger = logging.getLogger(__name__)

# (completed_count, total_count, current_module_name)
ProgressCallback = Callable[[int, int, str], None]


def run_audit(
    snapshot: Snapshot,
    model: InferredModel,
    executor: Optional[QueryExecutor],
    config: BudgetConfig = DEFAULT_BUDGET,
    on_progress: Optional[ProgressCallback] = None,
    modules: Optional[Sequence[AuditModule]] = None,
    stop_event: Optional[threading.Event] = None,
) -> List[Issue]:
    """Run every audit module and collect their issues.

    Args:
        snapshot: Snapshot of the target database
        model: Inferred model for the snapshot
        executor: Query executor bound to the target connection; schema-only
            modules still run when this is None
        config: Budget limits applied to each module
        on_progress: Called before each module starts
        modules: Override the registered module list (tests)
        stop_event: When set, no further modules are started

    Returns:
        Issues from all modules that completed, in module order
    """
    if modules is None:
        modules = get_audit_modules()
    all_issues: List[Issue] = []
    total = len(modules)

    for index, module in enumerate(modules):
        if stop_event is not None and stop_event.is_set():
            logger.warning(f"Audit stopped before module {module.id}")
            break

        try:
            if on_progress is not None:
                on_progress(index, total, module.name)

            context = AuditContext(
                snapshot=snapshot,
                model=model,
                executor=executor,
                budget=BudgetTracker.from_config(config),
                config=config,
            )
            issues = module.run(context)
            logger.info(f"Module {module.id} reported {len(issues)} issues")
            all_issues.extend(issues)
        except Exception:
            logger.exception(f"Module {module.id} failed")

    return all_issues
