"""
Audit module registry.

The module list is fixed and ordered. New modules are appended at the end so
that issue ordering stays stable across runs of the same version.
"""

from __future__ import annotations

from typing import List, Optional

from .modules import (
    AmbiguousEntitiesModule,
    AuditModule,
    ConstraintGapsModule,
    DuplicatesModule,
    InconsistentTypesModule,
    MetricRiskModule,
    OrphanRowsModule,
)

AUDIT_MODULES = (
    OrphanRowsModule,
    DuplicatesModule,
    ConstraintGapsModule,
    InconsistentTypesModule,
    AmbiguousEntitiesModule,
    MetricRiskModule,
)


def get_audit_modules() -> List[AuditModule]:
    """Fresh instances of every registered module, in registry order."""
    return [module_cls() for module_cls in AUDIT_MODULES]


def get_module_by_id(module_id: str) -> Optional[AuditModule]:
    for module_cls in AUDIT_MODULES:
        if module_cls.id == module_id:
            return module_cls()
    return None
