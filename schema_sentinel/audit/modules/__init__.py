"""Built-in audit modules."""

from .ambiguous_entities import AmbiguousEntitiesModule
from .base import AuditContext, AuditModule
from .constraint_gaps import ConstraintGapsModule
from .duplicates import DuplicatesModule
from .inconsistent_types import InconsistentTypesModule
from .metric_risk import MetricRiskModule
from .orphan_rows import OrphanRowsModule

__all__ = [
    "AuditContext",
    "AuditModule",
    "OrphanRowsModule",
    "DuplicatesModule",
    "ConstraintGapsModule",
    "InconsistentTypesModule",
    "AmbiguousEntitiesModule",
    "MetricRiskModule",
]
