"""
Schema introspection: live database -> immutable Snapshot.
"""

from .inspector import IntrospectionError, approximate_row_count, introspect
from .models import Column, ConstraintInfo, ForeignKeyEdge, IndexInfo, Snapshot, Table

__all__ = [
    "introspect",
    "approximate_row_count",
    "IntrospectionError",
    "Snapshot",
    "Table",
    "Column",
    "IndexInfo",
    "ConstraintInfo",
    "ForeignKeyEdge",
]
