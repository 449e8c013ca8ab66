"""
Snapshot schema.

A Snapshot is an immutable, point-in-time description of a target database:
its tables, columns, indexes, constraints, approximate sizes and the
declared foreign-key edges between tables.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..enums import ConstraintType


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Column(BaseModel):
    """A single table column."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., description="Column name")
    data_type: str = Field(..., description="Catalog data type, lower-cased")
    nullable: bool = Field(True, description="Whether NULL is allowed")
    has_default: bool = Field(False, description="Whether a column default exists")
    is_primary_key: bool = Field(False, description="Member of the primary key")
    is_unique: bool = Field(
        False, description="Backed by a single-column unique constraint or index"
    )
    max_length: Optional[int] = Field(
        None, description="Character maximum length, when declared"
    )

    @model_validator(mode="after")
    def _primary_key_not_nullable(self) -> "Column":
        if self.is_primary_key and self.nullable:
            raise ValueError(f"primary key column {self.name!r} cannot be nullable")
        return self


class IndexInfo(BaseModel):
    """An index, with columns in index-position order."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    columns: List[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False


class ConstraintInfo(BaseModel):
    """A declared table constraint."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    type: ConstraintType
    columns: List[str] = Field(default_factory=list)
    referenced_table: Optional[str] = None
    referenced_columns: List[str] = Field(default_factory=list)


class Table(BaseModel):
    """A base table and everything the introspector learned about it."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    schema_name: str = Field(..., alias="schema")
    name: str
    columns: List[Column] = Field(default_factory=list)
    indexes: List[IndexInfo] = Field(default_factory=list)
    constraints: List[ConstraintInfo] = Field(default_factory=list)
    approx_row_count: Optional[int] = Field(
        None, description="Planner-statistics estimate, never an exact count"
    )

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"

    @property
    def foreign_keys(self) -> List[ConstraintInfo]:
        return [c for c in self.constraints if c.type == ConstraintType.FOREIGN_KEY]

    @property
    def has_primary_key(self) -> bool:
        return any(c.type == ConstraintType.PRIMARY_KEY for c in self.constraints) or any(
            col.is_primary_key for col in self.columns
        )

    def get_column(self, name: str) -> Optional[Column]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def has_foreign_key_on(self, column_name: str) -> bool:
        return any(column_name in fk.columns for fk in self.foreign_keys)


class ForeignKeyEdge(BaseModel):
    """A declared foreign key, with schema-qualified table names."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    from_table: str
    from_column: str
    to_table: str
    to_column: str
    constraint_name: Optional[str] = None


class Snapshot(BaseModel):
    """Immutable structural capture of one database."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    tables: List[Table] = Field(default_factory=list)
    relationships: List[ForeignKeyEdge] = Field(default_factory=list)
    extracted_at: datetime = Field(default_factory=utc_now)

    def find_table(self, name: str) -> Optional[Table]:
        """Find a table by bare or schema-qualified name."""
        for table in self.tables:
            if table.qualified_name == name or table.name == name:
                return table
        return None
