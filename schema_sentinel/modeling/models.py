"""
Inferred semantic model.

A derived, disposable view over a Snapshot. Confidence values are heuristic
ranking signals in [0, 1], not calibrated probabilities.
"""

from __future__ import annotations

from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..enums import IdentityKeyType, RelationshipType

Confidence = Annotated[float, Field(ge=0.0, le=1.0, description="Heuristic ranking score")]


class EntityTable(BaseModel):
    """A table that models a standalone entity."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    table_name: str = Field(..., description="Schema-qualified table name")
    confidence: Confidence
    reasoning: str = ""


class JoinTable(BaseModel):
    """A table bridging two other tables (many-to-many)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    table_name: str
    left_table: str
    right_table: str
    confidence: Confidence


class IdentityKey(BaseModel):
    """A column that looks like a natural identity for its table's rows."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    table_name: str
    column_name: str
    key_type: IdentityKeyType
    has_unique_constraint: bool
    confidence: Confidence


class RelationshipPattern(BaseModel):
    """A typed edge between two tables."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: RelationshipType
    from_table: str
    to_table: str
    via_table: Optional[str] = None
    confidence: Confidence


class SourceOfTruthCandidate(BaseModel):
    """Several tables that appear to hold the same concept."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    concept: str
    tables: List[str]
    recommended_canonical: str
    reasoning: str = ""
    confidence: Confidence


class InferredModel(BaseModel):
    """Semantic layer over a Snapshot."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    entities: List[EntityTable] = Field(default_factory=list)
    join_tables: List[JoinTable] = Field(default_factory=list)
    identity_keys: List[IdentityKey] = Field(default_factory=list)
    relationships: List[RelationshipPattern] = Field(default_factory=list)
    source_of_truth_candidates: List[SourceOfTruthCandidate] = Field(default_factory=list)

    def is_entity(self, table_name: str) -> bool:
        return any(e.table_name == table_name for e in self.entities)
