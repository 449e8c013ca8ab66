"""
Semantic inference over a Snapshot.

``infer_model`` is pure and deterministic: no I/O, and the same Snapshot
always yields an identical InferredModel. Odd inputs (tables without
columns, self-referencing tables, dangling foreign keys) are tolerated.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from ..enums import IdentityKeyType, RelationshipType
from ..introspection.models import Column, Snapshot, Table
from .models import (
    EntityTable,
    IdentityKey,
    InferredModel,
    JoinTable,
    RelationshipPattern,
    SourceOfTruthCandidate,
)

ENTITY_NAME_PATTERNS = (
    "users",
    "customers",
    "companies",
    "contacts",
    "products",
    "orders",
    "payments",
    "tasks",
    "events",
)

CONCEPT_QUALIFIERS = ("enriched", "extended", "full", "base")

ENTITY_BASE_CONFIDENCE = 0.7
JOIN_TABLE_CONFIDENCE = 0.85
EXPLICIT_FK_CONFIDENCE = 0.95
SOURCE_OF_TRUTH_CONFIDENCE = 0.75
UNIQUE_BACKED_BOOST = 0.1

MAX_JOIN_TABLE_COLUMNS = 5

_QUALIFIER_RE = re.compile("|".join(CONCEPT_QUALIFIERS))


def _qualify(snapshot: Snapshot, table: Table, referenced: Optional[str]) -> str:
    """Resolve a constraint's bare referenced table to a qualified name."""
    if not referenced:
        return "unknown"
    if "." in referenced:
        return referenced
    same_schema = f"{table.schema_name}.{referenced}"
    for candidate in snapshot.tables:
        if candidate.qualified_name == same_schema:
            return same_schema
    for candidate in snapshot.tables:
        if candidate.name == referenced:
            return candidate.qualified_name
    return referenced


def _join_table_targets(snapshot: Snapshot, table: Table) -> Optional[List[str]]:
    """Return the two bridged tables if ``table`` is a join table, else None.

    A join table has exactly two foreign-key constraints pointing at two
    distinct tables and no more than five columns in total.
    """
    fks = table.foreign_keys
    if len(fks) != 2 or len(table.columns) > MAX_JOIN_TABLE_COLUMNS:
        return None
    targets = sorted(_qualify(snapshot, table, fk.referenced_table) for fk in fks)
    if targets[0] == targets[1]:
        return None
    return targets


def infer_entities(snapshot: Snapshot) -> List[EntityTable]:
    """Classify every non-join table as an entity with a confidence score."""
    entities: List[EntityTable] = []

    for table in snapshot.tables:
        if _join_table_targets(snapshot, table) is not None:
            continue

        confidence = ENTITY_BASE_CONFIDENCE
        reasoning = "Table has typical entity characteristics"

        if table.has_primary_key:
            confidence += 0.1
            reasoning += ", has primary key"

        if len(table.columns) > 5:
            confidence += 0.1
            reasoning += ", has multiple columns"

        lowered = table.name.lower()
        if any(pattern in lowered for pattern in ENTITY_NAME_PATTERNS):
            confidence = max(0.85, min(0.95, confidence + 0.15))
            reasoning += ", matches common entity pattern"

        entities.append(
            EntityTable(
                table_name=table.qualified_name,
                confidence=round(min(1.0, confidence), 4),
                reasoning=reasoning,
            )
        )

    return entities


def infer_join_tables(snapshot: Snapshot) -> List[JoinTable]:
    """Find many-to-many bridge tables."""
    join_tables: List[JoinTable] = []

    for table in snapshot.tables:
        targets = _join_table_targets(snapshot, table)
        if targets is None:
            continue
        join_tables.append(
            JoinTable(
                table_name=table.qualified_name,
                left_table=targets[0],
                right_table=targets[1],
                confidence=JOIN_TABLE_CONFIDENCE,
            )
        )

    return join_tables


def _classify_identity_column(column: Column) -> Optional[tuple]:
    """Apply the ordered name/type heuristics to one column.

    Returns (key_type, base_confidence) or None.
    """
    name = column.name.lower()

    if "email" in name:
        return IdentityKeyType.EMAIL, 0.9
    if "domain" in name:
        return IdentityKeyType.DOMAIN, 0.85
    if "phone" in name or "mobile" in name:
        return IdentityKeyType.PHONE, 0.8
    if "external_id" in name or "external_key" in name:
        return IdentityKeyType.EXTERNAL_ID, 0.9
    if column.data_type.lower() == "uuid" and name.endswith("id"):
        # ordinary foreign keys are not identities
        looks_like_fk = (
            name.endswith("_id") and not column.is_primary_key and not column.is_unique
        )
        if looks_like_fk:
            return None
        return IdentityKeyType.UUID, 0.7

    return None


def infer_identity_keys(snapshot: Snapshot) -> List[IdentityKey]:
    """Find columns that act as natural identities."""
    identity_keys: List[IdentityKey] = []

    for table in snapshot.tables:
        for column in table.columns:
            classified = _classify_identity_column(column)
            if classified is None:
                continue
            key_type, confidence = classified

            has_unique_constraint = column.is_unique or column.is_primary_key
            if has_unique_constraint:
                confidence = min(1.0, confidence + UNIQUE_BACKED_BOOST)

            identity_keys.append(
                IdentityKey(
                    table_name=table.qualified_name,
                    column_name=column.name,
                    key_type=key_type,
                    has_unique_constraint=has_unique_constraint,
                    confidence=round(confidence, 4),
                )
            )

    return identity_keys


def infer_relationships(snapshot: Snapshot) -> List[RelationshipPattern]:
    """Turn declared foreign keys into 1:many edges.

    Undeclared relationships are never modeled here; the audit modules
    report them as issues instead.
    """
    return [
        RelationshipPattern(
            type=RelationshipType.ONE_TO_MANY,
            from_table=edge.from_table,
            to_table=edge.to_table,
            confidence=EXPLICIT_FK_CONFIDENCE,
        )
        for edge in snapshot.relationships
    ]


def normalize_concept(table_name: str) -> str:
    """Collapse a table name to the concept it represents.

    Lower-cases, drops qualifier words and underscores, then strips a
    trailing plural so that ``company``, ``companies`` and
    ``companies_enriched`` all become ``compan``.
    """
    concept = _QUALIFIER_RE.sub("", table_name.lower())
    concept = concept.replace("_", "")
    if concept.endswith("s"):
        concept = concept[:-1]
    if concept.endswith("ie"):
        concept = concept[:-2]
    elif concept.endswith("y"):
        concept = concept[:-1]
    return concept


def infer_source_of_truth(
    snapshot: Snapshot, entities: List[EntityTable]
) -> List[SourceOfTruthCandidate]:
    """Group entity tables that collapse to the same concept."""
    concepts: Dict[str, List[str]] = {}
    for entity in entities:
        bare_name = entity.table_name.split(".", 1)[-1]
        concepts.setdefault(normalize_concept(bare_name), []).append(entity.table_name)

    candidates: List[SourceOfTruthCandidate] = []
    for concept, tables in concepts.items():
        if len(tables) < 2:
            continue

        canonical = tables[0]
        canonical_columns = -1
        for name in tables:
            table = snapshot.find_table(name)
            column_count = len(table.columns) if table else 0
            if column_count > canonical_columns:
                canonical, canonical_columns = name, column_count

        candidates.append(
            SourceOfTruthCandidate(
                concept=concept,
                tables=tables,
                recommended_canonical=canonical,
                reasoning=(
                    f"Multiple tables represent '{concept}'. "
                    f"{canonical} has most columns ({canonical_columns})."
                ),
                confidence=SOURCE_OF_TRUTH_CONFIDENCE,
            )
        )

    return candidates


def infer_model(snapshot: Snapshot) -> InferredModel:
    """Derive the semantic model for a Snapshot."""
    entities = infer_entities(snapshot)
    return InferredModel(
        entities=entities,
        join_tables=infer_join_tables(snapshot),
        identity_keys=infer_identity_keys(snapshot),
        relationships=infer_relationships(snapshot),
        source_of_truth_candidates=infer_source_of_truth(snapshot, entities),
    )
