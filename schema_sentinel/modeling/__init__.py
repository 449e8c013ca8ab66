"""
Semantic modeling: Snapshot -> InferredModel.
"""

from .inferrer import (
    infer_entities,
    infer_identity_keys,
    infer_join_tables,
    infer_model,
    infer_relationships,
    infer_source_of_truth,
    normalize_concept,
)
from .models import (
    EntityTable,
    IdentityKey,
    InferredModel,
    JoinTable,
    RelationshipPattern,
    SourceOfTruthCandidate,
)

__all__ = [
    "infer_model",
    "infer_entities",
    "infer_join_tables",
    "infer_identity_keys",
    "infer_relationships",
    "infer_source_of_truth",
    "normalize_concept",
    "InferredModel",
    "EntityTable",
    "JoinTable",
    "IdentityKey",
    "RelationshipPattern",
    "SourceOfTruthCandidate",
]
