"""Resolvers and executors built on the cache and the request client.

- MetadataResolver: identifiers, schema descriptions, important columns
- ImportantFieldsScorer: sampled/metadata attribute scoring
- PayloadResolver: create/update payload normalization
- QueryExecutor: search, retrieval, stored and ad-hoc FetchXML
"""

from .metadata import MetadataResolver
from .payload import (
    PayloadResolver,
    normalize_polymorphic_pairs,
    resolve_choice_value,
    resolve_multi_choice_value,
    validate_required_attributes,
)
from .query import QueryExecutor, deep_link
from .scoring import ImportantFieldsScorer, ScoreResult, ScoreSource

__all__ = [
    "MetadataResolver",
    "ImportantFieldsScorer", "ScoreResult", "ScoreSource",
    "PayloadResolver", "normalize_polymorphic_pairs", "resolve_choice_value",
    "resolve_multi_choice_value", "validate_required_attributes",
    "QueryExecutor", "deep_link",
]
