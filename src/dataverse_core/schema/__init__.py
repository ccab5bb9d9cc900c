"""Schema types: the attribute-type dispatch table and metadata models."""

from .models import (
    SYSTEM_MANAGED_FIELDS,
    AttributeDescription,
    AttributeFormat,
    AttributeMetadata,
    PredefinedQuery,
    QueryRecord,
    QueryResult,
    SearchResponse,
    SearchResult,
    TableDescription,
    TableFormatDescription,
    TableMetadata,
    WhoAmI,
    localized_label,
    parse_boolean_options,
    parse_options,
)
from .types import ATTRIBUTE_RULES, SAMPLE_DATETIME, AttributeRule, AttributeType, OptionValue, ValueKind

__all__ = [
    # Types
    "AttributeType", "AttributeRule", "ValueKind", "ATTRIBUTE_RULES", "OptionValue", "SAMPLE_DATETIME",
    # Metadata
    "AttributeMetadata", "AttributeDescription", "TableMetadata", "TableDescription",
    "AttributeFormat", "TableFormatDescription", "SYSTEM_MANAGED_FIELDS",
    # Results
    "WhoAmI", "SearchResult", "SearchResponse", "PredefinedQuery", "QueryRecord", "QueryResult",
    # Parsing helpers
    "localized_label", "parse_options", "parse_boolean_options",
]
