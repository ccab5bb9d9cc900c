"""Pydantic models for remote schema metadata and query results.

``AttributeMetadata`` mirrors the raw attribute definition returned by the
schema-description endpoint; everything else is the normalized shape handed
to callers and stored in the metadata cache.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .types import AttributeRule, AttributeType, OptionValue

# Suffixes of annotation-only companion properties of lookups
ANNOTATION_SUFFIXES: tuple[str, ...] = ("idname", "idtype", "idyominame")
REQUIRED_LEVELS: frozenset[str] = frozenset({"ApplicationRequired", "SystemRequired"})
# Required by the schema but populated by the platform on create
SYSTEM_MANAGED_FIELDS: frozenset[str] = frozenset({
    "statecode", "statuscode", "ownerid", "owneridtype", "transactioncurrencyid",
    "createdby", "createdon", "modifiedby", "modifiedon", "versionnumber",
})


def localized_label(obj: Any) -> str | None:
    """``{"UserLocalizedLabel": {"Label": ...}}`` -> label, else None."""
    if isinstance(obj, dict):
        label = obj.get("UserLocalizedLabel")
        if isinstance(label, dict):
            return label.get("Label") or None
    return None


def parse_options(option_set: Any) -> list[OptionValue]:
    """Parse an ``OptionSet`` payload into value/label pairs (labels fall back to ``Option <n>``)."""
    if not isinstance(option_set, dict):
        return []
    options: list[OptionValue] = []
    for raw in option_set.get("Options") or []:
        value = raw.get("Value")
        if value is None:
            continue
        options.append(OptionValue(value=value, label=localized_label(raw.get("Label")) or f"Option {value}"))
    return options


def parse_boolean_options(option_set: Any) -> list[OptionValue]:
    if not isinstance(option_set, dict):
        return []
    options: list[OptionValue] = []
    for key, value, fallback in (("FalseOption", 0, "No"), ("TrueOption", 1, "Yes")):
        raw = option_set.get(key)
        if isinstance(raw, dict):
            options.append(OptionValue(value=raw.get("Value", value), label=localized_label(raw.get("Label")) or fallback))
    return options


class AttributeMetadata(BaseModel):
    """Raw attribute definition, snake_cased."""

    model_config = ConfigDict(frozen=True)

    logical_name: str
    display_name: str | None = None
    description: str | None = None
    type_name: str | None = None
    attribute_type: AttributeType = AttributeType.UNKNOWN
    is_primary_id: bool = False
    is_primary_name: bool = False
    is_valid_for_read: bool = False
    is_valid_for_create: bool = False
    is_valid_for_update: bool = False
    required_level: str | None = None
    attribute_of: str | None = None
    max_length: int | None = None
    format: str | None = None
    precision: int | None = None
    min_value: float | None = None
    max_value: float | None = None
    options: list[OptionValue] | None = None
    targets: list[str] | None = None

    @classmethod
    def from_remote(cls, raw: dict[str, Any]) -> AttributeMetadata:
        type_name = (raw.get("AttributeTypeName") or {}).get("Value") or raw.get("AttributeType")
        attribute_type = AttributeType.from_remote(type_name)
        option_set = raw.get("OptionSet")
        options: list[OptionValue] | None = None
        if attribute_type is AttributeType.BOOLEAN and option_set:
            options = parse_boolean_options(option_set)
        elif option_set:
            options = parse_options(option_set)
        return cls(
            logical_name=raw.get("LogicalName") or "",
            display_name=localized_label(raw.get("DisplayName")),
            description=localized_label(raw.get("Description")),
            type_name=type_name,
            attribute_type=attribute_type,
            is_primary_id=bool(raw.get("IsPrimaryId")),
            is_primary_name=bool(raw.get("IsPrimaryName")),
            is_valid_for_read=bool(raw.get("IsValidForRead")),
            is_valid_for_create=bool(raw.get("IsValidForCreate")),
            is_valid_for_update=bool(raw.get("IsValidForUpdate")),
            required_level=(raw.get("RequiredLevel") or {}).get("Value"),
            attribute_of=raw.get("AttributeOf") or None,
            max_length=raw.get("MaxLength"),
            format=raw.get("Format"),
            precision=raw.get("Precision"),
            min_value=raw.get("MinValue"),
            max_value=raw.get("MaxValue"),
            options=options,
            targets=raw.get("Targets"),
        )

    @property
    def is_required(self) -> bool:
        return self.required_level in REQUIRED_LEVELS

    @property
    def is_read_only(self) -> bool:
        return not self.is_valid_for_create and not self.is_valid_for_update

    @property
    def is_annotation(self) -> bool:
        """Companion property such as ``owneridname``/``owneridtype``."""
        return self.logical_name.endswith(ANNOTATION_SUFFIXES)

    @property
    def is_derived(self) -> bool:
        """Computed from another attribute (``AttributeOf``) or virtual."""
        return self.attribute_of is not None or self.attribute_type is AttributeType.VIRTUAL

    @property
    def is_scorable(self) -> bool:
        """Eligible for the important-fields heuristic."""
        return (
            self.is_valid_for_read
            and not self.logical_name.startswith("_")
            and not self.is_annotation
            and not self.is_derived
        )

    @property
    def wire_name(self) -> str:
        return self.attribute_type.rule.wire_name(self.logical_name)


class TableMetadata(BaseModel):
    """One accessible table."""

    model_config = ConfigDict(frozen=True)

    logical_name: str
    display_name: str
    entity_set_name: str | None = None
    description: str | None = None


class AttributeDescription(BaseModel):
    """Caller-facing attribute summary with a synthetic example value."""

    model_config = ConfigDict(frozen=True)

    logical_name: str
    display_name: str
    description: str | None = None
    type: AttributeType
    is_primary_id: bool = False
    is_primary_name: bool = False
    is_required: bool = False
    is_read_only: bool = False
    is_valid_for_create: bool = False
    is_valid_for_update: bool = False
    max_length: int | None = None
    format: str | None = None
    precision: int | None = None
    min_value: float | None = None
    max_value: float | None = None
    example_value: Any = None
    options: list[OptionValue] | None = None
    targets: list[str] | None = None

    @property
    def rule(self) -> AttributeRule:
        return self.type.rule

    @property
    def wire_name(self) -> str:
        return self.rule.wire_name(self.logical_name)


class TableDescription(BaseModel):
    """Schema of one table, either full or important-fields only."""

    model_config = ConfigDict(frozen=True)

    logical_name: str
    display_name: str
    description: str | None = None
    primary_id_attribute: str
    primary_name_attribute: str | None = None
    attributes: list[AttributeDescription] = Field(default_factory=list)
    sample_record: dict[str, Any] = Field(default_factory=dict)

    def attribute(self, logical_name: str) -> AttributeDescription | None:
        return next((a for a in self.attributes if a.logical_name == logical_name), None)

    def has_attribute(self, logical_name: str) -> bool:
        return self.attribute(logical_name) is not None

    def caller_required_attributes(self) -> list[AttributeDescription]:
        """Required, writable attributes a create payload must supply itself."""
        return [
            a for a in self.attributes
            if a.is_required
            and not a.is_read_only
            and a.logical_name != self.primary_id_attribute
            and a.logical_name not in SYSTEM_MANAGED_FIELDS
        ]


class AttributeFormat(BaseModel):
    """Per-attribute formatting rules for building create/update payloads."""

    model_config = ConfigDict(frozen=True)

    logical_name: str
    display_name: str
    description: str | None = None
    type: AttributeType
    is_primary_id: bool = False
    is_primary_name: bool = False
    is_required: bool = False
    is_read_only: bool = False
    is_valid_for_create: bool = False
    is_valid_for_update: bool = False
    max_length: int | None = None
    min_value: float | None = None
    max_value: float | None = None
    precision: int | None = None
    format: str | None = None
    option_set: list[OptionValue] | None = None
    boolean_options: list[OptionValue] | None = None
    lookup_targets: list[str] | None = None
    format_guidance: str
    example_values: list[Any] = Field(default_factory=list)


class TableFormatDescription(BaseModel):
    model_config = ConfigDict(frozen=True)

    logical_name: str
    display_name: str
    description: str | None = None
    primary_id_attribute: str
    primary_name_attribute: str | None = None
    required_attributes: list[str] = Field(default_factory=list)
    creation_guidance: list[str] = Field(default_factory=list)
    attributes: list[AttributeFormat] = Field(default_factory=list)

    @computed_field
    @property
    def attribute_count(self) -> int:
        return len(self.attributes)


class WhoAmI(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    business_unit_id: str
    organization_id: str


class SearchResult(BaseModel):
    table_name: str
    record_id: str
    primary_name: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    deep_link: str


class SearchResponse(BaseModel):
    results: list[SearchResult] = Field(default_factory=list)
    total_record_count: int = 0


class PredefinedQuery(BaseModel):
    """System view (``savedquery``) or personal view (``userquery``)."""

    id: str
    type: str
    name: str


class QueryRecord(BaseModel):
    record_id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    deep_link: str


class QueryResult(BaseModel):
    table_name: str
    records: list[QueryRecord] = Field(default_factory=list)
    total_record_count: int = 0
