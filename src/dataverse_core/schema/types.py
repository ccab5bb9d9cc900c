"""Closed attribute-type variant and its dispatch table.

The remote schema reports attribute types as open-ended strings
(``StringType``, ``PicklistAttributeMetadata``, ``Lookup`` ...). They are
normalized once into ``AttributeType`` at the boundary; every per-type
decision (wire-safe property name, synthetic example, payload resolution
path, format guidance) is looked up in ``ATTRIBUTE_RULES``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict

from dataverse_core.utils.guid import EMPTY_GUID

SAMPLE_DATETIME = "2024-01-01T00:00:00Z"


class OptionValue(BaseModel):
    """One integer/label pair of a choice attribute."""

    model_config = ConfigDict(frozen=True)

    value: int
    label: str


class AttributeType(StrEnum):
    STRING = "string"
    MEMO = "memo"
    INTEGER = "integer"
    BIGINT = "bigint"
    DECIMAL = "decimal"
    DOUBLE = "double"
    MONEY = "money"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    PICKLIST = "picklist"
    MULTI_SELECT_PICKLIST = "multiselectpicklist"
    STATE = "state"
    STATUS = "status"
    LOOKUP = "lookup"
    CUSTOMER = "customer"
    OWNER = "owner"
    UNIQUEIDENTIFIER = "uniqueidentifier"
    ENTITY_NAME = "entityname"
    PARTY_LIST = "partylist"
    VIRTUAL = "virtual"
    IMAGE = "image"
    FILE = "file"
    UNKNOWN = "unknown"

    @classmethod
    def from_remote(cls, raw: str | None) -> AttributeType:
        """Normalize ``StringType`` / ``StringAttributeMetadata`` / ``String`` to STRING."""
        if not raw:
            return cls.UNKNOWN
        name = raw.strip()
        for suffix in ("AttributeMetadata", "Type"):
            if name.endswith(suffix) and len(name) > len(suffix):
                name = name[: -len(suffix)]
                break
        try:
            return cls(name.lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def rule(self) -> AttributeRule:
        return ATTRIBUTE_RULES[self]

    @property
    def is_reference(self) -> bool:
        return self.rule.kind is ValueKind.REFERENCE

    @property
    def is_choice(self) -> bool:
        return self.rule.kind in (ValueKind.CHOICE, ValueKind.MULTI_CHOICE)


class ValueKind(StrEnum):
    """How a caller-supplied value for the attribute is resolved."""
    PLAIN = "plain"
    REFERENCE = "reference"
    CHOICE = "choice"
    MULTI_CHOICE = "multi_choice"


# Example generator signature: (lowercased logical name, options, lookup targets)
ExampleFn = Callable[[str, list[OptionValue], list[str]], Any]
ExamplesFn = Callable[[str, list[OptionValue], list[str]], list[Any]]


@dataclass(frozen=True, slots=True)
class AttributeRule:
    """Per-type behavior.

    Attributes:
        kind: Payload resolution path
        example: Deterministic synthetic example value for documentation
        examples: Several accepted input forms, for format descriptions
        guidance: How callers should format values of this type
    """
    kind: ValueKind
    example: ExampleFn
    examples: ExamplesFn
    guidance: str

    def wire_name(self, logical_name: str) -> str:
        """Selectable property name; relationship attributes use the foreign-key shadow property."""
        return f"_{logical_name}_value" if self.kind is ValueKind.REFERENCE else logical_name


# ─────────────────────────────────────────────────────────────────────────────
# Synthetic examples
# ─────────────────────────────────────────────────────────────────────────────


def _string_example(name: str, _o: list[OptionValue], _t: list[str]) -> str:
    if "email" in name:
        return "user@example.com"
    if "phone" in name or "telephone" in name:
        return "+1-555-0100"
    if "url" in name or "website" in name:
        return "https://example.com"
    if "name" in name:
        return "Sample Name"
    if "description" in name or "notes" in name:
        return "Sample description text"
    if "address" in name:
        return "123 Main Street"
    if "city" in name:
        return "Seattle"
    if "zip" in name or "postal" in name:
        return "98101"
    if "country" in name:
        return "USA"
    return "Sample text"


def _integer_example(name: str, _o: list[OptionValue], _t: list[str]) -> int:
    if "count" in name or "number" in name:
        return 42
    if "age" in name:
        return 30
    return 100


def _decimal_example(name: str, _o: list[OptionValue], _t: list[str]) -> float:
    if "price" in name or "amount" in name or "revenue" in name:
        return 1234.56
    if "percent" in name or "rate" in name:
        return 0.15
    return 99.99


def _choice_example(_n: str, options: list[OptionValue], _t: list[str]) -> dict[str, Any]:
    if options:
        return {"value": options[0].value, "label": options[0].label}
    return {"value": 1, "label": "Sample Option"}


def _lookup_example(_n: str, _o: list[OptionValue], targets: list[str]) -> dict[str, Any]:
    target = targets[0] if targets else "entity"
    return {"id": EMPTY_GUID, "entityType": target, "name": f"Sample {target}"}


def _const(value: Any) -> ExampleFn:
    return lambda _n, _o, _t: value


def _choice_examples(name: str, options: list[OptionValue], targets: list[str]) -> list[Any]:
    if not options:
        return [1]
    return [options[0].value, options[0].label]


def _multi_choice_examples(name: str, options: list[OptionValue], targets: list[str]) -> list[Any]:
    if not options:
        return [[1, 2]]
    return [[o.value for o in options[:2]], [options[0].label]]


def _lookup_examples(name: str, options: list[OptionValue], targets: list[str]) -> list[Any]:
    examples: list[Any] = [f"{t}={EMPTY_GUID}" for t in targets]
    if len(targets) == 1:
        examples.append(EMPTY_GUID)
    if targets:
        examples.append(f"Sample {targets[0]}")
    return examples


def _single(fn: ExampleFn) -> ExamplesFn:
    return lambda n, o, t: [fn(n, o, t)]


_TEXT = "Plain string. Respect max_length."
_NUMBER = "JSON number. Respect min_value/max_value."
_LOOKUP = (
    "Reference to another record. Accepted forms: 'collection(guid)', a bare GUID "
    "(single-target lookups only), 'table=guid', or the primary name of the target record."
)
_CHOICE = "Integer option value, or the exact option label (case-sensitive)."

_STRING_RULE = AttributeRule(ValueKind.PLAIN, _string_example, _single(_string_example), _TEXT)
_INTEGER_RULE = AttributeRule(ValueKind.PLAIN, _integer_example, _single(_integer_example), _NUMBER + " Whole numbers only.")
_DECIMAL_RULE = AttributeRule(ValueKind.PLAIN, _decimal_example, _single(_decimal_example), _NUMBER + " Respect precision.")
_CHOICE_RULE = AttributeRule(ValueKind.CHOICE, _choice_example, _choice_examples, _CHOICE)
_LOOKUP_RULE = AttributeRule(ValueKind.REFERENCE, _lookup_example, _lookup_examples, _LOOKUP)
_GUID_RULE = AttributeRule(ValueKind.PLAIN, _const(EMPTY_GUID), _single(_const(EMPTY_GUID)), "GUID string.")
_OPAQUE_RULE = AttributeRule(ValueKind.PLAIN, _const(None), lambda n, o, t: [], "Not settable through record payloads.")

ATTRIBUTE_RULES: dict[AttributeType, AttributeRule] = {
    AttributeType.STRING: _STRING_RULE,
    AttributeType.MEMO: _STRING_RULE,
    AttributeType.INTEGER: _INTEGER_RULE,
    AttributeType.BIGINT: _INTEGER_RULE,
    AttributeType.DECIMAL: _DECIMAL_RULE,
    AttributeType.DOUBLE: _DECIMAL_RULE,
    AttributeType.MONEY: _DECIMAL_RULE,
    AttributeType.BOOLEAN: AttributeRule(
        ValueKind.PLAIN, _const(True), lambda n, o, t: [True, False], "JSON boolean true or false."
    ),
    AttributeType.DATETIME: AttributeRule(
        ValueKind.PLAIN,
        _const(SAMPLE_DATETIME),
        lambda n, o, t: [SAMPLE_DATETIME, SAMPLE_DATETIME[:10]],
        "ISO 8601 date or date-time string, UTC.",
    ),
    AttributeType.PICKLIST: _CHOICE_RULE,
    AttributeType.STATE: _CHOICE_RULE,
    AttributeType.STATUS: _CHOICE_RULE,
    AttributeType.MULTI_SELECT_PICKLIST: AttributeRule(
        ValueKind.MULTI_CHOICE,
        _choice_example,
        _multi_choice_examples,
        "List of option values or exact labels; sent as a comma-separated integer string.",
    ),
    AttributeType.LOOKUP: _LOOKUP_RULE,
    AttributeType.CUSTOMER: _LOOKUP_RULE,
    AttributeType.OWNER: _LOOKUP_RULE,
    AttributeType.UNIQUEIDENTIFIER: _GUID_RULE,
    AttributeType.ENTITY_NAME: _OPAQUE_RULE,
    AttributeType.PARTY_LIST: _OPAQUE_RULE,
    AttributeType.VIRTUAL: _OPAQUE_RULE,
    AttributeType.IMAGE: _OPAQUE_RULE,
    AttributeType.FILE: _OPAQUE_RULE,
    AttributeType.UNKNOWN: AttributeRule(ValueKind.PLAIN, _const(None), lambda n, o, t: [], "Passed through unchanged."),
}
