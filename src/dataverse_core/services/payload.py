"""Payload normalization for create and update.

Turns caller-friendly values into the wire form the Web API expects:
lookups become ``<attr>@odata.bind`` references, choice labels become option
values, and id/type sibling pairs are merged before resolution. Per-attribute
failures are collected so one error names every problem in the payload.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Mapping

from dataverse_core.foundation.errors import (
    AmbiguousMatch,
    AmbiguousOptionSet,
    AmbiguousPolymorphicLookup,
    AuthenticationError,
    DataverseException,
    MissingRequiredAttributes,
    NetworkError,
    NotFound,
    PayloadResolutionError,
    RateLimitExceeded,
    RemoteApiError,
    RequestTimeout,
    UnresolvedLookup,
    UnresolvedOptionSet,
)
from dataverse_core.schema import AttributeDescription, TableDescription, ValueKind
from dataverse_core.utils.guid import is_guid

from .metadata import MetadataResolver

if TYPE_CHECKING:
    from dataverse_core.io.http import WebApiClient

logger = logging.getLogger("dataverse_core.payload")

BIND_SUFFIX = "@odata.bind"
CURRENCY_ATTRIBUTE = "transactioncurrencyid"
CURRENCY_TABLE = "transactioncurrency"

# Sibling pairs merged into "table=guid" before lookup resolution
KNOWN_POLYMORPHIC_PAIRS: tuple[tuple[str, str], ...] = (
    ("ownerid", "owneridtype"),
    ("regardingobjectid", "regardingobjecttypecode"),
)
_TYPE_SUFFIXES: tuple[str, ...] = ("typecode", "type")

_WIRE_REFERENCE = re.compile(
    r"^/?[A-Za-z_][A-Za-z0-9_]*\([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\)$",
    re.IGNORECASE,
)

# Failures that say nothing about the payload and must reach the caller as-is
_PASSTHROUGH_ERRORS = (AuthenticationError, RateLimitExceeded, RequestTimeout, NetworkError)


def _merge_pair(data: dict[str, Any], id_key: str, type_key: str) -> bool:
    id_value, type_value = data.get(id_key), data.get(type_key)
    if not (isinstance(id_value, str) and id_value and isinstance(type_value, str) and type_value):
        return False
    if "=" in id_value or "(" in id_value:
        return False
    data[id_key] = f"{type_value}={id_value}"
    del data[type_key]
    logger.debug(f"Merged {id_key} + {type_key} into {id_key}={data[id_key]!r}")
    return True


def _is_lookup_pair(description: TableDescription, id_key: str, type_key: str) -> bool:
    id_attr, type_attr = description.attribute(id_key), description.attribute(type_key)
    if id_attr is None or not id_attr.type.is_reference:
        return False
    return type_attr is None or not type_attr.type.is_choice


def normalize_polymorphic_pairs(
    data: Mapping[str, Any], description: TableDescription | None = None
) -> dict[str, Any]:
    """``{ownerid: G, owneridtype: systemuser}`` -> ``{ownerid: "systemuser=G"}``. Input is not mutated.

    Explicit pairs are handled first; any other ``<base>type``/``<base>typecode``
    key merges into ``<base>id`` (or ``<base>`` when it already ends in ``id``).
    With a ``description``, generic pairs merge only when the id key is a lookup
    and the type key is not a choice attribute.
    """
    normalized = dict(data)
    for id_key, type_key in KNOWN_POLYMORPHIC_PAIRS:
        _merge_pair(normalized, id_key, type_key)
    for key in list(normalized):
        if key not in normalized:
            continue
        for suffix in _TYPE_SUFFIXES:
            if key.endswith(suffix) and len(key) > len(suffix):
                base = key[: -len(suffix)]
                id_key = base if base.endswith("id") else f"{base}id"
                if id_key == key:
                    continue
                if description is not None and not _is_lookup_pair(description, id_key, key):
                    continue
                if _merge_pair(normalized, id_key, key):
                    break
    return normalized


def validate_required_attributes(description: TableDescription, data: Mapping[str, Any]) -> None:
    """Raise one MissingRequiredAttributes naming every required attribute absent from ``data``.

    A lookup is also satisfied by its ``@odata.bind`` or shadow property key; the
    bound target table is not checked against the lookup's declared targets.
    """
    missing: list[tuple[str, str]] = []
    for attr in description.caller_required_attributes():
        keys = {attr.logical_name}
        if attr.type.is_reference:
            keys |= {f"{attr.logical_name}{BIND_SUFFIX}", attr.wire_name}
        if not any(k in data for k in keys):
            missing.append((attr.logical_name, attr.display_name))
    if missing:
        logger.info(f"Create payload for {description.logical_name} is missing {len(missing)} required attribute(s)")
        raise MissingRequiredAttributes(description.logical_name, missing)


def resolve_choice_value(attribute: AttributeDescription, value: Any) -> int | float:
    """Numbers pass through unchecked; strings must equal exactly one option label."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    options = attribute.options or []
    if isinstance(value, str):
        matches = [o for o in options if o.label == value]
        if len(matches) == 1:
            return matches[0].value
        if len(matches) > 1:
            raise AmbiguousOptionSet(
                f"Option label '{value}' for attribute '{attribute.logical_name}' is not unique "
                f"(values {', '.join(str(o.value) for o in matches)}). Use the integer value instead.",
                operation="resolve_choice_value",
                attribute=attribute.logical_name,
                value=value,
            )
    available = ", ".join(f"{o.value}={o.label!r}" for o in options) or "none loaded"
    raise UnresolvedOptionSet(
        f"Could not resolve option set value {value!r} for attribute '{attribute.logical_name}'. "
        f"Valid options: {available}",
        operation="resolve_choice_value",
        attribute=attribute.logical_name,
        value=value,
    )


def resolve_multi_choice_value(attribute: AttributeDescription, value: Any) -> str:
    """List (or single value) of labels/integers -> ``"1,2"``. Fractional numbers are rejected."""
    values = value if isinstance(value, (list, tuple, set)) else [value]
    resolved: list[str] = []
    for v in values:
        option = resolve_choice_value(attribute, v)
        if isinstance(option, float) and not option.is_integer():
            raise UnresolvedOptionSet(
                f"Option value {v!r} for attribute '{attribute.logical_name}' is not a whole number",
                operation="resolve_multi_choice_value",
                attribute=attribute.logical_name,
                value=v,
            )
        resolved.append(str(int(option)))
    return ",".join(resolved)


class PayloadResolver:
    """Builds create/update payloads against a table's full schema.

    Args:
        metadata: Resolver used for every schema and name lookup
    """

    __slots__ = ("metadata",)

    normalize_polymorphic_pairs = staticmethod(normalize_polymorphic_pairs)
    validate_required_attributes = staticmethod(validate_required_attributes)
    resolve_choice_value = staticmethod(resolve_choice_value)
    resolve_multi_choice_value = staticmethod(resolve_multi_choice_value)

    def __init__(self, metadata: MetadataResolver) -> None:
        self.metadata = metadata

    async def _reference(self, client: WebApiClient, table: str, record_id: str) -> str:
        return f"/{await self.metadata.get_collection_name(client, table)}({record_id})"

    async def resolve_lookup_value(self, client: WebApiClient, attribute: AttributeDescription, value: Any) -> str:
        """Canonical ``/collection(guid)`` reference for a lookup value.

        Tried in order: wire form as-is, bare GUID (single target only),
        ``table=guid``, then the primary name against each target table.
        """
        name = attribute.logical_name
        targets = attribute.targets or []
        if not isinstance(value, str) or not value.strip():
            raise UnresolvedLookup(
                f"Could not resolve lookup value {value!r} for attribute '{name}': expected a string",
                operation="resolve_lookup_value",
                attribute=name,
            )
        value = value.strip()

        if _WIRE_REFERENCE.match(value):
            return value

        if is_guid(value):
            if len(targets) == 1:
                return await self._reference(client, targets[0], value)
            if len(targets) > 1:
                raise AmbiguousPolymorphicLookup(
                    f"Lookup for attribute '{name}' is polymorphic ({', '.join(targets)}). "
                    f"Provide the table as 'table=guid', e.g. '{targets[0]}={value}'.",
                    operation="resolve_lookup_value",
                    attribute=name,
                    targets=targets,
                )
            raise UnresolvedLookup(
                f"Lookup attribute '{name}' declares no target table; provide 'table=guid'",
                operation="resolve_lookup_value",
                attribute=name,
            )

        table, sep, record_id = value.partition("=")
        if sep and table.strip() and is_guid(record_id.strip()):
            return await self._reference(client, table.strip(), record_id.strip())

        ambiguous: list[str] = []
        for target in targets:
            try:
                description = await self.metadata.describe_table(client, target, full=False)
                if not description.primary_name_attribute:
                    continue
                collection = await self.metadata.get_collection_name(client, target)
                records = await client.retrieve_by_attribute(
                    collection,
                    description.primary_name_attribute,
                    value,
                    select=[description.primary_id_attribute],
                )
            except _PASSTHROUGH_ERRORS:
                raise
            except (RemoteApiError, NotFound) as e:
                logger.debug(f"Name lookup of {value!r} in {target} failed, trying next target: {e.message}")
                continue
            if len(records) == 1:
                record = records[0]
                record_id = record.get(description.primary_id_attribute) or record.get(f"{target}id")
                if record_id:
                    return f"/{collection}({record_id})"
            elif len(records) > 1:
                ambiguous.append(target)

        if ambiguous:
            raise AmbiguousMatch(
                f"Lookup value '{value}' for attribute '{name}' matches several records in "
                f"{', '.join(ambiguous)}. Use the record GUID instead.",
                operation="resolve_lookup_value",
                attribute=name,
                value=value,
                tables=ambiguous,
            )
        raise UnresolvedLookup(
            f"Could not resolve lookup value '{value}' for attribute '{name}' "
            f"(targets: {', '.join(targets) or 'none'})",
            operation="resolve_lookup_value",
            attribute=name,
            value=value,
            targets=targets,
        )

    async def _resolve_attributes(
        self, client: WebApiClient, description: TableDescription, data: Mapping[str, Any]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        errors: list[DataverseException] = []
        for key, value in data.items():
            attribute = description.attribute(key)
            if attribute is None:
                payload[key] = value
                continue
            try:
                match attribute.rule.kind:
                    case ValueKind.REFERENCE:
                        payload[f"{key}{BIND_SUFFIX}"] = await self.resolve_lookup_value(client, attribute, value)
                    case ValueKind.CHOICE:
                        payload[key] = resolve_choice_value(attribute, value)
                    case ValueKind.MULTI_CHOICE:
                        payload[key] = resolve_multi_choice_value(attribute, value)
                    case _:
                        payload[key] = value
            except _PASSTHROUGH_ERRORS:
                raise
            except DataverseException as e:
                errors.append(e)
        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise PayloadResolutionError(description.logical_name, errors)
        return payload

    async def build_create_payload(self, client: WebApiClient, table: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Normalize, validate required attributes, resolve values and add the base currency."""
        description = await self.metadata.describe_table(client, table, full=True)
        normalized = normalize_polymorphic_pairs(data, description)
        validate_required_attributes(description, normalized)
        payload = await self._resolve_attributes(client, description, normalized)

        supplied = {CURRENCY_ATTRIBUTE, f"{CURRENCY_ATTRIBUTE}{BIND_SUFFIX}"} & set(payload)
        if description.has_attribute(CURRENCY_ATTRIBUTE) and not supplied:
            currency_id = await client.get_organization_base_currency_id()
            payload[f"{CURRENCY_ATTRIBUTE}{BIND_SUFFIX}"] = await self._reference(client, CURRENCY_TABLE, currency_id)
        return payload

    async def build_update_payload(self, client: WebApiClient, table: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Same resolution as create; partial payloads are fine and nothing is injected."""
        description = await self.metadata.describe_table(client, table, full=True)
        return await self._resolve_attributes(client, description, normalize_polymorphic_pairs(data, description))
