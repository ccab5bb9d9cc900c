"""Metadata resolution.

Maps caller-supplied table identifiers to canonical logical and collection
names, describes table schemas and selects important columns. Every step
consults the injected ``MetadataCache`` first and populates it on a miss;
this resolver is the cache's only writer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from dataverse_core.foundation.errors import DataverseException, NotFound, RemoteApiError
from dataverse_core.io.cache import MetadataCache
from dataverse_core.schema import (
    AttributeDescription,
    AttributeFormat,
    AttributeMetadata,
    AttributeType,
    TableDescription,
    TableFormatDescription,
    TableMetadata,
    localized_label,
    parse_boolean_options,
    parse_options,
)
from dataverse_core.utils.guid import EMPTY_GUID

from .scoring import MAX_IMPORTANT_FIELDS, ImportantFieldsScorer, ScoreResult

if TYPE_CHECKING:
    from dataverse_core.io.cache import CacheStats
    from dataverse_core.io.http import WebApiClient

logger = logging.getLogger("dataverse_core.metadata")

# Filters are OR-ed per batch to stay under the query length limit
TABLE_BATCH_SIZE = 100
READ_PRIVILEGE_PREFIX = "prvRead"

_TABLE_SELECT = "LogicalName,DisplayName,Description,PrimaryIdAttribute,PrimaryNameAttribute"

# Typed cast endpoints that expand option sets for choice-like attributes
_OPTION_SET_CASTS: dict[AttributeType, str] = {
    AttributeType.PICKLIST: "PicklistAttributeMetadata",
    AttributeType.MULTI_SELECT_PICKLIST: "MultiSelectPicklistAttributeMetadata",
    AttributeType.STATE: "StateAttributeMetadata",
    AttributeType.STATUS: "StatusAttributeMetadata",
    AttributeType.BOOLEAN: "BooleanAttributeMetadata",
}

CREATION_GUIDANCE: tuple[str, ...] = (
    "Supply every attribute listed in required_attributes.",
    "Lookups accept 'collection(guid)', a bare GUID for single-target lookups, 'table=guid' or the target record's primary name.",
    "Polymorphic lookups may also be given as an id/type pair, e.g. ownerid + owneridtype.",
    "Choices accept the integer value or the exact option label; multi-select choices accept a list.",
    "Read-only and system-managed attributes (state, status, owner, currency, audit fields) are set by the platform.",
    "The organization's base currency is added automatically when the table has a currency and none is given.",
)


class MetadataResolver:
    """Identifier resolution and schema description for any number of instances.

    Args:
        cache: Shared metadata cache (one per process is typical)
        scorer: Important-fields heuristic
    """

    __slots__ = ("cache", "scorer")

    def __init__(self, cache: MetadataCache | None = None, scorer: ImportantFieldsScorer | None = None) -> None:
        self.cache = cache or MetadataCache()
        self.scorer = scorer or ImportantFieldsScorer()

    # ─────────────────────────────────────────────────────────────────
    # Identifier resolution
    # ─────────────────────────────────────────────────────────────────

    def _lookup_cached(self, url: str, raw: str) -> str | None:
        if (logical := self.cache.get_reverse_entity_set_name(url, raw)) is not None:
            return logical
        if self.cache.get_entity_set_name(url, raw) is not None:
            return raw
        for table in self.cache.get_table_list(url) or []:
            if table.entity_set_name == raw:
                return table.logical_name
            if table.logical_name == raw:
                return raw
        return None

    async def resolve_identifier(self, client: WebApiClient, raw: str) -> str:
        """Logical name for a logical or collection name. Never raises; unknown input comes back unchanged."""
        url = client.instance_url
        self.cache.ensure_system_entities(url)
        if (logical := self._lookup_cached(url, raw)) is not None:
            return logical
        try:
            await self.list_tables(client)
        except Exception as e:
            logger.warning(f"Table list refresh failed while resolving '{raw}': {e}")
            return raw
        return self._lookup_cached(url, raw) or raw

    def _collection_cached(self, url: str, name: str) -> str | None:
        if self.cache.get_reverse_entity_set_name(url, name) is not None:
            return name
        return self.cache.get_entity_set_name(url, name)

    async def get_collection_name(self, client: WebApiClient, logical_name: str) -> str:
        """Entity set name for a table; raises NotFound when the table cannot be found."""
        url = client.instance_url
        self.cache.ensure_system_entities(url)
        if (collection := self._collection_cached(url, logical_name)) is not None:
            return collection

        try:
            await self.list_tables(client)
        except DataverseException as e:
            logger.warning(f"Table list refresh failed while resolving collection of '{logical_name}': {e.message}")
        if (collection := self._collection_cached(url, logical_name)) is not None:
            return collection

        # Tables outside the readable list (e.g. transactioncurrency) still have a definition
        try:
            data = await client.get_json(
                f"EntityDefinitions(LogicalName='{logical_name}')?$select=LogicalName,EntitySetName",
                operation="get_collection_name",
            )
        except RemoteApiError as e:
            raise NotFound(
                f"Could not find entity set name for table '{logical_name}'",
                operation="get_collection_name",
                table=logical_name,
                status=e.status,
            ) from e
        if not (collection := data.get("EntitySetName")):
            raise NotFound(
                f"Could not find entity set name for table '{logical_name}'",
                operation="get_collection_name",
                table=logical_name,
            )
        self.cache.set_entity_set_name_bidirectional(url, data.get("LogicalName") or logical_name, collection)
        return collection

    # ─────────────────────────────────────────────────────────────────
    # Table discovery
    # ─────────────────────────────────────────────────────────────────

    async def get_readable_entity_names(self, client: WebApiClient) -> frozenset[str]:
        """Tables the current user holds a read privilege on, from ``prvRead<Entity>`` names."""
        who = await client.ensure_initialized()
        url = client.instance_url
        if (cached := self.cache.get_readable_entity_names(url, who.user_id)) is not None:
            return cached
        data = await client.get_json(
            f"systemusers({who.user_id})/Microsoft.Dynamics.CRM.RetrieveUserPrivileges",
            operation="list_tables",
        )
        names = frozenset(
            name[len(READ_PRIVILEGE_PREFIX):].lower()
            for privilege in data.get("RolePrivileges") or []
            if (name := privilege.get("PrivilegeName") or "").startswith(READ_PRIVILEGE_PREFIX)
        )
        self.cache.set_readable_entity_names(url, who.user_id, names)
        return names

    async def list_tables(self, client: WebApiClient) -> list[TableMetadata]:
        """Readable tables sorted by display name; records every name mapping it sees."""
        url = client.instance_url
        if (cached := self.cache.get_table_list(url)) is not None:
            return cached

        names = sorted(await self.get_readable_entity_names(client))
        tables: list[TableMetadata] = []
        for start in range(0, len(names), TABLE_BATCH_SIZE):
            batch = names[start : start + TABLE_BATCH_SIZE]
            clause = " or ".join(f"LogicalName eq '{n}'" for n in batch)
            data = await client.get_json(
                "EntityDefinitions?$select=LogicalName,DisplayName,EntitySetName,Description"
                f"&$filter=IsValidForAdvancedFind eq true and ({clause})",
                operation="list_tables",
            )
            for entity in data.get("value") or []:
                logical_name = entity.get("LogicalName") or ""
                collection = entity.get("EntitySetName") or None
                if logical_name and collection:
                    self.cache.set_entity_set_name_bidirectional(url, logical_name, collection)
                tables.append(TableMetadata(
                    logical_name=logical_name,
                    display_name=localized_label(entity.get("DisplayName")) or logical_name,
                    entity_set_name=collection,
                    description=localized_label(entity.get("Description")),
                ))

        tables.sort(key=lambda t: t.display_name.casefold())
        self.cache.set_table_list(url, tables)
        logger.info(f"Discovered {len(tables)} readable tables on {url}")
        return tables

    # ─────────────────────────────────────────────────────────────────
    # Schema description
    # ─────────────────────────────────────────────────────────────────

    async def _fetch_definition(self, client: WebApiClient, logical_name: str) -> dict[str, Any]:
        try:
            return await client.get_json(
                f"EntityDefinitions(LogicalName='{logical_name}')?$select={_TABLE_SELECT}&$expand=Attributes",
                operation="describe_table",
            )
        except RemoteApiError as e:
            if e.status == 404:
                raise NotFound(f"Table '{logical_name}' not found", operation="describe_table", table=logical_name) from e
            raise

    async def _load_option_sets(
        self, client: WebApiClient, logical_name: str, attributes: list[AttributeMetadata]
    ) -> list[AttributeMetadata]:
        """Fill option lists the attribute expand did not carry. Failures leave them empty."""
        missing = {a.attribute_type for a in attributes if a.attribute_type in _OPTION_SET_CASTS and not a.options}
        if not missing:
            return attributes
        loaded: dict[str, list] = {}
        for attribute_type in sorted(missing):
            cast = _OPTION_SET_CASTS[attribute_type]
            try:
                data = await client.get_json(
                    f"EntityDefinitions(LogicalName='{logical_name}')/Attributes/Microsoft.Dynamics.CRM.{cast}"
                    "?$select=LogicalName&$expand=OptionSet",
                    operation="load_option_sets",
                )
            except (RemoteApiError, NotFound) as e:
                logger.debug(f"Option sets for {logical_name} ({cast}) unavailable: {e.message}")
                continue
            parse = parse_boolean_options if attribute_type is AttributeType.BOOLEAN else parse_options
            for raw in data.get("value") or []:
                if name := raw.get("LogicalName"):
                    loaded[name] = parse(raw.get("OptionSet"))
        return [
            a.model_copy(update={"options": loaded[a.logical_name]}) if a.logical_name in loaded else a
            for a in attributes
        ]

    @staticmethod
    def describe_attribute(attr: AttributeMetadata) -> AttributeDescription:
        options = attr.options or []
        targets = attr.targets or []
        example = EMPTY_GUID if attr.is_primary_id else attr.attribute_type.rule.example(
            attr.logical_name.lower(), options, targets
        )
        return AttributeDescription(
            logical_name=attr.logical_name,
            display_name=attr.display_name or attr.logical_name,
            description=attr.description,
            type=attr.attribute_type,
            is_primary_id=attr.is_primary_id,
            is_primary_name=attr.is_primary_name,
            is_required=attr.is_required,
            is_read_only=attr.is_read_only,
            is_valid_for_create=attr.is_valid_for_create,
            is_valid_for_update=attr.is_valid_for_update,
            max_length=attr.max_length,
            format=attr.format,
            precision=attr.precision,
            min_value=attr.min_value,
            max_value=attr.max_value,
            example_value=example,
            options=attr.options,
            targets=attr.targets,
        )

    @staticmethod
    def select_important(
        readable: list[AttributeMetadata], score: ScoreResult, primary_id: str | None, primary_name: str | None
    ) -> list[AttributeMetadata]:
        """Primary id/name first, then the best scored, capped; output keeps schema order."""
        pinned = [n for n in (primary_id, primary_name) if n]
        ranked = pinned + [n for n in score.fields if n not in pinned]
        keep = set(ranked[:MAX_IMPORTANT_FIELDS])
        return [a for a in readable if a.logical_name in keep]

    async def describe_table(self, client: WebApiClient, table: str, full: bool = False) -> TableDescription:
        """Full (all readable attributes) or important-only description of a table."""
        logical_name = await self.resolve_identifier(client, table)
        url = client.instance_url
        if (cached := self.cache.get_table_description(url, logical_name, full)) is not None:
            return cached
        logger.debug(f"Describing {logical_name} on {url} (full={full})")

        definition = await self._fetch_definition(client, logical_name)
        attributes = [AttributeMetadata.from_remote(a) for a in definition.get("Attributes") or []]
        attributes = await self._load_option_sets(client, logical_name, attributes)
        primary_id = definition.get("PrimaryIdAttribute") or f"{logical_name}id"
        primary_name = definition.get("PrimaryNameAttribute") or None
        readable = [a for a in attributes if a.is_valid_for_read]

        if full:
            selected = readable
        else:
            collection = await self.get_collection_name(client, logical_name)
            score = await self.scorer.score(client, collection, attributes)
            if score.degraded:
                logger.info(f"Important fields for {logical_name} chosen from metadata only")
            selected = self.select_important(readable, score, primary_id, primary_name)

        described = [self.describe_attribute(a) for a in selected]
        description = TableDescription(
            logical_name=definition.get("LogicalName") or logical_name,
            display_name=localized_label(definition.get("DisplayName")) or logical_name,
            description=localized_label(definition.get("Description")),
            primary_id_attribute=primary_id,
            primary_name_attribute=primary_name,
            attributes=described,
            sample_record={a.logical_name: a.example_value for a in described},
        )
        self.cache.set_table_description(url, logical_name, description, full)
        return description

    async def describe_table_format(self, client: WebApiClient, table: str) -> TableFormatDescription:
        """Full schema with per-attribute formatting rules for building payloads."""
        description = await self.describe_table(client, table, full=True)
        formats = []
        for attr in description.attributes:
            rule = attr.rule
            options = attr.options or []
            targets = attr.targets or []
            formats.append(AttributeFormat(
                logical_name=attr.logical_name,
                display_name=attr.display_name,
                description=attr.description,
                type=attr.type,
                is_primary_id=attr.is_primary_id,
                is_primary_name=attr.is_primary_name,
                is_required=attr.is_required,
                is_read_only=attr.is_read_only,
                is_valid_for_create=attr.is_valid_for_create,
                is_valid_for_update=attr.is_valid_for_update,
                max_length=attr.max_length,
                min_value=attr.min_value,
                max_value=attr.max_value,
                precision=attr.precision,
                format=attr.format,
                option_set=attr.options if attr.type.is_choice else None,
                boolean_options=attr.options if attr.type is AttributeType.BOOLEAN else None,
                lookup_targets=attr.targets if attr.type.is_reference else None,
                format_guidance=rule.guidance,
                example_values=rule.examples(attr.logical_name.lower(), options, targets),
            ))
        return TableFormatDescription(
            logical_name=description.logical_name,
            display_name=description.display_name,
            description=description.description,
            primary_id_attribute=description.primary_id_attribute,
            primary_name_attribute=description.primary_name_attribute,
            required_attributes=[a.logical_name for a in description.caller_required_attributes()],
            creation_guidance=list(CREATION_GUIDANCE),
            attributes=formats,
        )

    async def get_important_columns(self, client: WebApiClient, table: str) -> list[str]:
        """Selectable (wire-safe) names of the important attributes, cached per user."""
        logical_name = await self.resolve_identifier(client, table)
        who = await client.ensure_initialized()
        url = client.instance_url
        if (cached := self.cache.get_important_columns(url, logical_name, who.user_id)) is not None:
            return cached
        description = await self.describe_table(client, logical_name, full=False)
        columns = [a.wire_name for a in description.attributes]
        self.cache.set_important_columns(url, logical_name, columns, who.user_id)
        return columns

    # ─────────────────────────────────────────────────────────────────
    # Cache administration
    # ─────────────────────────────────────────────────────────────────

    def clear_important_columns_cache(self) -> None:
        self.cache.clear_important_columns()

    def clear_table_descriptions_cache(self) -> None:
        self.cache.clear_table_descriptions()

    def sweep_expired(self) -> int:
        return self.cache.sweep_expired()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()
