"""Downstream facade.

``DataverseCore`` wires one metadata cache into the resolvers and executors
and exposes every operation the outer layer calls. Operations take the
instance handle (a ``WebApiClient``) first, so one core serves many
instances and users.

Example:
    >>> core = DataverseCore()
    >>> async with core.connect("https://org.crm.dynamics.com", get_token) as client:
    ...     tables = await core.list_tables(client)
    ...     record_id = await core.create_record(client, "account", {"name": "Contoso"})
"""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from dataverse_core.foundation.config import DataverseSettings, InstanceConfig, get_settings
from dataverse_core.foundation.errors import RemoteApiError
from dataverse_core.io.cache import CacheStats, MetadataCache
from dataverse_core.io.http import CredentialProvider, WebApiClient
from dataverse_core.runtime.observability import get_logger
from dataverse_core.schema import (
    PredefinedQuery,
    QueryResult,
    SearchResponse,
    TableDescription,
    TableFormatDescription,
    TableMetadata,
    WhoAmI,
)
from dataverse_core.services import ImportantFieldsScorer, MetadataResolver, PayloadResolver, QueryExecutor

ENTITY_ID_HEADER = "OData-EntityId"

log = get_logger("dataverse_core.core")


def parse_entity_id(header: str | None) -> str | None:
    """``https://org/api/data/v9.2/accounts(<id>)`` -> ``<id>``."""
    if not header or "(" not in header:
        return None
    return header.rsplit("(", 1)[1].split(")", 1)[0] or None


class DataverseCore:
    """Metadata resolution, payload normalization and queries over a shared cache.

    Args:
        cache: Metadata cache shared by every instance this core serves
        settings: Cache TTLs, HTTP and retry defaults for ``connect``
        scorer: Important-fields heuristic override
    """

    def __init__(
        self,
        cache: MetadataCache | None = None,
        *,
        settings: DataverseSettings | None = None,
        scorer: ImportantFieldsScorer | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.cache = cache or MetadataCache(self.settings.cache)
        self.metadata = MetadataResolver(self.cache, scorer)
        self.payload = PayloadResolver(self.metadata)
        self.query = QueryExecutor(self.metadata)

    def connect(
        self,
        instance: InstanceConfig | str,
        credential_provider: CredentialProvider,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> WebApiClient:
        """Build an instance handle using this core's settings."""
        if isinstance(instance, str):
            instance = InstanceConfig.create(instance, self.settings.http.api_version)
        return WebApiClient(instance, credential_provider, settings=self.settings, transport=transport, **kwargs)

    # ─────────────────────────────────────────────────────────────────
    # Metadata
    # ─────────────────────────────────────────────────────────────────

    async def who_am_i(self, client: WebApiClient) -> WhoAmI:
        return await client.ensure_initialized()

    async def list_tables(self, client: WebApiClient) -> list[TableMetadata]:
        return await self.metadata.list_tables(client)

    async def resolve_identifier(self, client: WebApiClient, raw: str) -> str:
        return await self.metadata.resolve_identifier(client, raw)

    async def get_collection_name(self, client: WebApiClient, table: str) -> str:
        return await self.metadata.get_collection_name(client, table)

    async def describe_table(self, client: WebApiClient, table: str, full: bool = False) -> TableDescription:
        return await self.metadata.describe_table(client, table, full)

    async def describe_table_format(self, client: WebApiClient, table: str) -> TableFormatDescription:
        return await self.metadata.describe_table_format(client, table)

    async def get_important_columns(self, client: WebApiClient, table: str) -> list[str]:
        return await self.metadata.get_important_columns(client, table)

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    async def search(
        self, client: WebApiClient, term: str, table_filter: str | list[str] | None = None, top: int = 10
    ) -> SearchResponse:
        return await self.query.search(client, term, table_filter, top)

    async def retrieve_record(
        self, client: WebApiClient, table: str, record_id: str, all_columns: bool = False
    ) -> dict[str, Any]:
        return await self.query.retrieve_record(client, table, record_id, all_columns)

    async def get_predefined_queries(self, client: WebApiClient, table: str) -> list[PredefinedQuery]:
        return await self.query.get_predefined_queries(client, table)

    async def run_predefined_query(
        self, client: WebApiClient, query_id_or_name: str, table: str | None = None
    ) -> QueryResult:
        return await self.query.run_predefined_query(client, query_id_or_name, table)

    async def run_structured_query(self, client: WebApiClient, query: str, table: str | None = None) -> QueryResult:
        return await self.query.run_structured_query(client, query, table)

    # ─────────────────────────────────────────────────────────────────
    # Mutations (never cached)
    # ─────────────────────────────────────────────────────────────────

    async def create_record(self, client: WebApiClient, table: str, data: Mapping[str, Any]) -> str:
        """Create a record and return its id."""
        with log.scope(operation="create_record"):
            logical_name = await self.metadata.resolve_identifier(client, table)
            payload = await self.payload.build_create_payload(client, logical_name, data)
            collection = await self.metadata.get_collection_name(client, logical_name)
            response = await client.request("POST", collection, payload, operation="create_record")
            if (record_id := parse_entity_id(response.headers.get(ENTITY_ID_HEADER))) is None:
                raise RemoteApiError(
                    response.status_code,
                    f"Create response carried no {ENTITY_ID_HEADER} header",
                    operation="create_record",
                    table=logical_name,
                )
            log.info("record created", table=logical_name, record_id=record_id)
            return record_id

    async def update_record(
        self, client: WebApiClient, table: str, record_id: str, data: Mapping[str, Any]
    ) -> None:
        with log.scope(operation="update_record"):
            logical_name = await self.metadata.resolve_identifier(client, table)
            payload = await self.payload.build_update_payload(client, logical_name, data)
            collection = await self.metadata.get_collection_name(client, logical_name)
            await client.request("PATCH", f"{collection}({record_id})", payload, operation="update_record")
            log.info("record updated", table=logical_name, record_id=record_id)

    # ─────────────────────────────────────────────────────────────────
    # Cache administration
    # ─────────────────────────────────────────────────────────────────

    def clear_important_columns_cache(self) -> None:
        self.metadata.clear_important_columns_cache()

    def clear_table_descriptions_cache(self) -> None:
        self.metadata.clear_table_descriptions_cache()

    def sweep_expired_cache(self) -> int:
        return self.metadata.sweep_expired()

    def cache_stats(self) -> CacheStats:
        return self.metadata.cache_stats()
