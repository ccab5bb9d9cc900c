"""Read queries: keyword search, record retrieval and stored/ad-hoc FetchXML."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import orjson

from dataverse_core.foundation.errors import AmbiguousMatch, InvalidQuery, NotFound, RemoteApiError
from dataverse_core.io.http import parse_json
from dataverse_core.schema import PredefinedQuery, QueryRecord, QueryResult, SearchResponse, SearchResult
from dataverse_core.utils.guid import escape_odata_value, find_guids, is_guid

from .metadata import MetadataResolver

if TYPE_CHECKING:
    from dataverse_core.io.http import WebApiClient

logger = logging.getLogger("dataverse_core.query")

FORMATTED_VALUES_HEADERS: dict[str, str] = {
    "Prefer": 'odata.include-annotations="OData.Community.Display.V1.FormattedValue"',
}
SEARCH_TYPE_CODE_KEY = "@search.objecttypecode"

_ENTITY_RE = re.compile(r"""<entity\s+name=['"]([^'"]+)['"]""", re.IGNORECASE)
_API_SUFFIX_RE = re.compile(r"/api/data/v[0-9.]+/?$")


def deep_link(instance_url: str, table: str, record_id: str) -> str:
    """Browser URL of a record in the model-driven app."""
    org = _API_SUFFIX_RE.sub("", instance_url).rstrip("/")
    return f"{org}/main.aspx?etn={table}&pagetype=entityrecord&id={record_id}"


def _fetchxml_hint(body: str) -> str:
    text = body.lower()
    if "invalid fetchxml" in text:
        return "The FetchXML syntax is invalid"
    if "does not exist" in text or "not found" in text:
        return "One or more entity or attribute names in the FetchXML do not exist"
    if "attribute" in text:
        return "Invalid attribute name or attribute reference"
    if "entity" in text:
        return "Invalid entity name or entity reference"
    return "Please verify the FetchXML structure and all entity/attribute names"


class QueryExecutor:
    """Builds read requests from resolved metadata and shapes the results."""

    __slots__ = ("metadata",)

    deep_link = staticmethod(deep_link)

    def __init__(self, metadata: MetadataResolver) -> None:
        self.metadata = metadata

    async def search(
        self,
        client: WebApiClient,
        term: str,
        table_filter: str | list[str] | None = None,
        top: int = 10,
    ) -> SearchResponse:
        """Relevance search, optionally restricted to tables (logical or collection names)."""
        body: dict[str, Any] = {"search": term, "top": top}
        if table_filter:
            tables = [table_filter] if isinstance(table_filter, str) else list(table_filter)
            entities = []
            for table in tables:
                logical_name = await self.metadata.resolve_identifier(client, table)
                columns = await self.metadata.get_important_columns(client, logical_name)
                entities.append({
                    "name": logical_name,
                    "selectcolumns": columns or None,
                    "searchcolumns": None,
                    "filter": None,
                })
            body["entities"] = orjson.dumps(entities).decode()

        logger.debug(f"Searching {term!r} (tables={table_filter or 'all'}, top={top})")
        data = parse_json(await client.send("POST", "searchquery", body, operation="search"))
        if not (inner := data.get("response")):
            return SearchResponse()
        results = orjson.loads(inner) if isinstance(inner, str) else inner
        values = results.get("Value") or []

        hits = []
        for raw in values:
            attributes = raw.get("Attributes") or {}
            primary = next((v for k, v in attributes.items() if k != SEARCH_TYPE_CODE_KEY), None)
            table, record_id = raw.get("EntityName") or "", raw.get("Id") or ""
            hits.append(SearchResult(
                table_name=table,
                record_id=record_id,
                primary_name=str(primary) if primary is not None else "",
                attributes=attributes,
                deep_link=deep_link(client.instance_url, table, record_id),
            ))
        return SearchResponse(results=hits, total_record_count=results.get("Count") or 0)

    async def retrieve_record(
        self, client: WebApiClient, table: str, record_id: str, all_columns: bool = False
    ) -> dict[str, Any]:
        """One record by GUID or by exact primary name, with formatted-value annotations."""
        logical_name = await self.metadata.resolve_identifier(client, table)
        collection = await self.metadata.get_collection_name(client, logical_name)
        select = "*"
        if not all_columns and (columns := await self.metadata.get_important_columns(client, logical_name)):
            select = ",".join(columns)

        if is_guid(record_id):
            try:
                return parse_json(await client.send(
                    "GET", f"{collection}({record_id})?$select={select}", None, FORMATTED_VALUES_HEADERS,
                    operation="retrieve_record",
                ))
            except RemoteApiError as e:
                if e.status == 404:
                    raise NotFound(
                        f"No record with id {record_id} in table '{logical_name}'",
                        operation="retrieve_record", table=logical_name, record_id=record_id,
                    ) from e
                raise

        description = await self.metadata.describe_table(client, logical_name, full=False)
        if not (name_attr := description.primary_name_attribute):
            raise NotFound(
                f"Table '{logical_name}' has no primary name attribute. Use the record GUID instead.",
                operation="retrieve_record", table=logical_name,
            )
        literal = quote(escape_odata_value(record_id), safe="'")
        data = parse_json(await client.send(
            "GET",
            f"{collection}?$filter={name_attr} eq '{literal}'&$select={select}&$top=2",
            None,
            FORMATTED_VALUES_HEADERS,
            operation="retrieve_record",
        ))
        records = data.get("value") or []
        if not records:
            raise NotFound(
                f"No record found with {name_attr} = '{record_id}' in table '{logical_name}'",
                operation="retrieve_record", table=logical_name, value=record_id,
            )
        if len(records) > 1:
            raise AmbiguousMatch(
                f"Multiple records found with {name_attr} = '{record_id}' in table '{logical_name}'. "
                "Use the unique GUID instead.",
                operation="retrieve_record", table=logical_name, value=record_id,
            )
        return records[0]

    # ─────────────────────────────────────────────────────────────────
    # Stored queries
    # ─────────────────────────────────────────────────────────────────

    async def _user_role_ids(self, client: WebApiClient, user_id: str) -> set[str]:
        try:
            data = await client.get_json(
                f"systemusers({user_id})/systemuserroles_association?$select=roleid,name",
                operation="get_predefined_queries",
            )
        except RemoteApiError as e:
            logger.debug(f"Role lookup failed, listing views without role filtering: {e.message}")
            return set()
        return {str(r["roleid"]).lower() for r in data.get("value") or [] if r.get("roleid")}

    async def get_predefined_queries(self, client: WebApiClient, table: str) -> list[PredefinedQuery]:
        """System views visible to the user's roles, then personal views."""
        logical_name = await self.metadata.resolve_identifier(client, table)
        who = await client.ensure_initialized()
        roles = await self._user_role_ids(client, who.user_id)
        queries: list[PredefinedQuery] = []

        saved = await client.get_json(
            f"savedqueries?$filter=returnedtypecode eq '{logical_name}' and statecode eq 0"
            "&$select=savedqueryid,name,returnedtypecode,roledisplayconditionsxml",
            operation="get_predefined_queries",
        )
        for view in saved.get("value") or []:
            required_roles = find_guids(view.get("roledisplayconditionsxml") or "")
            if roles and required_roles and not (required_roles & roles):
                continue
            queries.append(PredefinedQuery(
                id=view.get("savedqueryid", ""), type="savedquery", name=view.get("name") or "Unnamed View"
            ))

        personal = await client.get_json(
            f"userqueries?$filter=returnedtypecode eq '{logical_name}' and statecode eq 0"
            "&$select=userqueryid,name,returnedtypecode",
            operation="get_predefined_queries",
        )
        for view in personal.get("value") or []:
            queries.append(PredefinedQuery(
                id=view.get("userqueryid", ""), type="userquery", name=view.get("name") or "Unnamed Personal View"
            ))
        logger.info(f"Found {len(queries)} predefined queries for {logical_name}")
        return queries

    async def _stored_query_by_id(self, client: WebApiClient, query_id: str) -> dict[str, Any]:
        for entity_set in ("savedqueries", "userqueries"):
            try:
                return await client.get_json(
                    f"{entity_set}({query_id})?$select=fetchxml,returnedtypecode",
                    operation="run_predefined_query",
                )
            except RemoteApiError as e:
                if e.status != 404:
                    raise
        raise NotFound(f"No predefined query with id {query_id}", operation="run_predefined_query", query=query_id)

    async def _stored_query_by_name(self, client: WebApiClient, name: str, logical_name: str) -> dict[str, Any]:
        literal = quote(escape_odata_value(name), safe="'")
        for entity_set, id_attr in (("savedqueries", "savedqueryid"), ("userqueries", "userqueryid")):
            data = await client.get_json(
                f"{entity_set}?$filter=name eq '{literal}' and returnedtypecode eq '{logical_name}'"
                f"&$select={id_attr},fetchxml,returnedtypecode",
                operation="run_predefined_query",
            )
            if rows := data.get("value"):
                return rows[0]
        raise NotFound(
            f"Query with name '{name}' not found for table '{logical_name}'",
            operation="run_predefined_query", query=name, table=logical_name,
        )

    async def run_predefined_query(
        self, client: WebApiClient, query_id_or_name: str, table: str | None = None
    ) -> QueryResult:
        """Execute a system or personal view by id, or by name within ``table``."""
        if is_guid(query_id_or_name):
            stored = await self._stored_query_by_id(client, query_id_or_name)
        else:
            if not table:
                raise InvalidQuery(
                    "Table name is required when querying by name instead of ID",
                    operation="run_predefined_query", query=query_id_or_name,
                )
            logical_name = await self.metadata.resolve_identifier(client, table)
            stored = await self._stored_query_by_name(client, query_id_or_name, logical_name)
        if not (fetch_xml := stored.get("fetchxml")):
            raise InvalidQuery(
                f"Predefined query '{query_id_or_name}' has no FetchXML",
                operation="run_predefined_query", query=query_id_or_name,
            )
        return await self.run_structured_query(client, fetch_xml, stored.get("returnedtypecode") or table)

    async def run_structured_query(self, client: WebApiClient, query: str, table: str | None = None) -> QueryResult:
        """Execute FetchXML. The table defaults to the query's ``<entity name=...>``."""
        if not table:
            if not (match := _ENTITY_RE.search(query)):
                raise InvalidQuery(
                    "Could not determine table name from FetchXML. Please provide the table name.",
                    operation="run_structured_query",
                )
            table = match.group(1)
        logical_name = await self.metadata.resolve_identifier(client, table)
        collection = await self.metadata.get_collection_name(client, logical_name)

        try:
            text = await client.send(
                "GET", f"{collection}?fetchXml={quote(query, safe='')}", None, FORMATTED_VALUES_HEADERS,
                operation="run_structured_query",
            )
        except RemoteApiError as e:
            if e.status == 400:
                raise InvalidQuery(
                    f"Invalid FetchXML query: {_fetchxml_hint(e.body)}. Please check your FetchXML syntax "
                    "and ensure all entity and attribute names are correct.",
                    operation="run_structured_query",
                    details=e.body,
                    table=logical_name,
                ) from e
            raise

        rows = parse_json(text).get("value")
        if not isinstance(rows, list):
            return QueryResult(table_name=logical_name)
        description = await self.metadata.describe_table(client, logical_name, full=False)
        records = []
        for row in rows:
            record_id = str(row.get(description.primary_id_attribute) or "")
            records.append(QueryRecord(
                record_id=record_id,
                attributes=row,
                deep_link=deep_link(client.instance_url, logical_name, record_id),
            ))
        logger.info(f"FetchXML query returned {len(records)} records from {logical_name}")
        return QueryResult(table_name=logical_name, records=records, total_record_count=len(records))
