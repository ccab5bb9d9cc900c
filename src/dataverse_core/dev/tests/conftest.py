"""Shared fixtures: a routed fake Web API, a controllable clock and schema builders."""

from __future__ import annotations

from typing import Any, Callable
from urllib.parse import unquote

import httpx
import orjson
import pytest

from dataverse_core.foundation.config import DataverseSettings, InstanceConfig
from dataverse_core.io.cache import MetadataCache
from dataverse_core.io.http import WebApiClient
from dataverse_core.schema import TableMetadata
from dataverse_core.services import MetadataResolver

INSTANCE_URL = "https://org.crm.dynamics.com"
API_PREFIX = "/api/data/v9.2/"
USER_ID = "11111111-1111-1111-1111-111111111111"
BUSINESS_UNIT_ID = "22222222-2222-2222-2222-222222222222"
ORG_ID = "33333333-3333-3333-3333-333333333333"

Reply = dict[str, Any] | list[Any] | httpx.Response | Callable[[httpx.Request], httpx.Response]


def json_response(status: int = 200, body: Any = None, headers: dict[str, str] | None = None) -> httpx.Response:
    content = orjson.dumps(body) if body is not None else b""
    return httpx.Response(status, content=content, headers={"Content-Type": "application/json", **(headers or {})})


class FakeDataverse:
    """Routes requests by method and the longest matching path prefix; records everything."""

    def __init__(self) -> None:
        self.routes: list[tuple[str, str, Reply]] = []
        self.requests: list[httpx.Request] = []
        self.add("GET", "WhoAmI", json_response(
            200,
            {"UserId": USER_ID, "BusinessUnitId": BUSINESS_UNIT_ID, "OrganizationId": ORG_ID},
            {"x-ms-dop-hint": "4"},
        ))

    def add(self, method: str, prefix: str, reply: Reply) -> None:
        # Later registrations win over earlier ones with the same prefix
        self.routes.insert(0, (method.upper(), prefix, reply))

    @staticmethod
    def target(request: httpx.Request) -> str:
        """Request path relative to the API root, percent-decoded, with its query."""
        raw = unquote(request.url.raw_path.decode())
        return raw[len(API_PREFIX):] if raw.startswith(API_PREFIX) else raw

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        target = self.target(request)
        matches = [r for r in self.routes if r[0] == request.method and target.startswith(r[1])]
        if not matches:
            return json_response(404, {"error": {"code": "0x80060888", "message": f"Resource not found: {target}"}})
        _, _, reply = max(matches, key=lambda r: len(r[1]))
        if callable(reply):
            return reply(request)
        if isinstance(reply, httpx.Response):
            return httpx.Response(reply.status_code, content=reply.content, headers=reply.headers)
        return json_response(200, reply)

    def calls(self, method: str, prefix: str = "") -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and self.target(r).startswith(prefix)]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ─────────────────────────────────────────────────────────────────────────────
# Schema builders
# ─────────────────────────────────────────────────────────────────────────────


def label(text: str) -> dict[str, Any]:
    return {"UserLocalizedLabel": {"Label": text}}


def option_set(*pairs: tuple[int, str]) -> dict[str, Any]:
    return {"Options": [{"Value": v, "Label": label(text)} for v, text in pairs]}


def attr(
    name: str,
    type_name: str = "StringType",
    *,
    display: str | None = None,
    primary_id: bool = False,
    primary_name: bool = False,
    required: bool = False,
    read: bool = True,
    create: bool = True,
    update: bool = True,
    targets: list[str] | None = None,
    options: dict[str, Any] | None = None,
    attribute_of: str | None = None,
) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "LogicalName": name,
        "DisplayName": label(display or name.title()),
        "AttributeTypeName": {"Value": type_name},
        "IsPrimaryId": primary_id,
        "IsPrimaryName": primary_name,
        "IsValidForRead": read,
        "IsValidForCreate": create,
        "IsValidForUpdate": update,
        "RequiredLevel": {"Value": "ApplicationRequired" if required else "None"},
        "AttributeOf": attribute_of,
    }
    if targets is not None:
        raw["Targets"] = targets
    if options is not None:
        raw["OptionSet"] = options
    return raw


def definition(
    logical_name: str, attributes: list[dict[str, Any]], *, primary_id: str | None = None, primary_name: str | None = None
) -> dict[str, Any]:
    return {
        "LogicalName": logical_name,
        "DisplayName": label(logical_name.title()),
        "Description": label(f"{logical_name} records"),
        "PrimaryIdAttribute": primary_id or f"{logical_name}id",
        "PrimaryNameAttribute": primary_name,
        "Attributes": attributes,
    }


def definition_path(logical_name: str) -> str:
    return f"EntityDefinitions(LogicalName='{logical_name}')?"


ACCOUNT_ATTRIBUTES: list[dict[str, Any]] = [
    attr("accountid", "UniqueidentifierType", primary_id=True, create=False, update=False),
    attr("name", primary_name=True, required=True, display="Account Name"),
    attr("accountnumber", display="Account Number"),
    attr("emailaddress1", display="Email"),
    attr("statecode", "StateType", options=option_set((0, "Active"), (1, "Inactive"))),
    attr("industrycode", "PicklistType", options=option_set((1, "Accounting"), (2, "Agriculture"))),
    attr("primarycontactid", "LookupType", targets=["contact"], display="Primary Contact"),
    attr("ownerid", "OwnerType", targets=["systemuser", "team"], required=True),
    attr("owneridname", read=True, create=False, update=False),
    attr("transactioncurrencyid", "LookupType", targets=["transactioncurrency"]),
    attr("revenue", "MoneyType", display="Annual Revenue"),
    attr("modifiedon", "DateTimeType", create=False, update=False),
]


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def fake() -> FakeDataverse:
    return FakeDataverse()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> MetadataCache:
    return MetadataCache(clock=clock)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def settings() -> DataverseSettings:
    return DataverseSettings()


@pytest.fixture
def client(fake: FakeDataverse, sleeper: SleepRecorder, settings: DataverseSettings) -> WebApiClient:
    return WebApiClient(
        InstanceConfig.create(INSTANCE_URL),
        lambda: "token-abc",
        settings=settings,
        transport=fake.transport,
        sleep=sleeper,
    )


@pytest.fixture
def resolver(cache: MetadataCache) -> MetadataResolver:
    return MetadataResolver(cache)


def seed_tables(cache: MetadataCache, tables: list[tuple[str, str]]) -> None:
    """Pre-populate the table list and both name mappings so no discovery call is needed."""
    for logical_name, collection in tables:
        cache.set_entity_set_name_bidirectional(INSTANCE_URL, logical_name, collection)
    cache.set_table_list(INSTANCE_URL, [
        TableMetadata(logical_name=l, display_name=l.title(), entity_set_name=c) for l, c in tables
    ])
