"""Tests for the Web API request client."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import INSTANCE_URL, ORG_ID, USER_ID, FakeDataverse, SleepRecorder, json_response
from dataverse_core.foundation.config import DataverseSettings, InstanceConfig, RetrySettings
from dataverse_core.foundation.errors import (
    AuthenticationError,
    ErrorCode,
    NetworkError,
    RateLimitExceeded,
    RemoteApiError,
    RequestTimeout,
)
from dataverse_core.io.http import WebApiClient
from dataverse_core.runtime.retry import NO_RETRY, ConstantBackoff, RetryPolicy, parse_retry_after


def make_client(fake: FakeDataverse, sleeper: SleepRecorder, **kwargs: object) -> WebApiClient:
    kwargs.setdefault("settings", DataverseSettings())
    kwargs.setdefault("sleep", sleeper)
    return WebApiClient(
        InstanceConfig.create(INSTANCE_URL),
        kwargs.pop("credential_provider", lambda: "token-abc"),  # type: ignore[arg-type]
        transport=fake.transport,
        **kwargs,  # type: ignore[arg-type]
    )


# ─────────────────────────────────────────────────────────────────────────────
# Retry bound
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_always_429_exhausts_retry_budget(fake: FakeDataverse, client: WebApiClient, sleeper: SleepRecorder) -> None:
    fake.add("GET", "accounts", json_response(429, {"error": {"message": "throttled"}}))

    with pytest.raises(RateLimitExceeded) as exc_info:
        await client.send("GET", "accounts")

    assert len(fake.calls("GET", "accounts")) == client.retry_policy.max_retries + 1 == 4
    assert sleeper.delays == [1.0, 2.0, 4.0]
    assert exc_info.value.code is ErrorCode.RATE_LIMITED
    assert exc_info.value.error.recoverable
    assert "after 4 attempts" in exc_info.value.message
    assert exc_info.value.context["attempts"] == 4


@pytest.mark.asyncio
async def test_429_then_200_returns_body(fake: FakeDataverse, client: WebApiClient, sleeper: SleepRecorder) -> None:
    replies = iter([json_response(429), json_response(200, {"value": [{"name": "Contoso"}]})])
    fake.add("GET", "accounts", lambda request: next(replies))

    text = await client.send("GET", "accounts")

    assert "Contoso" in text
    assert len(fake.calls("GET", "accounts")) == 2
    assert sleeper.delays == [1.0]


@pytest.mark.asyncio
async def test_retry_after_header_wins(fake: FakeDataverse, client: WebApiClient, sleeper: SleepRecorder) -> None:
    replies = iter([json_response(429, headers={"Retry-After": "7"}), json_response(200, {})])
    fake.add("GET", "accounts", lambda request: next(replies))

    await client.send("GET", "accounts")
    assert sleeper.delays == [7.0]


@pytest.mark.parametrize("value,expected", [
    ("7", 7.0),
    (" 0 ", 0.0),
    ("-3", 0.0),
    ("inf", None),
    ("-inf", None),
    ("nan", None),
    ("soon", None),
    (None, None),
])
def test_parse_retry_after(value: str | None, expected: float | None) -> None:
    assert parse_retry_after(value) == expected


@pytest.mark.asyncio
async def test_non_finite_retry_after_falls_back_to_backoff(
    fake: FakeDataverse, client: WebApiClient, sleeper: SleepRecorder
) -> None:
    replies = iter([json_response(429, headers={"Retry-After": "inf"}), json_response(200, {})])
    fake.add("GET", "accounts", lambda request: next(replies))

    await client.send("GET", "accounts")
    assert sleeper.delays == [1.0]


@pytest.mark.asyncio
async def test_retry_after_is_capped(fake: FakeDataverse, client: WebApiClient, sleeper: SleepRecorder) -> None:
    replies = iter([json_response(429, headers={"Retry-After": "86400"}), json_response(200, {})])
    fake.add("GET", "accounts", lambda request: next(replies))

    await client.send("GET", "accounts")
    assert sleeper.delays == [60.0]


@pytest.mark.asyncio
async def test_retry_after_cap_from_settings(fake: FakeDataverse, sleeper: SleepRecorder) -> None:
    client = make_client(fake, sleeper, settings=DataverseSettings(retry=RetrySettings(max_delay=5)))
    replies = iter([json_response(429, headers={"Retry-After": "30"}), json_response(200, {})])
    fake.add("GET", "accounts", lambda request: next(replies))

    await client.send("GET", "accounts")
    assert client.retry_policy.max_retry_after == 5
    assert sleeper.delays == [5.0]


@pytest.mark.asyncio
async def test_retry_budget_from_settings(fake: FakeDataverse, sleeper: SleepRecorder) -> None:
    client = make_client(fake, sleeper, settings=DataverseSettings(retry=RetrySettings(max_retries=1)))
    fake.add("GET", "accounts", json_response(429))

    with pytest.raises(RateLimitExceeded):
        await client.send("GET", "accounts")
    assert len(fake.calls("GET")) == 2


@pytest.mark.asyncio
async def test_no_retry_policy(fake: FakeDataverse, sleeper: SleepRecorder) -> None:
    client = make_client(fake, sleeper, retry_policy=NO_RETRY)
    fake.add("GET", "accounts", json_response(429))

    with pytest.raises(RateLimitExceeded):
        await client.send("GET", "accounts")
    assert len(fake.calls("GET")) == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_on_retry_callback(fake: FakeDataverse, sleeper: SleepRecorder) -> None:
    seen: list[tuple[int, float]] = []
    policy = RetryPolicy(max_retries=2, backoff=ConstantBackoff(0.5), on_retry=lambda a, d: seen.append((a, d)))
    client = make_client(fake, sleeper, retry_policy=policy)
    fake.add("GET", "accounts", json_response(429))

    with pytest.raises(RateLimitExceeded):
        await client.send("GET", "accounts")
    assert seen == [(0, 0.5), (1, 0.5)]


@pytest.mark.asyncio
async def test_other_errors_not_retried(fake: FakeDataverse, client: WebApiClient, sleeper: SleepRecorder) -> None:
    fake.add("GET", "accounts", json_response(500, {"error": {"message": "boom"}}))

    with pytest.raises(RemoteApiError) as exc_info:
        await client.send("GET", "accounts")

    assert exc_info.value.status == 500
    assert "boom" in exc_info.value.body
    assert len(fake.calls("GET", "accounts")) == 1
    assert sleeper.delays == []


@pytest.mark.parametrize("status", [401, 403])
@pytest.mark.asyncio
async def test_auth_statuses_raise_authentication_error(fake: FakeDataverse, client: WebApiClient, status: int) -> None:
    fake.add("GET", "accounts", json_response(status))

    with pytest.raises(AuthenticationError):
        await client.send("GET", "accounts")
    assert len(fake.calls("GET", "accounts")) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Credentials and headers
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fresh_credential_per_attempt(fake: FakeDataverse, sleeper: SleepRecorder) -> None:
    issued: list[str] = []

    async def provider() -> str:
        issued.append(f"token-{len(issued)}")
        return issued[-1]

    client = make_client(fake, sleeper, credential_provider=provider)
    replies = iter([json_response(429), json_response(429), json_response(200, {})])
    fake.add("GET", "accounts", lambda request: next(replies))

    await client.send("GET", "accounts")

    assert issued == ["token-0", "token-1", "token-2"]
    assert [r.headers["Authorization"] for r in fake.requests] == [f"Bearer {t}" for t in issued]


@pytest.mark.asyncio
async def test_credential_failure_wrapped(fake: FakeDataverse, sleeper: SleepRecorder) -> None:
    def provider() -> str:
        raise RuntimeError("interactive login cancelled")

    client = make_client(fake, sleeper, credential_provider=provider)
    with pytest.raises(AuthenticationError, match="interactive login cancelled") as exc_info:
        await client.send("GET", "accounts")
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert fake.requests == []


@pytest.mark.asyncio
async def test_standard_headers_and_body(fake: FakeDataverse, client: WebApiClient) -> None:
    fake.add("POST", "accounts", json_response(204))

    await client.send("POST", "accounts", {"name": "Contoso"}, {"Prefer": "return=minimal"})

    request = fake.requests[-1]
    assert str(request.url) == f"{INSTANCE_URL}/api/data/v9.2/accounts"
    assert request.headers["OData-MaxVersion"] == "4.0"
    assert request.headers["OData-Version"] == "4.0"
    assert request.headers["Accept"] == "application/json"
    assert request.headers["Prefer"] == "return=minimal"
    assert request.content == b'{"name":"Contoso"}'


@pytest.mark.asyncio
async def test_session_token_captured_and_sent_on_reads_only(fake: FakeDataverse, client: WebApiClient) -> None:
    fake.add("POST", "accounts", json_response(204, headers={"x-ms-session-token": "s-1"}))
    fake.add("GET", "accounts", json_response(200, {"value": []}))
    fake.add("PATCH", "accounts", json_response(204))

    first_get = await client.request("GET", "accounts")
    assert "MSCRM.SessionToken" not in first_get.request.headers

    await client.send("POST", "accounts", {"name": "A"})
    await client.send("GET", "accounts")
    await client.send("PATCH", "accounts(1)", {"name": "B"})

    assert client.session_token == "s-1"
    assert fake.calls("GET", "accounts")[-1].headers["MSCRM.SessionToken"] == "s-1"
    assert "MSCRM.SessionToken" not in fake.calls("PATCH")[0].headers


# ─────────────────────────────────────────────────────────────────────────────
# Transport failures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_timeout_maps_to_request_timeout(fake: FakeDataverse, client: WebApiClient) -> None:
    def hang(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    fake.add("GET", "accounts", hang)
    with pytest.raises(RequestTimeout) as exc_info:
        await client.send("GET", "accounts")
    assert exc_info.value.error.is_retryable
    assert len(fake.calls("GET")) == 1


@pytest.mark.asyncio
async def test_connect_error_maps_to_network_error(fake: FakeDataverse, client: WebApiClient) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fake.add("GET", "accounts", refuse)
    with pytest.raises(NetworkError):
        await client.send("GET", "accounts")


@pytest.mark.asyncio
async def test_cancellation_interrupts_backoff(fake: FakeDataverse) -> None:
    client = make_client(fake, SleepRecorder(), sleep=asyncio.sleep)
    fake.add("GET", "accounts", json_response(429, headers={"Retry-After": "30"}))

    task = asyncio.create_task(client.send("GET", "accounts"))
    while not fake.requests:
        await asyncio.sleep(0)
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(fake.calls("GET", "accounts")) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Identity helpers
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_initialize_reads_who_am_i(fake: FakeDataverse, client: WebApiClient) -> None:
    who = await client.initialize()

    assert who.user_id == USER_ID
    assert client.organization_id == ORG_ID
    assert client.degree_of_parallelism == 4


@pytest.mark.asyncio
async def test_ensure_initialized_calls_once(fake: FakeDataverse, client: WebApiClient) -> None:
    await asyncio.gather(client.ensure_initialized(), client.ensure_initialized())
    await client.ensure_initialized()
    assert len(fake.calls("GET", "WhoAmI")) == 1


@pytest.mark.asyncio
async def test_base_currency_is_fetched_once(fake: FakeDataverse, client: WebApiClient) -> None:
    fake.add("GET", f"organizations({ORG_ID})", {"_basecurrencyid_value": "cur-1"})

    assert await client.get_organization_base_currency_id() == "cur-1"
    assert await client.get_organization_base_currency_id() == "cur-1"
    assert len(fake.calls("GET", "organizations")) == 1


@pytest.mark.asyncio
async def test_retrieve_by_attribute_escapes_literal(fake: FakeDataverse, client: WebApiClient) -> None:
    fake.add("GET", "contacts?", {"value": [{"contactid": "c-1"}]})

    rows = await client.retrieve_by_attribute("contacts", "fullname", "Dan O'Neil", select=["contactid"])

    assert rows == [{"contactid": "c-1"}]
    request = fake.calls("GET", "contacts")[0]
    assert request.url.params["$filter"] == "fullname eq 'Dan O''Neil'"
    assert request.url.params["$top"] == "2"
    assert request.url.params["$select"] == "contactid"


@pytest.mark.asyncio
async def test_context_manager_closes(fake: FakeDataverse, sleeper: SleepRecorder) -> None:
    async with make_client(fake, sleeper) as client:
        await client.send("GET", "WhoAmI")
    assert client._http.is_closed
