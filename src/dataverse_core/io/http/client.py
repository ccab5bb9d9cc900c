"""Resilient Web API client.

Authenticated JSON-over-HTTP calls against one Dataverse instance with:
- A fresh bearer credential per attempt (never cached here)
- Bounded retry on HTTP 429 only, honoring ``Retry-After``
- Session-affinity token capture and propagation on reads
- Typed errors for every other failure

Example:
    >>> async with WebApiClient(InstanceConfig.create("https://org.crm.dynamics.com"), get_token) as client:
    ...     who = await client.initialize()
    ...     text = await client.send("GET", "accounts?$top=1")
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import quote

import httpx
import orjson

from dataverse_core.foundation.config import DataverseSettings, InstanceConfig, get_settings
from dataverse_core.foundation.errors import (
    AuthenticationError,
    DataverseException,
    NetworkError,
    NotFound,
    RateLimitExceeded,
    RemoteApiError,
    RequestTimeout,
)
from dataverse_core.runtime.observability import get_logger
from dataverse_core.runtime.retry import RetryPolicy, parse_retry_after
from dataverse_core.schema import WhoAmI
from dataverse_core.utils.guid import escape_odata_value

# Returns a bearer token, sync or async. Called once per attempt.
CredentialProvider = Callable[[], str | Awaitable[str]]
SleepFn = Callable[[float], Awaitable[None]]

SESSION_TOKEN_REQUEST_HEADER = "MSCRM.SessionToken"
SESSION_TOKEN_RESPONSE_HEADER = "x-ms-session-token"
DOP_HINT_HEADER = "x-ms-dop-hint"

_BASE_HEADERS: dict[str, str] = {
    "OData-MaxVersion": "4.0",
    "OData-Version": "4.0",
    "Accept": "application/json",
    "Content-Type": "application/json",
}


def parse_json(text: str) -> Any:
    """Decode a response body; empty bodies (204) decode to an empty dict."""
    return orjson.loads(text) if text.strip() else {}


class WebApiClient:
    """Request client bound to one remote instance.

    Args:
        instance: Validated instance URL and API version
        credential_provider: Bearer token source, sync or async
        settings: Timeouts and retry defaults (process settings when omitted)
        retry_policy: Overrides the policy derived from ``settings.retry``
        transport: Custom httpx transport (``httpx.MockTransport`` in tests)
        sleep: Backoff sleep, ``asyncio.sleep`` by default
    """

    def __init__(
        self,
        instance: InstanceConfig,
        credential_provider: CredentialProvider,
        *,
        settings: DataverseSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        settings = settings or get_settings()
        self.instance = instance
        self._credential_provider = credential_provider
        self._policy = retry_policy or RetryPolicy.from_settings(settings.retry)
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            transport=transport,
            timeout=settings.http.timeout,
            headers={"User-Agent": settings.http.user_agent},
        )
        self._log = get_logger("dataverse_core.http", instance=instance.url)
        self._init_lock = asyncio.Lock()
        self._who: WhoAmI | None = None
        self._base_currency_id: str | None = None
        self.session_token: str | None = None
        self.degree_of_parallelism: int = 1

    # ─────────────────────────────────────────────────────────────────
    # Identity
    # ─────────────────────────────────────────────────────────────────

    @property
    def instance_url(self) -> str:
        return self.instance.url

    @property
    def base_url(self) -> str:
        return self.instance.base_url

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    @property
    def who(self) -> WhoAmI | None:
        return self._who

    @property
    def user_id(self) -> str | None:
        return self._who.user_id if self._who else None

    @property
    def business_unit_id(self) -> str | None:
        return self._who.business_unit_id if self._who else None

    @property
    def organization_id(self) -> str | None:
        return self._who.organization_id if self._who else None

    async def initialize(self) -> WhoAmI:
        """Call WhoAmI and remember the caller's user, business unit and organization."""
        response = await self.request("GET", "WhoAmI", operation="initialize")
        data = parse_json(response.text)
        self._who = WhoAmI(
            user_id=data.get("UserId", ""),
            business_unit_id=data.get("BusinessUnitId", ""),
            organization_id=data.get("OrganizationId", ""),
        )
        if (hint := response.headers.get(DOP_HINT_HEADER)) and hint.strip().isdigit():
            self.degree_of_parallelism = int(hint)
        self._log.info("connected", user_id=self._who.user_id, organization_id=self._who.organization_id)
        return self._who

    async def ensure_initialized(self) -> WhoAmI:
        async with self._init_lock:
            if self._who is None:
                return await self.initialize()
            return self._who

    # ─────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────

    def _url(self, path: str) -> str:
        return path if path.startswith(("http://", "https://")) else f"{self.base_url}{path.lstrip('/')}"

    async def _credential(self) -> str:
        try:
            token = self._credential_provider()
            if inspect.isawaitable(token):
                token = await token
        except DataverseException:
            raise
        except Exception as e:
            raise AuthenticationError(f"Failed to acquire access token: {e}", operation="authenticate") from e
        if not token:
            raise AuthenticationError("Credential provider returned an empty token", operation="authenticate")
        return token

    def _headers(self, method: str, token: str, extra: Mapping[str, str] | None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {token}", **_BASE_HEADERS}
        if self.session_token and method == "GET":
            headers[SESSION_TOKEN_REQUEST_HEADER] = self.session_token
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        extra_headers: Mapping[str, str] | None = None,
        *,
        operation: str = "send",
    ) -> httpx.Response:
        """Send one logical request, retrying rate-limited attempts. Returns the 2xx response."""
        method = method.upper()
        url = self._url(path)
        content = orjson.dumps(body) if body is not None else None
        attempt = 0
        while True:
            # Cancellation checkpoint so a cancelled caller never starts another attempt
            await asyncio.sleep(0)
            headers = self._headers(method, await self._credential(), extra_headers)
            try:
                response = await self._http.request(method, url, headers=headers, content=content)
            except httpx.TimeoutException as e:
                raise RequestTimeout(
                    f"Request timed out: {method} {path}", operation=operation, method=method, path=path
                ) from e
            except httpx.TransportError as e:
                raise NetworkError(
                    f"Network error on {method} {path}: {e}", operation=operation, method=method, path=path
                ) from e

            if token := response.headers.get(SESSION_TOKEN_RESPONSE_HEADER):
                self.session_token = token

            if response.status_code == 429:
                if not self._policy.should_retry(attempt):
                    raise RateLimitExceeded(
                        f"Rate limit exceeded after {self._policy.max_attempts} attempts: {method} {path}",
                        operation=operation,
                        method=method,
                        path=path,
                        attempts=self._policy.max_attempts,
                    )
                delay = self._policy.get_delay(attempt, parse_retry_after(response.headers.get("Retry-After")))
                self._log.warning("rate limited, retrying", attempt=attempt + 1, delay=delay, path=path)
                if self._policy.on_retry is not None:
                    self._policy.on_retry(attempt, delay)
                await self._sleep(delay)
                attempt += 1
                continue

            if response.status_code in (401, 403):
                raise AuthenticationError(
                    f"Dataverse rejected the credential with status {response.status_code}: {response.text}",
                    operation=operation,
                    status=response.status_code,
                    path=path,
                )
            if not response.is_success:
                raise RemoteApiError(response.status_code, response.text, operation=operation, method=method, path=path)

            self._log.debug("request completed", method=method, path=path, status=response.status_code)
            return response

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        extra_headers: Mapping[str, str] | None = None,
        *,
        operation: str = "send",
    ) -> str:
        """Like ``request`` but returns the raw response text."""
        response = await self.request(method, path, body, extra_headers, operation=operation)
        return response.text

    async def get_json(
        self, path: str, extra_headers: Mapping[str, str] | None = None, *, operation: str = "send"
    ) -> Any:
        return parse_json(await self.send("GET", path, None, extra_headers, operation=operation))

    # ─────────────────────────────────────────────────────────────────
    # Helpers used by resolvers and executors
    # ─────────────────────────────────────────────────────────────────

    async def retrieve_by_attribute(
        self,
        entity_set_name: str,
        attribute: str,
        value: str,
        *,
        select: list[str] | None = None,
        top: int = 2,
        extra_headers: Mapping[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """Records whose ``attribute`` equals ``value``; ``top=2`` is enough to detect ambiguity."""
        literal = quote(escape_odata_value(value), safe="'")
        path = f"{entity_set_name}?$filter={attribute} eq '{literal}'&$top={top}"
        if select:
            path += f"&$select={','.join(select)}"
        data = await self.get_json(path, extra_headers, operation="retrieve_by_attribute")
        return list(data.get("value") or [])

    async def get_organization_base_currency_id(self) -> str:
        if self._base_currency_id is None:
            who = await self.ensure_initialized()
            data = await self.get_json(
                f"organizations({who.organization_id})?$select=_basecurrencyid_value",
                operation="get_organization_base_currency_id",
            )
            if not (currency_id := data.get("_basecurrencyid_value")):
                raise NotFound(
                    "Failed to retrieve organization's base currency.",
                    operation="get_organization_base_currency_id",
                    organization_id=who.organization_id,
                )
            self._base_currency_id = currency_id
        return self._base_currency_id

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> WebApiClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"WebApiClient({self.instance_url!r})"
