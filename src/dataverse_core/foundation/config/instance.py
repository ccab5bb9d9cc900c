"""Remote instance configuration and connection-string parsing.

``InstanceConfig`` normalizes an environment URL and Web API version into the
base URL every request is issued against. ``parse_connection_string`` reads
XRM-tooling style strings (``AuthType=OAuth;Url=...;ClientId=...``).
All validation failures raise ConfigurationError.
"""

from __future__ import annotations

import re
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, computed_field

from dataverse_core.foundation.errors import ConfigurationError
from dataverse_core.utils.guid import is_guid

_VERSION_RE = re.compile(r"^\d+\.\d+$")

LoginPrompt = Literal["Auto", "Always", "Never"]


def _validate_http_url(value: str, label: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"Invalid {label} format: '{value}'", operation="configure", value=value)
    return value


class InstanceConfig(BaseModel):
    """Validated remote instance handle configuration.

    Example:
        >>> cfg = InstanceConfig.create("https://org.crm.dynamics.com/", "v9.2")
        >>> cfg.base_url
        'https://org.crm.dynamics.com/api/data/v9.2/'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    api_version: str = "9.2"

    @classmethod
    def create(cls, url: str, api_version: str | None = None) -> InstanceConfig:
        """Normalize and validate; raises ConfigurationError instead of ValidationError."""
        url = (url or "").strip().rstrip("/")
        _validate_http_url(url, "instance URL")
        version = re.sub(r"^v", "", (api_version or "9.2").strip(), flags=re.IGNORECASE)
        if not _VERSION_RE.match(version):
            raise ConfigurationError(
                f"Invalid API version '{api_version}'. Expected a version like '9.2' or 'v9.2'.",
                operation="configure",
                value=api_version,
            )
        return cls(url=url, api_version=version)

    @computed_field
    @property
    def base_url(self) -> str:
        return f"{self.url}/api/data/v{self.api_version}/"


class ConnectionParams(BaseModel):
    """Parsed connection string."""

    model_config = ConfigDict(frozen=True)

    auth_type: str
    url: str
    client_id: str
    redirect_uri: str
    username: str | None = None
    password: str | None = None
    login_prompt: LoginPrompt = "Auto"
    require_new_instance: bool | None = None
    token_cache_store_path: str | None = None

    def to_instance_config(self, api_version: str | None = None) -> InstanceConfig:
        return InstanceConfig.create(self.url, api_version)


# Accepted aliases per field, lowercase
_ALIASES: dict[str, tuple[str, ...]] = {
    "auth_type": ("authtype", "authenticationtype"),
    "url": ("url", "serviceuri", "service uri", "server"),
    "client_id": ("clientid", "appid", "applicationid"),
    "redirect_uri": ("redirecturi", "replyurl"),
    "username": ("username", "user name", "userid", "user id"),
    "password": ("password",),
    "login_prompt": ("loginprompt",),
    "require_new_instance": ("requirenewinstance",),
    "token_cache_store_path": ("tokencachestorepath",),
}

_REQUIRED: dict[str, str] = {
    "auth_type": "'AuthType' or 'AuthenticationType'",
    "url": "'Url', 'ServiceUri', or 'Server'",
    "client_id": "'ClientId', 'AppId', or 'ApplicationId'",
    "redirect_uri": "'RedirectUri' or 'ReplyUrl'",
}


def parse_connection_string(connection_string: str) -> ConnectionParams:
    """Parse ``Key1=Value1;Key2=Value2`` with case-insensitive keys."""
    if not connection_string or not connection_string.strip():
        raise ConfigurationError("Connection string cannot be empty", operation="parse_connection_string")

    raw: dict[str, str] = {}
    for part in connection_string.split(";"):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise ConfigurationError(
                f"Invalid connection string format: missing '=' in '{part}'",
                operation="parse_connection_string",
            )
        raw[key.strip().lower()] = value.strip()

    fields: dict[str, str] = {}
    for name, aliases in _ALIASES.items():
        for alias in aliases:
            if alias in raw:
                fields[name] = raw[alias]
                break

    for name, label in _REQUIRED.items():
        if not fields.get(name):
            raise ConfigurationError(
                f"Connection string must include {label}",
                operation="parse_connection_string",
            )

    login_prompt: LoginPrompt = "Auto"
    if prompt := fields.get("login_prompt"):
        normalized = {"auto": "Auto", "always": "Always", "never": "Never"}.get(prompt.lower())
        if normalized is None:
            raise ConfigurationError(
                f"Invalid LoginPrompt value: '{prompt}'. Valid values are: Auto, Always, Never",
                operation="parse_connection_string",
            )
        login_prompt = normalized  # type: ignore[assignment]

    require_new: bool | None = None
    if (flag := fields.get("require_new_instance")) is not None:
        if flag.lower() not in ("true", "false"):
            raise ConfigurationError(
                f"Invalid RequireNewInstance value: '{flag}'. Valid values are: true, false",
                operation="parse_connection_string",
            )
        require_new = flag.lower() == "true"

    return ConnectionParams(
        auth_type=fields["auth_type"],
        url=fields["url"],
        client_id=fields["client_id"],
        redirect_uri=fields["redirect_uri"],
        username=fields.get("username"),
        password=fields.get("password"),
        login_prompt=login_prompt,
        require_new_instance=require_new,
        token_cache_store_path=fields.get("token_cache_store_path"),
    )


def validate_oauth_connection(params: ConnectionParams) -> None:
    """Only OAuth connection strings with well-formed URLs and a GUID client id are usable."""
    if params.auth_type.lower() != "oauth":
        raise ConfigurationError(
            f"Only OAuth authentication is supported. AuthType '{params.auth_type}' is not supported.",
            operation="validate_connection",
        )
    _validate_http_url(params.url, "Url")
    _validate_http_url(params.redirect_uri, "RedirectUri")
    if not is_guid(params.client_id):
        raise ConfigurationError(
            f"ClientId must be a valid GUID. Got: '{params.client_id}'",
            operation="validate_connection",
        )
