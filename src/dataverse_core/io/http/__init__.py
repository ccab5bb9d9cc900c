"""Web API request client with rate-limit retry and session affinity."""

from .client import CredentialProvider, WebApiClient, parse_json

__all__ = ["WebApiClient", "CredentialProvider", "parse_json"]
