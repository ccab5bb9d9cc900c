"""GUID detection and OData literal escaping."""

from __future__ import annotations

import re

GUID_REGEX = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_GUID_SEARCH = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)

EMPTY_GUID = "00000000-0000-0000-0000-000000000000"


def is_guid(value: object) -> bool:
    return isinstance(value, str) and GUID_REGEX.match(value) is not None


def find_guids(text: str) -> set[str]:
    """All GUIDs embedded in text, lowercased."""
    return {g.lower() for g in _GUID_SEARCH.findall(text or "")}


def escape_odata_value(value: str) -> str:
    """Single quotes are doubled inside OData string literals."""
    return value.replace("'", "''")
