"""Metadata caching with per-class TTL.

Six independent cache classes live side by side in one ``MetadataCache``.
Each class has its own map and TTL, so keys from different classes never
collide. Expiry is checked lazily on read (the expired entry is evicted as a
side effect); ``sweep_expired`` evicts proactively. There is no capacity
bound: cardinality follows the number of distinct tables and users touched.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Callable

from dataverse_core.foundation.config import CacheSettings

if TYPE_CHECKING:
    from dataverse_core.schema import TableDescription, TableMetadata

logger = logging.getLogger("dataverse_core.cache")

# Separator between key segments; never appears in URLs or schema identifiers
_SEP = "\x1f"

# Tables whose entity set names are known without a schema query
SYSTEM_ENTITIES: tuple[tuple[str, str], ...] = (
    ("systemuser", "systemusers"),
    ("businessunit", "businessunits"),
    ("organization", "organizations"),
)


class CacheClass(StrEnum):
    TABLE_LIST = "table_list"
    TABLE_DESCRIPTION = "table_description"
    ENTITY_SET_NAME = "entity_set_name"
    REVERSE_ENTITY_SET_NAME = "reverse_entity_set_name"
    IMPORTANT_COLUMNS = "important_columns"
    READABLE_ENTITY_NAMES = "readable_entity_names"


@dataclass(slots=True)
class CacheEntry:
    """A cached value with its write time."""
    value: Any
    timestamp: float

    def expired(self, ttl: float, now: float) -> bool:
        return now - self.timestamp >= ttl


@dataclass(slots=True)
class CacheStats:
    """Operational snapshot; has no behavioral effect."""
    entries: dict[CacheClass, int] = field(default_factory=dict)
    important_only_descriptions: int = 0
    full_descriptions: int = 0
    user_partitions: dict[str, int] = field(default_factory=dict)
    last_updated: datetime | None = None

    @property
    def total_entries(self) -> int:
        return sum(self.entries.values())


def make_key(
    instance_url: str,
    identifier: str = "",
    *,
    user_id: str | None = None,
    variant: str | None = None,
) -> str:
    """Compose a cache key from (instance, optional user, identifier, optional variant).

    Segments are tagged so a user-scoped key never equals an instance-scoped one.
    """
    parts = [f"i={instance_url}"]
    if user_id:
        parts.append(f"u={user_id}")
    parts.append(f"k={identifier}")
    if variant is not None:
        parts.append(f"v={variant}")
    return _SEP.join(parts)


def _user_of(key: str) -> str | None:
    for part in key.split(_SEP):
        if part.startswith("u="):
            return part[2:]
    return None


class MetadataCache:
    """Thread-safe TTL store for schema metadata.

    One instance per process is the normal arrangement; inject a fresh one
    (optionally with a fake clock) for isolated tests.

    Args:
        settings: Per-class TTLs
        clock: Seconds-since-epoch source, ``time.time`` by default

    Example:
        >>> cache = MetadataCache()
        >>> cache.set_entity_set_name_bidirectional("https://org", "account", "accounts")
        >>> cache.get_entity_set_name("https://org", "account")
        'accounts'
    """

    __slots__ = ("_stores", "_settings", "_clock", "_lock")

    def __init__(self, settings: CacheSettings | None = None, clock: Callable[[], float] = time.time) -> None:
        self._settings = settings or CacheSettings()
        self._clock = clock
        self._stores: dict[CacheClass, dict[str, CacheEntry]] = {cls: {} for cls in CacheClass}
        self._lock = threading.RLock()

    def ttl(self, cache_class: CacheClass) -> float:
        return self._settings.ttl_for(cache_class)

    # ─────────────────────────────────────────────────────────────────
    # Generic contract
    # ─────────────────────────────────────────────────────────────────

    def get(self, cache_class: CacheClass, key: str) -> Any | None:
        """Value if present and fresh; an expired entry is evicted and None returned."""
        with self._lock:
            store = self._stores[cache_class]
            entry = store.get(key)
            if entry is None:
                return None
            if entry.expired(self.ttl(cache_class), self._clock()):
                del store[key]
                return None
            return entry.value

    def set(self, cache_class: CacheClass, key: str, value: Any) -> None:
        """Store value, overwriting any entry and resetting its timestamp."""
        with self._lock:
            self._stores[cache_class][key] = CacheEntry(value=value, timestamp=self._clock())

    def clear_class(self, cache_class: CacheClass) -> int:
        with self._lock:
            count = len(self._stores[cache_class])
            self._stores[cache_class].clear()
            return count

    def clear_all(self) -> None:
        with self._lock:
            for store in self._stores.values():
                store.clear()

    def sweep_expired(self) -> int:
        """Evict expired entries across all classes. Returns count removed."""
        removed = 0
        with self._lock:
            now = self._clock()
            for cache_class, store in self._stores.items():
                ttl = self.ttl(cache_class)
                expired = [k for k, entry in store.items() if entry.expired(ttl, now)]
                for key in expired:
                    del store[key]
                removed += len(expired)
        if removed:
            logger.debug(f"Swept {removed} expired metadata cache entries")
        return removed

    def stats(self) -> CacheStats:
        with self._lock:
            stats = CacheStats(entries={cls: len(store) for cls, store in self._stores.items()})
            for key in self._stores[CacheClass.TABLE_DESCRIPTION]:
                if key.endswith(f"{_SEP}v=full"):
                    stats.full_descriptions += 1
                elif key.endswith(f"{_SEP}v=important"):
                    stats.important_only_descriptions += 1
            for store in self._stores.values():
                for key in store:
                    if (user := _user_of(key)) is not None:
                        stats.user_partitions[user] = stats.user_partitions.get(user, 0) + 1
            latest = max(
                (entry.timestamp for store in self._stores.values() for entry in store.values()),
                default=None,
            )
            if latest is not None:
                stats.last_updated = datetime.fromtimestamp(latest, UTC)
            return stats

    @property
    def size(self) -> int:
        with self._lock:
            return sum(len(store) for store in self._stores.values())

    # ─────────────────────────────────────────────────────────────────
    # Typed accessors
    # ─────────────────────────────────────────────────────────────────

    def get_table_list(self, instance_url: str) -> list[TableMetadata] | None:
        tables = self.get(CacheClass.TABLE_LIST, make_key(instance_url, "tables"))
        return list(tables) if tables is not None else None

    def set_table_list(self, instance_url: str, tables: list[TableMetadata]) -> None:
        self.set(CacheClass.TABLE_LIST, make_key(instance_url, "tables"), tuple(tables))

    def get_table_description(self, instance_url: str, logical_name: str, full: bool) -> TableDescription | None:
        return self.get(CacheClass.TABLE_DESCRIPTION, _description_key(instance_url, logical_name, full))

    def set_table_description(
        self, instance_url: str, logical_name: str, description: TableDescription, full: bool
    ) -> None:
        self.set(CacheClass.TABLE_DESCRIPTION, _description_key(instance_url, logical_name, full), description)

    def get_entity_set_name(self, instance_url: str, logical_name: str) -> str | None:
        """Forward mapping: logical name -> entity set name."""
        return self.get(CacheClass.ENTITY_SET_NAME, make_key(instance_url, logical_name))

    def get_reverse_entity_set_name(self, instance_url: str, entity_set_name: str) -> str | None:
        """Reverse mapping: entity set name -> logical name. A hit means the name is already canonical."""
        return self.get(CacheClass.REVERSE_ENTITY_SET_NAME, make_key(instance_url, entity_set_name))

    def set_entity_set_name_bidirectional(self, instance_url: str, logical_name: str, entity_set_name: str) -> None:
        with self._lock:
            self.set(CacheClass.ENTITY_SET_NAME, make_key(instance_url, logical_name), entity_set_name)
            self.set(CacheClass.REVERSE_ENTITY_SET_NAME, make_key(instance_url, entity_set_name), logical_name)

    def ensure_system_entities(self, instance_url: str) -> None:
        """Seed well-known system tables unless already mapped."""
        with self._lock:
            for logical_name, entity_set_name in SYSTEM_ENTITIES:
                if self.get_entity_set_name(instance_url, logical_name) is None:
                    self.set_entity_set_name_bidirectional(instance_url, logical_name, entity_set_name)

    def get_important_columns(self, instance_url: str, table: str, user_id: str | None = None) -> list[str] | None:
        columns = self.get(CacheClass.IMPORTANT_COLUMNS, make_key(instance_url, table, user_id=user_id))
        return list(columns) if columns is not None else None

    def set_important_columns(
        self, instance_url: str, table: str, columns: list[str], user_id: str | None = None
    ) -> None:
        self.set(CacheClass.IMPORTANT_COLUMNS, make_key(instance_url, table, user_id=user_id), tuple(columns))

    def get_readable_entity_names(self, instance_url: str, user_id: str) -> frozenset[str] | None:
        return self.get(CacheClass.READABLE_ENTITY_NAMES, make_key(instance_url, "readable", user_id=user_id))

    def set_readable_entity_names(self, instance_url: str, user_id: str, names: set[str] | frozenset[str]) -> None:
        self.set(CacheClass.READABLE_ENTITY_NAMES, make_key(instance_url, "readable", user_id=user_id), frozenset(names))

    def clear_important_columns(self) -> None:
        count = self.clear_class(CacheClass.IMPORTANT_COLUMNS)
        logger.info(f"Cleared important columns cache ({count} entries)")

    def clear_table_descriptions(self) -> None:
        count = self.clear_class(CacheClass.TABLE_DESCRIPTION)
        logger.info(f"Cleared table descriptions cache ({count} entries)")


def _description_key(instance_url: str, logical_name: str, full: bool) -> str:
    return make_key(instance_url, logical_name, variant="full" if full else "important")
