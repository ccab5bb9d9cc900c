"""Tests for the metadata cache."""

import threading

import pytest

from conftest import INSTANCE_URL, FakeClock
from dataverse_core.foundation.config import CacheSettings
from dataverse_core.io.cache import SYSTEM_ENTITIES, CacheClass, MetadataCache, make_key
from dataverse_core.schema import TableDescription, TableMetadata


@pytest.mark.parametrize("cache_class", list(CacheClass))
def test_value_visible_until_ttl(cache: MetadataCache, clock: FakeClock, cache_class: CacheClass) -> None:
    """A value written at T is returned before T+TTL and absent at T+TTL."""
    ttl = cache.ttl(cache_class)
    cache.set(cache_class, "k", {"v": 1})

    clock.advance(ttl - 1)
    assert cache.get(cache_class, "k") == {"v": 1}

    clock.advance(1)
    assert cache.get(cache_class, "k") is None


def test_default_ttl_is_one_day(cache: MetadataCache) -> None:
    assert all(cache.ttl(c) == 86400 for c in CacheClass)


def test_per_class_ttl(clock: FakeClock) -> None:
    cache = MetadataCache(CacheSettings(important_columns_ttl=60), clock=clock)
    cache.set(CacheClass.IMPORTANT_COLUMNS, "k", ["name"])
    cache.set(CacheClass.TABLE_LIST, "k", ["account"])

    clock.advance(61)
    assert cache.get(CacheClass.IMPORTANT_COLUMNS, "k") is None
    assert cache.get(CacheClass.TABLE_LIST, "k") == ["account"]


def test_expired_read_evicts(cache: MetadataCache, clock: FakeClock) -> None:
    cache.set(CacheClass.TABLE_LIST, "k", [])
    clock.advance(86400)
    assert cache.size == 1
    assert cache.get(CacheClass.TABLE_LIST, "k") is None
    assert cache.size == 0


def test_set_resets_timestamp(cache: MetadataCache, clock: FakeClock) -> None:
    cache.set(CacheClass.TABLE_LIST, "k", "old")
    clock.advance(86000)
    cache.set(CacheClass.TABLE_LIST, "k", "new")
    clock.advance(1000)
    assert cache.get(CacheClass.TABLE_LIST, "k") == "new"


def test_classes_do_not_collide(cache: MetadataCache) -> None:
    cache.set(CacheClass.ENTITY_SET_NAME, "account", "accounts")
    assert cache.get(CacheClass.REVERSE_ENTITY_SET_NAME, "account") is None
    assert cache.get(CacheClass.IMPORTANT_COLUMNS, "account") is None


def test_keys_partition_by_user_and_variant() -> None:
    keys = {
        make_key(INSTANCE_URL, "account"),
        make_key(INSTANCE_URL, "account", user_id="u1"),
        make_key(INSTANCE_URL, "account", user_id="u2"),
        make_key(INSTANCE_URL, "account", variant="full"),
        make_key(INSTANCE_URL, "account", variant="important"),
        make_key("https://other.crm.dynamics.com", "account"),
    }
    assert len(keys) == 6


def test_sweep_expired(cache: MetadataCache, clock: FakeClock) -> None:
    cache.set(CacheClass.TABLE_LIST, "old", 1)
    clock.advance(86000)
    cache.set(CacheClass.TABLE_LIST, "fresh", 2)
    cache.set(CacheClass.IMPORTANT_COLUMNS, "fresh", 3)
    clock.advance(400)

    assert cache.sweep_expired() == 1
    assert cache.size == 2


def test_clear_class_and_all(cache: MetadataCache) -> None:
    cache.set(CacheClass.TABLE_LIST, "a", 1)
    cache.set(CacheClass.TABLE_LIST, "b", 2)
    cache.set(CacheClass.IMPORTANT_COLUMNS, "a", 3)

    assert cache.clear_class(CacheClass.TABLE_LIST) == 2
    assert cache.size == 1
    cache.clear_all()
    assert cache.size == 0


def test_bidirectional_mapping(cache: MetadataCache) -> None:
    cache.set_entity_set_name_bidirectional(INSTANCE_URL, "account", "accounts")
    assert cache.get_entity_set_name(INSTANCE_URL, "account") == "accounts"
    assert cache.get_reverse_entity_set_name(INSTANCE_URL, "accounts") == "account"
    assert cache.get_entity_set_name("https://other.crm.dynamics.com", "account") is None


def test_system_entities_seeded_once(cache: MetadataCache) -> None:
    cache.set_entity_set_name_bidirectional(INSTANCE_URL, "systemuser", "customusers")
    cache.ensure_system_entities(INSTANCE_URL)

    assert cache.get_entity_set_name(INSTANCE_URL, "systemuser") == "customusers"
    for logical_name, collection in SYSTEM_ENTITIES[1:]:
        assert cache.get_entity_set_name(INSTANCE_URL, logical_name) == collection


def test_typed_accessors(cache: MetadataCache) -> None:
    tables = [TableMetadata(logical_name="account", display_name="Account", entity_set_name="accounts")]
    cache.set_table_list(INSTANCE_URL, tables)
    assert cache.get_table_list(INSTANCE_URL) == tables

    full = TableDescription(logical_name="account", display_name="Account", primary_id_attribute="accountid")
    cache.set_table_description(INSTANCE_URL, "account", full, full=True)
    assert cache.get_table_description(INSTANCE_URL, "account", full=True) is full
    assert cache.get_table_description(INSTANCE_URL, "account", full=False) is None

    cache.set_important_columns(INSTANCE_URL, "account", ["accountid", "name"], user_id="u1")
    assert cache.get_important_columns(INSTANCE_URL, "account", user_id="u1") == ["accountid", "name"]
    assert cache.get_important_columns(INSTANCE_URL, "account", user_id="u2") is None

    cache.set_readable_entity_names(INSTANCE_URL, "u1", {"account"})
    assert cache.get_readable_entity_names(INSTANCE_URL, "u1") == frozenset({"account"})


def test_stats(cache: MetadataCache, clock: FakeClock) -> None:
    desc = TableDescription(logical_name="account", display_name="Account", primary_id_attribute="accountid")
    cache.set_table_description(INSTANCE_URL, "account", desc, full=True)
    cache.set_table_description(INSTANCE_URL, "account", desc, full=False)
    cache.set_important_columns(INSTANCE_URL, "account", ["name"], user_id="u1")
    cache.set_readable_entity_names(INSTANCE_URL, "u1", {"account"})
    cache.set_entity_set_name_bidirectional(INSTANCE_URL, "account", "accounts")

    stats = cache.stats()
    assert stats.full_descriptions == 1
    assert stats.important_only_descriptions == 1
    assert stats.user_partitions == {"u1": 2}
    assert stats.entries[CacheClass.ENTITY_SET_NAME] == 1
    assert stats.entries[CacheClass.REVERSE_ENTITY_SET_NAME] == 1
    assert stats.total_entries == 6
    assert stats.last_updated is not None
    assert stats.last_updated.timestamp() == clock.now


def test_clear_helpers(cache: MetadataCache) -> None:
    desc = TableDescription(logical_name="account", display_name="Account", primary_id_attribute="accountid")
    cache.set_table_description(INSTANCE_URL, "account", desc, full=True)
    cache.set_important_columns(INSTANCE_URL, "account", ["name"])
    cache.set_entity_set_name_bidirectional(INSTANCE_URL, "account", "accounts")

    cache.clear_important_columns()
    cache.clear_table_descriptions()
    assert cache.get_important_columns(INSTANCE_URL, "account") is None
    assert cache.get_table_description(INSTANCE_URL, "account", full=True) is None
    assert cache.get_entity_set_name(INSTANCE_URL, "account") == "accounts"


def test_concurrent_writers() -> None:
    cache = MetadataCache()

    def write(n: int) -> None:
        for i in range(200):
            cache.set(CacheClass.IMPORTANT_COLUMNS, f"{n}-{i}", i)

    threads = [threading.Thread(target=write, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert cache.size == 1600
