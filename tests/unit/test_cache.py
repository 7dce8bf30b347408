"""
Unit tests -- result caching layer.
"""
import time

from src.metrics.cache import QueryCache, get_cache


def _key(metric_id="m1", filters=None, group_by=None, date_field=None):
    return QueryCache.metric_key(metric_id, filters, group_by, date_field)


def test_put_and_get():
    cache = QueryCache(ttl=60)
    cache.put(_key(), [{"value": 1}])
    assert cache.get(_key()) == [{"value": 1}]


def test_cache_miss():
    cache = QueryCache(ttl=60)
    assert cache.get(_key("unknown")) is None


def test_key_depends_on_every_request_part():
    base = _key("m1", {"region": "North"}, ["category"], "date")
    assert base != _key("m2", {"region": "North"}, ["category"], "date")
    assert base != _key("m1", {"region": "South"}, ["category"], "date")
    assert base != _key("m1", {"region": "North"}, ["channel"], "date")
    assert base != _key("m1", {"region": "North"}, ["category"], None)


def test_key_ignores_filter_key_order():
    assert _key(filters={"a": 1, "b": 2}) == _key(filters={"b": 2, "a": 1})


def test_empty_filters_and_none_share_a_key():
    assert _key(filters={}, group_by=[]) == _key(filters=None, group_by=None)


def test_user_filters_change_the_key():
    """Two users with different row-level filters never share an entry."""
    alice = _key(filters={"AND": [{"year": 2024}, {"region": "North"}]})
    carol = _key(filters={"AND": [{"year": 2024}, {"region": "South"}]})
    assert alice != carol


def test_default_ttl_is_five_minutes():
    assert QueryCache().stats()["ttl_seconds"] == 300


def test_cache_expiry():
    cache = QueryCache(ttl=0.1)  # 100ms TTL
    cache.put(_key(), "value")
    time.sleep(0.15)
    assert cache.get(_key()) is None


def test_invalidate_specific():
    cache = QueryCache(ttl=60)
    cache.put(_key("q1"), "v1")
    cache.put(_key("q2"), "v2")
    removed = cache.invalidate(_key("q1"))
    assert removed == 1
    assert cache.get(_key("q1")) is None
    assert cache.get(_key("q2")) == "v2"


def test_invalidate_all():
    cache = QueryCache(ttl=60)
    cache.put(_key("q1"), "v1")
    cache.put(_key("q2"), "v2")
    removed = cache.invalidate()
    assert removed == 2
    assert cache.get(_key("q1")) is None


def test_max_size_eviction():
    cache = QueryCache(ttl=60, max_size=2)
    cache.put(_key("q1"), "v1")
    cache.put(_key("q2"), "v2")
    cache.put(_key("q3"), "v3")  # should evict q1
    assert cache.get(_key("q1")) is None
    assert cache.get(_key("q3")) == "v3"


def test_stats():
    cache = QueryCache(ttl=60)
    cache.put(_key("q1"), "v1")
    cache.get(_key("q1"))  # hit
    cache.get(_key("q2"))  # miss
    stats = cache.stats()
    assert stats["size"] == 1
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5


def test_cleanup_expired():
    cache = QueryCache(ttl=0.1)
    cache.put(_key("q1"), "v1")
    cache.put(_key("q2"), "v2")
    time.sleep(0.15)
    removed = cache.cleanup_expired()
    assert removed == 2
    assert cache.stats()["size"] == 0


def test_global_singleton():
    """get_cache() should return the same instance."""
    assert get_cache() is get_cache()


def test_recently_read_entry_survives_eviction():
    cache = QueryCache(ttl=60, max_size=2)
    cache.put(_key("q1"), "v1")
    cache.put(_key("q2"), "v2")
    cache.get(_key("q1"))
    cache.put(_key("q3"), "v3")  # q2 is now least recently used
    assert cache.get(_key("q1")) == "v1"
    assert cache.get(_key("q2")) is None
    assert cache.stats()["evictions"] == 1


def test_invalidate_tag_drops_only_tagged_entries():
    cache = QueryCache(ttl=60)
    cache.put(_key("m1"), "a", tags=("m1", "ds1"))
    cache.put(_key("m2"), "b", tags=("m2", "ds1"))
    cache.put(_key("m3"), "c", tags=("m3", "ds2"))

    assert cache.invalidate_tag("ds1") == 2
    assert cache.get(_key("m3")) == "c"
    assert cache.invalidate_tag("m3") == 1
    assert cache.stats()["size"] == 0
