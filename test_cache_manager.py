"""
Tests for the in-memory TTL cache.
"""
import threading
from unittest.mock import patch
from cache_manager import (
    CacheManager,
    TTL_LONG,
    TTL_SHORT,
    SWEEP_INTERVAL,
    default_ttl,
    generate_cache_key,
    parse_cache_key,
)


class TestCacheKeys:

    def test_generate_skips_none(self):
        assert generate_cache_key("product", "detail", 42) == "product:detail:42"
        assert generate_cache_key("customer", None, "c1") == "customer:c1"

    def test_parse(self):
        assert parse_cache_key("shipping:rates:10110:50200") == {
            "namespace": "shipping", "resource": "rates", "id": "10110:50200",
        }
        assert parse_cache_key("plain") == {"namespace": "plain", "resource": None, "id": None}

    def test_namespace_ttls(self):
        assert default_ttl("chatbot") == TTL_LONG
        assert default_ttl("ratelimit") == TTL_SHORT
        assert default_ttl("unknown") == 300


class TestCacheOperations:

    def test_values_are_copies(self):
        cache = CacheManager()
        value = {"items": [1]}
        cache.set("query:x", value)
        value["items"].append(2)
        fetched = cache.get("query:x")
        fetched["items"].append(3)
        assert cache.get("query:x") == {"items": [1]}

    @patch("cache_manager.time.time")
    def test_expiry(self, mock_time):
        mock_time.return_value = 1000.0
        cache = CacheManager()
        cache.set("order:o1", "pending")
        assert cache.ttl("order:o1") == 60

        mock_time.return_value = 1059.0
        assert cache.get("order:o1") == "pending"
        mock_time.return_value = 1060.0
        assert cache.get("order:o1") is None
        assert cache.ttl("order:o1") == -2

    def test_zero_ttl_never_expires(self):
        cache = CacheManager()
        cache.set("api:key", 1, ttl=0)
        assert cache.ttl("api:key") == -1

    @patch("cache_manager.time.time")
    def test_increment_keeps_first_expiry(self, mock_time):
        mock_time.return_value = 0.0
        cache = CacheManager()
        assert cache.increment("ratelimit:u1", ttl=60) == 1
        mock_time.return_value = 30.0
        assert cache.increment("ratelimit:u1", ttl=60) == 2
        mock_time.return_value = 61.0
        assert cache.increment("ratelimit:u1", ttl=60) == 1

    def test_concurrent_increments_are_counted(self):
        cache = CacheManager()

        def bump():
            for _ in range(200):
                cache.increment("ratelimit:u1", ttl=60)

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.get("ratelimit:u1") == 1600

    @patch("cache_manager.time.time")
    def test_refresh(self, mock_time):
        mock_time.return_value = 0.0
        cache = CacheManager()
        cache.set("customer:c1", {"name": "Nok"})
        mock_time.return_value = 200.0
        assert cache.refresh("customer:c1") is True
        assert cache.ttl("customer:c1") == 300
        assert cache.refresh("customer:missing") is False

    def test_get_or_set(self):
        cache = CacheManager()
        calls = []

        def fetch():
            calls.append(1)
            return {"price": 10}

        assert cache.get_or_set("pricing:p1", fetch) == {"price": 10}
        assert cache.get_or_set("pricing:p1", fetch) == {"price": 10}
        assert len(calls) == 1
        assert cache.get_or_set("pricing:none", lambda: None) is None
        assert cache.exists("pricing:none") is False

    def test_batch(self):
        cache = CacheManager()
        cache.mset({"product:a": 1, "product:b": 2})
        assert cache.mget(["product:a", "product:missing", "product:b"]) == [1, None, 2]


class TestInvalidation:

    @patch("cache_manager.time.time")
    def test_purge_expired(self, mock_time):
        mock_time.return_value = 0.0
        cache = CacheManager()
        cache.set("order:o1", 1, ttl=10, tags=["orders"])
        cache.set("order:o2", 2, ttl=100, tags=["orders"])
        cache.set("api:key", 3, ttl=0)

        mock_time.return_value = 50.0
        assert cache.purge_expired() == 1
        assert cache.stats()["keys"] == 2
        assert cache.invalidate_by_tag("orders") == 1

    @patch("cache_manager.time.time")
    def test_set_sweeps_expired_keys(self, mock_time):
        mock_time.return_value = 0.0
        cache = CacheManager()
        cache.set("order:o1", 1, ttl=10)

        mock_time.return_value = SWEEP_INTERVAL + 1.0
        cache.set("order:o2", 2)

        assert "order:o1" not in cache._store
        assert cache.purge_expired() == 0

    def test_namespace(self):
        cache = CacheManager()
        cache.mset({"chatbot:faq:a": 1, "chatbot:faq:b": 2, "pricing:p1": 3})
        assert cache.invalidate_namespace("chatbot") == 2
        assert cache.get("pricing:p1") == 3

    def test_tag(self):
        cache = CacheManager()
        cache.set("product:p1", 1, tags=["catalog"])
        cache.set("category:c1", 2, tags=["catalog"])
        cache.set("product:p2", 3)
        assert cache.invalidate_by_tag("catalog") == 2
        assert cache.exists("product:p2") is True
        assert cache.invalidate_by_tag("catalog") == 0

    def test_stats(self):
        cache = CacheManager()
        cache.set("query:a", 1)
        cache.get("query:a")
        cache.get("query:b")
        cache.delete("query:a")
        stats = cache.stats()
        assert (stats["hits"], stats["misses"], stats["sets"], stats["deletes"]) == (1, 1, 1, 1)
        assert stats["hit_rate"] == 0.5
        assert stats["keys"] == 0
        cache.reset_stats()
        assert cache.stats()["hits"] == 0
