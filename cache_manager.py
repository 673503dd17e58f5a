"""
In-memory TTL cache shared by the chatbot, rate limiter, shipping and pricing.

Keys are namespaced strings ("<namespace>:<resource>:<id>"); a value set
without an explicit TTL gets the default TTL of its namespace.
"""

import copy
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Set

from chat_logger import get_logger

logger = get_logger("omnisales")

# ═══════════════════════════════════════════
# TTL CONFIGURATION (seconds)
# ═══════════════════════════════════════════

TTL_SHORT = 60
TTL_MEDIUM = 5 * 60
TTL_LONG = 60 * 60
TTL_VERY_LONG = 24 * 60 * 60

# Expired keys are swept from the store at most this often (seconds)
SWEEP_INTERVAL = 60

NAMESPACES = (
    "product",
    "category",
    "customer",
    "order",
    "analytics",
    "query",
    "api",
    "chatbot",
    "ratelimit",
    "shipping",
    "pricing",
)

NAMESPACE_TTLS = {
    "product": TTL_LONG,
    "category": TTL_VERY_LONG,
    "customer": TTL_MEDIUM,
    "order": TTL_SHORT,
    "analytics": TTL_LONG,
    "query": TTL_MEDIUM,
    "api": TTL_MEDIUM,
    "chatbot": TTL_LONG,
    "ratelimit": TTL_SHORT,
    "shipping": TTL_VERY_LONG,
    "pricing": TTL_MEDIUM,
}


def generate_cache_key(namespace: str, *parts) -> str:
    """generate_cache_key("product", "detail", 42) -> "product:detail:42"."""
    return ":".join([namespace] + [str(p) for p in parts if p is not None])


def parse_cache_key(key: str) -> Dict[str, Optional[str]]:
    parts = key.split(":", 2)
    return {
        "namespace": parts[0],
        "resource": parts[1] if len(parts) > 1 else None,
        "id": parts[2] if len(parts) > 2 else None,
    }


def default_ttl(namespace: str) -> int:
    return NAMESPACE_TTLS.get(namespace, TTL_MEDIUM)


class CacheManager:
    """Thread-safe key/value store with per-key expiry and tag invalidation."""

    def __init__(self):
        self._lock = threading.RLock()
        self._store: Dict[str, Any] = {}
        self._expires: Dict[str, float] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0}
        self._last_sweep = time.time()

    # ─────────────────────────────────────────────
    # INTERNAL
    # ─────────────────────────────────────────────

    def _expired(self, key: str, now: float) -> bool:
        expires_at = self._expires.get(key)
        return expires_at is not None and expires_at <= now

    def _purge(self, key: str) -> bool:
        existed = key in self._store
        self._store.pop(key, None)
        self._expires.pop(key, None)
        return existed

    def _sweep(self, now: float) -> int:
        expired = [k for k in self._expires if self._expires[k] <= now]
        for key in expired:
            self._purge(key)
        if expired:
            for tag in list(self._tags):
                self._tags[tag].difference_update(expired)
                if not self._tags[tag]:
                    del self._tags[tag]
        self._last_sweep = now
        return len(expired)

    def _live(self, key: str) -> bool:
        if key not in self._store:
            return False
        if self._expired(key, time.time()):
            self._purge(key)
            return False
        return True

    # ─────────────────────────────────────────────
    # BASIC OPERATIONS
    # ─────────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if self._live(key):
                self._stats["hits"] += 1
                return copy.deepcopy(self._store[key])
            self._stats["misses"] += 1
            return default

    def set(self, key: str, value: Any, ttl: Optional[int] = None,
            tags: Optional[Iterable[str]] = None) -> bool:
        effective_ttl = ttl if ttl is not None else default_ttl(parse_cache_key(key)["namespace"])
        with self._lock:
            now = time.time()
            if now - self._last_sweep >= SWEEP_INTERVAL:
                self._sweep(now)
            self._store[key] = copy.deepcopy(value)
            if effective_ttl and effective_ttl > 0:
                self._expires[key] = now + effective_ttl
            else:
                self._expires.pop(key, None)
            for tag in tags or ():
                self._tags.setdefault(tag, set()).add(key)
            self._stats["sets"] += 1
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._purge(key)
            if existed:
                self._stats["deletes"] += 1
            return existed

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key)

    def ttl(self, key: str) -> int:
        """Remaining seconds; -1 for no expiry, -2 when the key is missing."""
        with self._lock:
            if not self._live(key):
                return -2
            expires_at = self._expires.get(key)
            if expires_at is None:
                return -1
            return max(0, int(round(expires_at - time.time())))

    def refresh(self, key: str, ttl: Optional[int] = None) -> bool:
        """Reset a key's expiry without touching its value."""
        with self._lock:
            if not self._live(key):
                return False
            effective_ttl = ttl if ttl is not None else default_ttl(parse_cache_key(key)["namespace"])
            self._expires[key] = time.time() + effective_ttl
            return True

    def increment(self, key: str, ttl: Optional[int] = None) -> int:
        """Increment an integer counter; the expiry is set when the counter is created."""
        with self._lock:
            if self._live(key):
                self._store[key] = int(self._store[key]) + 1
                return self._store[key]
            self.set(key, 1, ttl)
            return 1

    def atomic(self):
        """
        Hold the cache lock across several calls, for read-modify-write
        sequences:

            with cache.atomic():
                window = cache.get(key)
                cache.set(key, next_window(window))
        """
        return self._lock

    def purge_expired(self) -> int:
        """Drop every expired key now. Returns how many were removed."""
        with self._lock:
            removed = self._sweep(time.time())
        if removed:
            logger.debug(f"Cache sweep | expired={removed}")
        return removed

    def get_or_set(self, key: str, fetch_fn, ttl: Optional[int] = None,
                   tags: Optional[Iterable[str]] = None) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = fetch_fn()
        if value is not None:
            self.set(key, value, ttl, tags)
        return value

    # ─────────────────────────────────────────────
    # BATCH OPERATIONS
    # ─────────────────────────────────────────────

    def mget(self, keys: List[str]) -> List[Any]:
        return [self.get(k) for k in keys]

    def mset(self, items: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        for key, value in items.items():
            self.set(key, value, ttl)
        return True

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._expires.clear()
            self._tags.clear()

    # ─────────────────────────────────────────────
    # INVALIDATION
    # ─────────────────────────────────────────────

    def invalidate_namespace(self, namespace: str) -> int:
        prefix = f"{namespace}:"
        with self._lock:
            keys = [k for k in self._store if k.startswith(prefix)]
            for key in keys:
                self._purge(key)
            self._stats["deletes"] += len(keys)
        logger.debug(f"Cache invalidate namespace={namespace} | deleted={len(keys)}")
        return len(keys)

    def invalidate_by_tag(self, tag: str) -> int:
        with self._lock:
            keys = self._tags.pop(tag, set())
            deleted = sum(1 for key in keys if self._purge(key))
            self._stats["deletes"] += deleted
        logger.debug(f"Cache invalidate tag={tag} | deleted={deleted}")
        return deleted

    # ─────────────────────────────────────────────
    # STATISTICS
    # ─────────────────────────────────────────────

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            now = time.time()
            live = sum(1 for k in self._store if not self._expired(k, now))
            lookups = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "keys": live,
                "hit_rate": round(self._stats["hits"] / lookups, 4) if lookups else 0.0,
            }

    def reset_stats(self) -> None:
        with self._lock:
            for name in self._stats:
                self._stats[name] = 0


# ═══════════════════════════════════════════
# MODULE HELPERS
# ═══════════════════════════════════════════

_cache_manager = CacheManager()


def get_cache_manager() -> CacheManager:
    return _cache_manager


def get_cache(key: str, default: Any = None) -> Any:
    return _cache_manager.get(key, default)


def set_cache(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    return _cache_manager.set(key, value, ttl)


def delete_cache(key: str) -> bool:
    return _cache_manager.delete(key)
