"""
Cache Service — cache-aside client for rarely-changing lookups.

One ``CacheClient`` is constructed per Flask app by ``create_app`` and
stored in ``app.extensions["cache"]``; callers reach it through
``get_cache()``.  ``close()`` releases the Redis connection pool at
shutdown.

Uses Redis when REDIS_URL points at a Redis server, falls back to an
in-process dict for development/testing (``memory://``).

Cached entries (key → TTL):
    statuses:*      application status lookup     30 min
    prices:active   public price list             15 min
    news:*          published news pages           5 min
    portal:info     static portal info             60 min
    admin:dashboard admin dashboard counters        2 min
"""

import json
import logging
import threading
import time

import redis

from flask import current_app

logger = logging.getLogger(__name__)


# ── Default TTLs ─────────────────────────────────────────────────────────

STATUSES_TTL = 1800
PRICES_TTL = 900
NEWS_TTL = 300
PORTAL_INFO_TTL = 3600
DASHBOARD_TTL = 120
DEFAULT_TTL = 300


# ── Key builders ─────────────────────────────────────────────────────────

KEY_PREFIX = "portal:"
ACTIVE_PRICES_KEY = "prices:active"
PORTAL_INFO_KEY = "portal:info"
ADMIN_DASHBOARD_KEY = "admin:dashboard"


def statuses_key(category=None):
    return f"statuses:{category or 'all'}"


def news_key(page, limit, category=None):
    return f"news:{category or 'all'}:{page}:{limit}"


# ── Backends ─────────────────────────────────────────────────────────────


class _MemoryBackend:
    """Simple dict cache for dev/testing. Thread-safe for threaded dev servers."""

    def __init__(self):
        self._store: dict = {}  # key → (value_json, expire_ts)
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            val, expires = entry
            if expires and time.time() > expires:
                self._store.pop(key, None)
                return None
            return val

    def setex(self, key, ttl_seconds, value):
        with self._lock:
            self._store[key] = (value, time.time() + ttl_seconds)

    def delete(self, *keys):
        with self._lock:
            for k in keys:
                self._store.pop(k, None)

    def keys(self, pattern):
        """Simple glob matching for 'prefix*' patterns."""
        with self._lock:
            if pattern.endswith("*"):
                prefix = pattern[:-1]
                return [k for k in self._store if k.startswith(prefix)]
            return [k for k in self._store if k == pattern]

    def ping(self):
        return True

    def close(self):
        with self._lock:
            self._store.clear()


class CacheClient:
    """Cache-aside client bound to one backend.

    Usage:
        cache = CacheClient.from_url("redis://localhost:6379/0")
        prices = cache.get_or_set("prices:active", loader, ttl=PRICES_TTL)
        cache.delete("prices:active")
        cache.close()
    """

    def __init__(self, backend=None, prefix: str = KEY_PREFIX):
        self._backend = backend if backend is not None else _MemoryBackend()
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str | None):
        """Connect to Redis for ``redis://`` URLs, otherwise use memory."""
        if url and url.startswith(("redis://", "rediss://", "unix://")):
            try:
                backend = redis.from_url(url, decode_responses=True, socket_timeout=2)
                backend.ping()
                logger.info("Cache: using Redis at %s", url.split("@")[-1])
                return cls(backend)
            except Exception as exc:
                logger.warning("Redis unavailable (%s); using the in-process cache", exc)
        return cls(_MemoryBackend())

    @property
    def backend_name(self) -> str:
        return "memory" if isinstance(self._backend, _MemoryBackend) else "redis"

    def _k(self, key):
        return f"{self._prefix}{key}"

    # ── Public API ───────────────────────────────────────────────────────

    def get(self, key):
        """Return the cached value, or None on miss or backend failure."""
        try:
            raw = self._backend.get(self._k(key))
        except Exception as exc:
            logger.warning("Cache get failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None

    def set(self, key, value, ttl=DEFAULT_TTL):
        try:
            self._backend.setex(self._k(key), ttl, json.dumps(value, default=str, ensure_ascii=False))
        except Exception as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)

    def get_or_set(self, key, loader, ttl=DEFAULT_TTL):
        """Cache-aside read: return the cached value or load, store and return it."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value, ttl)
        return value

    def delete(self, *keys):
        if not keys:
            return
        try:
            self._backend.delete(*[self._k(k) for k in keys])
        except Exception as exc:
            logger.warning("Cache delete failed for %s: %s", keys, exc)

    def delete_pattern(self, pattern):
        """Delete every key matching a 'prefix*' pattern."""
        try:
            keys = self._backend.keys(self._k(pattern))
            if keys:
                self._backend.delete(*keys)
        except Exception as exc:
            logger.warning("Cache pattern delete failed for %s: %s", pattern, exc)

    def clear(self):
        self.delete_pattern("*")

    def health_check(self) -> dict:
        try:
            self._backend.ping()
            return {"status": "ok", "backend": self.backend_name}
        except Exception as exc:
            return {"status": "error", "backend": self.backend_name, "detail": str(exc)}

    def close(self):
        """Release backend resources. Safe to call more than once."""
        try:
            self._backend.close()
        except Exception as exc:
            logger.warning("Cache close failed: %s", exc)


# ── Flask integration ────────────────────────────────────────────────────


def init_cache(app) -> CacheClient:
    """Construct the app's cache client and register it on ``app.extensions``."""
    client = CacheClient.from_url(app.config.get("REDIS_URL"))
    app.extensions["cache"] = client
    return client


def get_cache() -> CacheClient:
    """Return the cache client of the current app."""
    return current_app.extensions["cache"]
