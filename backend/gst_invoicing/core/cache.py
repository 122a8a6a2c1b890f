"""
Read-through cache for list endpoints.

Keys look like ``{domain}:v{version}:{part}:{part}``. Invalidating a domain
bumps its version so every older key is simply never read again and ages out
by TTL; there is no pattern scan. Bumps are tied to the DB transaction through
``invalidate_on_commit`` so a rolled-back write never clears anything.

Callers resolve the versioned key once, before reading the database, and use
that same key for both the lookup and the store. A result computed from rows
read before a concurrent commit is then filed under the version that commit
retired, never under the new one.

Backend is Redis when ``REDIS_URL`` is set, an in-process TTL dict otherwise.
Backend failures are logged and behave like a miss.
"""
from __future__ import annotations

import json
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Optional

import redis
from loguru import logger
from sqlalchemy import event
from sqlmodel import Session

from gst_invoicing.core.config import settings


class CacheBackend(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str, ttl: int) -> None:
        ...

    @abstractmethod
    def incr(self, key: str) -> int:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class InMemoryCache(CacheBackend):
    """
    Process-local backend used in development and tests.

    Values live in an insertion-ordered dict capped at ``max_entries``; when
    full, expired entries are purged first and then the oldest are evicted.
    Version counters are kept apart and never evicted.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_entries: int = 10_000):
        self._data: OrderedDict[str, tuple[str, Optional[float]]] = OrderedDict()
        self._counters: dict[str, int] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._max_entries = max(max_entries, 1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            if key in self._counters:
                return str(self._counters[key])
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._data.pop(key, None)
            if len(self._data) >= self._max_entries:
                self._purge_expired()
            while len(self._data) >= self._max_entries:
                self._data.popitem(last=False)
            self._data[key] = (value, self._clock() + ttl if ttl else None)

    def incr(self, key: str) -> int:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + 1
            return self._counters[key]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._counters.clear()

    def _purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, exp) in self._data.items() if exp is not None and exp <= now]
        for k in expired:
            del self._data[k]
        return len(expired)

    def cleanup_expired(self) -> int:
        with self._lock:
            return self._purge_expired()


class RedisCache(CacheBackend):
    def __init__(self, redis_url: str):
        self._client = redis.Redis.from_url(redis_url, decode_responses=True)

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self._client.set(key, value, ex=ttl or None)

    def incr(self, key: str) -> int:
        return int(self._client.incr(key))

    def clear(self) -> None:
        self._client.flushdb()


class DomainCache:
    """Versioned-key cache keyed by domain (``stock``, ``invoices``, ``masters:<type>``)."""

    def __init__(self, backend: CacheBackend, namespace: str = "gst"):
        self._backend = backend
        self._namespace = namespace

    @property
    def backend_name(self) -> str:
        return "redis" if isinstance(self._backend, RedisCache) else "memory"

    def _version_key(self, domain: str) -> str:
        return f"{self._namespace}:version:{domain}"

    def version(self, domain: str) -> int:
        try:
            raw = self._backend.get(self._version_key(domain))
        except Exception as exc:
            logger.warning(f"Cache version lookup failed for '{domain}': {exc}")
            return 0
        return int(raw) if raw else 0

    def make_key(self, domain: str, *parts: Any) -> str:
        """Versioned key for ``domain``; resolve it once per read-through."""
        tail = ":".join("" if p is None else str(p) for p in parts)
        return f"{self._namespace}:{domain}:v{self.version(domain)}:{tail}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._backend.get(key)
        except Exception as exc:
            logger.warning(f"Cache read failed for {key}: {exc}")
            return None
        if raw is None:
            return None
        logger.debug(f"Cache hit {key}")
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            self._backend.set(key, json.dumps(value, default=str), ttl)
        except Exception as exc:
            logger.warning(f"Cache write failed for {key}: {exc}")

    def invalidate(self, domain: str) -> int:
        try:
            new_version = self._backend.incr(self._version_key(domain))
        except Exception as exc:
            logger.warning(f"Cache invalidation failed for '{domain}': {exc}")
            return 0
        logger.debug(f"Cache domain '{domain}' now at v{new_version}")
        return new_version

    def clear(self) -> None:
        self._backend.clear()


_cache: Optional[DomainCache] = None


def get_cache() -> DomainCache:
    global _cache
    if _cache is None:
        if settings.REDIS_URL:
            logger.info("Using Redis cache backend")
            _cache = DomainCache(RedisCache(settings.REDIS_URL))
        else:
            _cache = DomainCache(InMemoryCache(max_entries=settings.CACHE_MAX_ENTRIES))
    return _cache


# ── Transaction binding ───────────────────────────────────────────────────────

_PENDING_KEY = "pending_cache_invalidations"


def _flush_pending(session) -> None:
    domains = session.info.pop(_PENDING_KEY, set())
    cache = get_cache()
    for domain in sorted(domains):
        cache.invalidate(domain)


def _drop_pending(session, previous_transaction) -> None:
    session.info.pop(_PENDING_KEY, None)


def invalidate_on_commit(session: Session, domain: str) -> None:
    """Schedule a version bump of ``domain`` for when ``session`` commits."""
    pending = session.info.setdefault(_PENDING_KEY, set())
    pending.add(domain)


event.listen(Session, "after_commit", _flush_pending)
event.listen(Session, "after_soft_rollback", _drop_pending)
