"""Read-through cache for list and detail queries.

Values are JSON snapshots of query results, never entities. The cache is
never authoritative: every failure falls back to the database.
"""

import json
import logging
import time
from threading import Lock
from typing import Any, Callable, Protocol

import redis

from backend.core import config

logger = logging.getLogger(__name__)


def specializations_key() -> str:
    return 'specializations:all'


def doctor_key(doctor_id) -> str:
    return f'doctor:{doctor_id}'


def patient_key(patient_id) -> str:
    return f'patient:{patient_id}'


def patient_reports_key(patient_id) -> str:
    return f'reports:patient:{patient_id}'


def doctor_reports_key(doctor_id) -> str:
    return f'reports:doctor:{doctor_id}'


def appointment_report_key(appointment_id) -> str:
    return f'reports:appointment:{appointment_id}'


class CacheBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryCache:
    """Process-local backend used when no cache server is configured."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, str]] = {}
        self._lock = Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


class RedisCache:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float | None = None) -> 'RedisCache':
        timeout = socket_timeout if socket_timeout is not None else config.CACHE_SOCKET_TIMEOUT_SECONDS
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
        return cls(client)

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.setex(key, ttl_seconds, value)

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def close(self) -> None:
        self._client.close()


def build_cache_backend(url: str | None = None) -> CacheBackend:
    url = config.CACHE_URL if url is None else url
    if url:
        logger.info('Using Redis cache at %s', url)
        return RedisCache.from_url(url)
    logger.info('CACHE_URL not set; using in-process cache.')
    return InMemoryCache()


class ReadThroughCache:
    def __init__(self, backend: CacheBackend) -> None:
        self.backend = backend

    def fetch(self, key: str, ttl_seconds: int, loader: Callable[[], Any]) -> Any:
        try:
            cached = self.backend.get(key)
        except Exception:
            logger.warning('Cache read failed for %s; falling back to the database.', key, exc_info=True)
            cached = None

        if cached is not None:
            try:
                value = json.loads(cached)
            except ValueError:
                logger.warning('Discarding unreadable cache entry %s.', key)
            else:
                logger.debug('Cache hit: %s', key)
                return value

        logger.debug('Cache miss: %s', key)
        value = loader()

        try:
            self.backend.set(key, json.dumps(value, default=str), ttl_seconds)
        except Exception:
            logger.warning('Cache write failed for %s.', key, exc_info=True)

        return value

    def evict(self, *keys: str) -> None:
        for key in keys:
            try:
                self.backend.delete(key)
            except Exception:
                logger.exception('Cache invalidation failed for %s; entry expires with its TTL.', key)
            else:
                logger.info('Invalidated cache key %s', key)
