"""
Storage backends for execution contexts.

Backends store ``ExecutionContext`` objects by process id. The memory
backend keeps deep copies and never serializes, so payloads come back with
their original types. The redis backend stores the JSON form.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Dict, Iterable, Optional, Tuple

from ..const import DEFAULT_REDIS_KEY_PREFIX
from ..models.context_models import ExecutionContext
from ..models.schemas import dump_context, load_context

log = logging.getLogger(__name__)


class ContextBackend(ABC):
    """Interface every context store backend must satisfy."""

    @abstractmethod
    def get(self, key: str) -> Optional[ExecutionContext]:
        pass

    @abstractmethod
    def set(self, key: str, context: ExecutionContext, ttl: Optional[float] = None):
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def keys(self) -> Iterable[str]:
        pass


class MemoryContextBackend(ContextBackend):
    """
    In-process dict backend.

    Every read and write goes through ``deepcopy``; no caller shares
    objects with the store. Expired entries are purged on every write and
    listing, and on reads of the expired key.
    """

    def __init__(self):
        self._data: Dict[str, Tuple[ExecutionContext, Optional[float]]] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[ExecutionContext]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            context, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._data[key]
                return None
            return deepcopy(context)

    def set(self, key: str, context: ExecutionContext, ttl: Optional[float] = None):
        expires_at = time.monotonic() + ttl if ttl else None
        stored = deepcopy(context)
        with self._lock:
            self._purge_expired()
            self._data[key] = (stored, expires_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> Iterable[str]:
        with self._lock:
            self._purge_expired()
            return list(self._data)

    def _purge_expired(self):
        now = time.monotonic()
        expired = [
            key for key, (_, expires_at) in self._data.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._data[key]
        if expired:
            log.debug(f"Purged {len(expired)} expired context(s)")


class RedisContextBackend(ContextBackend):
    """
    Redis backend.

    Wraps any redis-py compatible client. Contexts are stored in their JSON
    form under ``key_prefix`` and written with ``setex`` when a TTL applies.
    Payload values JSON cannot express are stringified on the way in.
    """

    def __init__(self, redis_client, key_prefix: str = DEFAULT_REDIS_KEY_PREFIX,
                 ttl_seconds: Optional[int] = 3600):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Optional[ExecutionContext]:
        value = self.redis.get(self._key(key))
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return load_context(value)

    def set(self, key: str, context: ExecutionContext, ttl: Optional[float] = None):
        value = dump_context(context)
        ttl = ttl or self.ttl_seconds
        if ttl:
            self.redis.setex(self._key(key), int(ttl), value)
        else:
            self.redis.set(self._key(key), value)

    def delete(self, key: str) -> bool:
        return bool(self.redis.delete(self._key(key)))

    def keys(self) -> Iterable[str]:
        prefix_length = len(self.key_prefix)
        result = []
        for key in self.redis.scan_iter(match=f"{self.key_prefix}*"):
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            result.append(key[prefix_length:])
        return result
