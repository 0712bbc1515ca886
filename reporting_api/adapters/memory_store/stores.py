"""Memory Store Implementations.

Single-process backends for development and tests. Atomicity of the
conditional writes holds only within one process.
"""
from typing import Callable, Dict, Optional, Tuple
import logging
import threading
import time

from reporting_api.domain.interfaces import KeyValueStore, ObjectStore, StoredObject

logger = logging.getLogger(__name__)


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, clock: Optional[Callable[[], float]] = None):
        # key -> (value, expires_at or None)
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._clock = clock or time.time

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[float]:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    def _live(self, key: str) -> Optional[str]:
        """Return the live value for key. Caller holds the lock."""
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        # Lazy cleanup
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    async def put(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        with self._lock:
            self._data[key] = (value, self._expiry(ttl_seconds))

    async def put_if_absent(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl_seconds))
            return True

    async def compare_and_swap(self, key: str, expected: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        with self._lock:
            if self._live(key) != expected:
                return False
            if ttl_seconds is None:
                # Keep whatever expiry the key already had
                _, expires_at = self._data[key]
            else:
                expires_at = self._expiry(ttl_seconds)
            self._data[key] = (value, expires_at)
            return True

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._lock:
            if self._live(key) != expected:
                return False
            del self._data[key]
            return True

    async def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    async def ping(self) -> bool:
        return True


class MemoryObjectStore(ObjectStore):
    def __init__(self):
        self._objects: Dict[str, StoredObject] = {}

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        self._objects[key] = StoredObject(data, content_type)

    async def get(self, key: str) -> Optional[StoredObject]:
        return self._objects.get(key)

    async def delete_prefix(self, prefix: str) -> int:
        to_delete = [k for k in self._objects if k.startswith(prefix)]
        for k in to_delete:
            del self._objects[k]
        return len(to_delete)
