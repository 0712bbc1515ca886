"""Domain interfaces for persistence stores."""
from abc import ABC, abstractmethod
from typing import Optional, NamedTuple


class KeyValueStore(ABC):
    """Durable key-value store shared by every request-handling instance.

    Implementations raise ``StoreTransientError`` for availability and
    timeout failures. The conditional writes are single atomic operations
    in the backing store; callers never emulate them with read-then-write.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]: pass

    @abstractmethod
    async def put(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None: pass

    @abstractmethod
    async def put_if_absent(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        """Create ``key`` only if it does not exist. Returns True if this call created it."""

    @abstractmethod
    async def compare_and_swap(self, key: str, expected: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        """Replace ``key`` with ``value`` only while it still holds ``expected``."""

    @abstractmethod
    async def compare_and_delete(self, key: str, expected: str) -> bool: pass

    @abstractmethod
    async def delete(self, key: str) -> None: pass

    @abstractmethod
    async def ping(self) -> bool: pass


class StoredObject(NamedTuple):
    data: bytes
    content_type: str


class ObjectStore(ABC):
    """Blob storage for report artifacts and uploaded CSVs."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> None: pass

    @abstractmethod
    async def get(self, key: str) -> Optional[StoredObject]: pass

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int: pass
