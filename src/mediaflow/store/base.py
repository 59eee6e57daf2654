"""Durable Job Store interface.

The queue service only needs string keys with per-key TTL and list keys
with push/pop/length. Any backend that provides these operations atomically
per call can back the queue.
"""

from typing import Protocol


class JobStore(Protocol):
    """Key/value store with TTL and append-only list keys."""

    async def get(self, key: str) -> str | None: ...

    async def set(
        self, key: str, value: str, ttl_seconds: int | None = None, keep_ttl: bool = False
    ) -> None:
        """Write key. ``keep_ttl`` preserves the existing expiry instead of clearing it."""
        ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set key only if it does not exist. Returns True when the write happened."""
        ...

    async def expire_if_equals(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Reset the TTL only if key currently holds ``value``, in one step."""
        ...

    async def delete(self, key: str) -> None: ...

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Delete key only if it currently holds ``value``, in one step."""
        ...

    async def lpush(self, key: str, value: str) -> int:
        """Insert value at the head of the list and return the new length."""
        ...

    async def rpop(self, key: str) -> str | None:
        """Atomically remove and return the tail element, or None if empty."""
        ...

    async def llen(self, key: str) -> int: ...

    async def publish(self, channel: str, message: str) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...
