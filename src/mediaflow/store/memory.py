"""In-process job store.

Holds keys and lists in dictionaries guarded by a single asyncio lock.
Suitable for a single-process deployment and for tests; state is lost
on restart and is not shared between processes.
"""

import asyncio
import time
from collections import deque
from typing import Callable


class MemoryJobStore:
    """JobStore implementation backed by process memory."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = asyncio.Lock()
        self._values: dict[str, str] = {}
        self._expires_at: dict[str, float] = {}
        self._lists: dict[str, deque[str]] = {}
        self.published: list[tuple[str, str]] = []

    def _purge_if_expired(self, key: str) -> None:
        deadline = self._expires_at.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._values.pop(key, None)
            self._expires_at.pop(key, None)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            self._purge_if_expired(key)
            return self._values.get(key)

    async def set(
        self, key: str, value: str, ttl_seconds: int | None = None, keep_ttl: bool = False
    ) -> None:
        async with self._lock:
            self._purge_if_expired(key)
            self._values[key] = value
            if keep_ttl:
                return
            if ttl_seconds is None:
                self._expires_at.pop(key, None)
            else:
                self._expires_at[key] = self._clock() + ttl_seconds

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        async with self._lock:
            self._purge_if_expired(key)
            if key in self._values:
                return False
            self._values[key] = value
            self._expires_at[key] = self._clock() + ttl_seconds
            return True

    async def expire_if_equals(self, key: str, value: str, ttl_seconds: int) -> bool:
        async with self._lock:
            self._purge_if_expired(key)
            if self._values.get(key) != value:
                return False
            self._expires_at[key] = self._clock() + ttl_seconds
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
            self._lists.pop(key, None)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        async with self._lock:
            self._purge_if_expired(key)
            if self._values.get(key) != value:
                return False
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
            return True

    async def lpush(self, key: str, value: str) -> int:
        async with self._lock:
            items = self._lists.setdefault(key, deque())
            items.appendleft(value)
            return len(items)

    async def rpop(self, key: str) -> str | None:
        async with self._lock:
            items = self._lists.get(key)
            if not items:
                return None
            return items.pop()

    async def llen(self, key: str) -> int:
        async with self._lock:
            return len(self._lists.get(key, ()))

    async def lrange(self, key: str) -> list[str]:
        """Return a snapshot of the list, head first."""
        async with self._lock:
            return list(self._lists.get(key, ()))

    async def publish(self, channel: str, message: str) -> None:
        async with self._lock:
            self.published.append((channel, message))

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
