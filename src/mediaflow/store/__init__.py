"""Durable Job Store backends."""

from mediaflow.store.base import JobStore
from mediaflow.store.memory import MemoryJobStore
from mediaflow.store.redis_store import RedisJobStore


def create_job_store(url: str) -> JobStore:
    """Build a job store from a URL.

    Args:
        url: ``memory://`` for the in-process store, otherwise a Redis URL

    Returns:
        JobStore instance
    """
    if url.startswith("memory://"):
        return MemoryJobStore()
    return RedisJobStore(url)


__all__ = ["JobStore", "MemoryJobStore", "RedisJobStore", "create_job_store"]
