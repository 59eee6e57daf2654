"""Redis-backed job store."""

import redis.asyncio as redis

# Compare-and-set helpers run server-side so the check and the write are atomic
EXPIRE_IF_EQUALS = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("EXPIRE", KEYS[1], ARGV[2])
end
return 0
"""

DELETE_IF_EQUALS = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RedisJobStore:
    """JobStore implementation on top of a Redis connection pool.

    Every operation maps to a single Redis command (or one Lua script for
    the compare-and-set helpers), so RPOP gives the dequeue exclusivity the
    queue relies on across processes.
    """

    def __init__(self, url: str, max_connections: int = 100):
        """Initialize store with a pooled Redis client.

        Args:
            url: Redis URL (redis://host:port/db or rediss:// for TLS)
            max_connections: Upper bound on pooled connections
        """
        self.pool = redis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        self.client = redis.Redis(connection_pool=self.pool)
        self._expire_if_equals = self.client.register_script(EXPIRE_IF_EQUALS)
        self._delete_if_equals = self.client.register_script(DELETE_IF_EQUALS)

    async def get(self, key: str) -> str | None:
        return await self.client.get(key)

    async def set(
        self, key: str, value: str, ttl_seconds: int | None = None, keep_ttl: bool = False
    ) -> None:
        if keep_ttl:
            await self.client.set(key, value, keepttl=True)
        else:
            await self.client.set(key, value, ex=ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self.client.set(key, value, ex=ttl_seconds, nx=True))

    async def expire_if_equals(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self._expire_if_equals(keys=[key], args=[value, ttl_seconds]))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        return bool(await self._delete_if_equals(keys=[key], args=[value]))

    async def lpush(self, key: str, value: str) -> int:
        return await self.client.lpush(key, value)

    async def rpop(self, key: str) -> str | None:
        return await self.client.rpop(key)

    async def llen(self, key: str) -> int:
        return await self.client.llen(key)

    async def publish(self, channel: str, message: str) -> None:
        await self.client.publish(channel, message)

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()
        await self.pool.aclose()
