"""Redis-backed implementation of the KeyValueClient protocol.

Every method returns normalized Python values and converts backend
failures into ``StoreError``, so callers never see client-version
specific result shapes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from otron.core.errors import StoreError

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

_DELETE_IF_EQUALS = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""

# Commands that may be queued inside multi(); mirrors the protocol surface.
_MULTI_COMMANDS = frozenset(
    {
        "get",
        "set",
        "delete",
        "expire",
        "sadd",
        "srem",
        "smembers",
        "lpush",
        "lrange",
        "ltrim",
        "llen",
        "hincrby",
        "hgetall",
    }
)


class RedisKeyValueClient:
    """KeyValueClient over ``redis.asyncio`` with decoded string responses."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisKeyValueClient:
        """Create a client from a redis:// URL."""
        return cls(aioredis.from_url(url, decode_responses=True))

    async def close(self) -> None:
        await self._redis.aclose()

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as e:
            raise StoreError(f"GET {key} failed: {e}") from e

    async def set(
        self, key: str, value: str, *, ex: int | None = None, nx: bool = False
    ) -> bool:
        try:
            result = await self._redis.set(key, value, ex=ex, nx=nx)
        except RedisError as e:
            raise StoreError(f"SET {key} failed: {e}") from e
        # redis-py returns None when NX blocks the write
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self._redis.delete(*keys))
        except RedisError as e:
            raise StoreError(f"DEL {keys} failed: {e}") from e

    async def delete_if_equals(self, key: str, value: str) -> bool:
        try:
            return bool(await self._redis.eval(_DELETE_IF_EQUALS, 1, key, value))
        except RedisError as e:
            raise StoreError(f"compare-and-delete {key} failed: {e}") from e

    async def expire(self, key: str, seconds: int) -> bool:
        try:
            return bool(await self._redis.expire(key, seconds))
        except RedisError as e:
            raise StoreError(f"EXPIRE {key} failed: {e}") from e

    async def sadd(self, key: str, *members: str) -> int:
        try:
            return int(await self._redis.sadd(key, *members))
        except RedisError as e:
            raise StoreError(f"SADD {key} failed: {e}") from e

    async def srem(self, key: str, *members: str) -> int:
        try:
            return int(await self._redis.srem(key, *members))
        except RedisError as e:
            raise StoreError(f"SREM {key} failed: {e}") from e

    async def smembers(self, key: str) -> set[str]:
        try:
            return set(await self._redis.smembers(key))
        except RedisError as e:
            raise StoreError(f"SMEMBERS {key} failed: {e}") from e

    async def lpush(self, key: str, *values: str) -> int:
        try:
            return int(await self._redis.lpush(key, *values))
        except RedisError as e:
            raise StoreError(f"LPUSH {key} failed: {e}") from e

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        try:
            return list(await self._redis.lrange(key, start, stop))
        except RedisError as e:
            raise StoreError(f"LRANGE {key} failed: {e}") from e

    async def ltrim(self, key: str, start: int, stop: int) -> bool:
        try:
            return bool(await self._redis.ltrim(key, start, stop))
        except RedisError as e:
            raise StoreError(f"LTRIM {key} failed: {e}") from e

    async def llen(self, key: str) -> int:
        try:
            return int(await self._redis.llen(key))
        except RedisError as e:
            raise StoreError(f"LLEN {key} failed: {e}") from e

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        try:
            return int(await self._redis.hincrby(key, field, amount))
        except RedisError as e:
            raise StoreError(f"HINCRBY {key} failed: {e}") from e

    async def hgetall(self, key: str) -> dict[str, str]:
        try:
            return dict(await self._redis.hgetall(key))
        except RedisError as e:
            raise StoreError(f"HGETALL {key} failed: {e}") from e

    async def multi(self, commands: Sequence[tuple[str, tuple[Any, ...]]]) -> list[Any]:
        """Run commands in a MULTI/EXEC transaction.

        Raises:
            ValueError: If a command name is not part of the protocol.
            StoreError: If the transaction fails.
        """
        for name, _ in commands:
            if name not in _MULTI_COMMANDS:
                raise ValueError(f"Unsupported command in multi(): {name}")
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for name, args in commands:
                    getattr(pipe, name)(*args)
                return list(await pipe.execute())
        except RedisError as e:
            raise StoreError(f"MULTI failed: {e}") from e
