# vaultguard/infrastructure/cache/redis_client.py

import functools
import json
import logging
import uuid
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from vaultguard.scalability.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


def _fail_closed(func):
    """Translate driver errors into StoreUnavailableError so callers reject the request."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except RedisError as e:
            logger.error("Redis operation %s failed: %s", func.__name__, e)
            raise StoreUnavailableError(f"Shared store unavailable: {e}") from e

    return wrapper


class RedisClient:
    """Redis-backed SharedStore. Every read-modify-write runs in a MULTI/EXEC pipeline."""

    def __init__(self, url: Optional[str] = None, client: Any = None):
        if client is None:
            if not url:
                raise StoreUnavailableError("Redis URL is required for RedisClient")
            client = redis.from_url(url, decode_responses=True)
        self.client = client

    @_fail_closed
    async def incr(self, key: str, ttl: int) -> int:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl, nx=True)
            results = await pipe.execute()
        return int(results[0])

    @_fail_closed
    async def get_int(self, key: str) -> int:
        value = await self.client.get(key)
        return int(value) if value else 0

    @_fail_closed
    async def set_flag(self, key: str, ttl: int) -> None:
        await self.client.set(key, "1", ex=ttl)

    @_fail_closed
    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    @_fail_closed
    async def get_json(self, key: str) -> Any:
        raw = await self.client.get(key)
        return json.loads(raw) if raw else None

    @_fail_closed
    async def set_json(self, key: str, value: Any, ttl: int) -> None:
        await self.client.set(key, json.dumps(value), ex=ttl)

    @_fail_closed
    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    @_fail_closed
    async def record_timestamp(self, key: str, now: float, window_seconds: int, ttl: int) -> int:
        member = f"{now}:{uuid.uuid4().hex}"
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, "-inf", now - window_seconds)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.expire(key, ttl)
            results = await pipe.execute()
        return int(results[2])

    @_fail_closed
    async def append_capped(self, key: str, item: str, max_len: int, ttl: int) -> list[str]:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.rpush(key, item)
            pipe.ltrim(key, -max_len, -1)
            pipe.lrange(key, 0, -1)
            pipe.expire(key, ttl)
            results = await pipe.execute()
        return list(results[2])

    @_fail_closed
    async def set_nx_ex(self, key: str, value: str, ttl: int) -> bool:
        """Set key to value only if not exists, with TTL. Returns True if key was set."""
        return bool(await self.client.set(key, value, nx=True, ex=ttl))

    @_fail_closed
    async def get(self, key: str) -> str | None:
        """Get value for key. Returns None if key does not exist."""
        return await self.client.get(key)

    @_fail_closed
    async def delete_if_value(self, key: str, value: str) -> bool:
        """Delete key only if its value equals value (atomic). Returns True if deleted."""
        script = "if redis.call('get', KEYS[1]) == ARGV[1] then return redis.call('del', KEYS[1]) else return 0 end"
        result = await self.client.eval(script, 1, key, value)
        return bool(result)

    @_fail_closed
    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()
