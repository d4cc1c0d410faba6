# scripts/check_redis.py
import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio

from vaultguard.config.settings import get_settings
from vaultguard.infrastructure.cache.redis_client import RedisClient


async def check():
    store = RedisClient(url=get_settings().redis_url)
    try:
        await store.ping()
        count = await store.incr("healthcheck:counter", ttl=60)
        print("Redis reachable, healthcheck counter:", count)
    finally:
        await store.close()


asyncio.run(check())
