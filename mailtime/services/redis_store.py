# mailtime/services/redis_store.py - thin function interface over the pooled client
from mailtime.services.redis_client import redis_client


async def get(key: str) -> str | None:
    return await redis_client.get(key)


async def set_with_ttl(key: str, value: str, ttl_s: int | None = None) -> bool:
    return await redis_client.set_with_ttl(key, value, ttl_s)


async def delete(key: str) -> bool:
    return await redis_client.delete(key)
