import logging
import secrets
from typing import Optional

from redis import asyncio as aioredis
from .config import get_settings

_settings = get_settings()
log = logging.getLogger(__name__)

redis = aioredis.from_url(_settings.REDIS_URL, encoding="utf-8", decode_responses=True)

# delete only if we still own the lock (the TTL may have handed it to someone else)
_RELEASE_LUA = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


async def redis_health() -> bool:
    try:
        return bool(await redis.ping())
    except Exception:
        log.warning("redis_health_failed", exc_info=True)
        return False


async def acquire_lock(key: str, ttl_sec: int) -> Optional[str]:
    """SET NX EX. Returns an owner token, or None if someone else holds the lock."""
    token = secrets.token_hex(16)
    if await redis.set(key, token, ex=ttl_sec, nx=True):
        return token
    return None


async def release_lock(key: str, token: str) -> None:
    await redis.eval(_RELEASE_LUA, 1, key, token)
