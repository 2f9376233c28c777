import logging

import redis.asyncio as redis

from gigdispatch.settings import settings

logger = logging.getLogger(__name__)

_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis | None:
    global _redis_client
    if not settings.redis_url:
        return None
    if _redis_client is None:
        timeout = settings.redis_socket_timeout_seconds
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            timeout = 2.0
        try:
            _redis_client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=timeout,
            )
        except Exception:
            logger.error("redis_connection_failed", exc_info=True)
            return None
    return _redis_client


async def close_redis_client() -> None:
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
