"""
Redis client shared by realtime events and session locks.

Events go out on two kinds of channel:
  onboarding:<user_id|anon_id|session_id>  one conversation's turns and steps
  user:<user_id>                            consent, linking, state changes

With FF_USE_REDIS off, publishing is a no-op. Locks fall back to the
in-process registry in core.locks.
"""

import json
import logging
from typing import Any

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

_redis_client = None


async def get_redis():
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis

        _redis_client = aioredis.from_url(
            get_settings().redis_url, decode_responses=True, socket_connect_timeout=5,
        )
    return _redis_client


async def publish(channel: str, event_type: str, data: Any = None) -> None:
    if not get_flags().use_redis:
        return
    message = json.dumps({"type": event_type, "data": data}, default=str)
    try:
        await (await get_redis()).publish(channel, message)
    except Exception as e:
        # A lost event must not fail the turn that produced it
        logger.warning("Redis publish failed (channel=%s, event=%s): %s", channel, event_type, e)


async def notify_user(user_id: str, event_type: str, data: Any = None) -> None:
    await publish(f"user:{user_id}", event_type, data)


async def notify_session(session_key: str, event_type: str, data: Any = None) -> None:
    await publish(f"onboarding:{session_key}", event_type, data)


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
