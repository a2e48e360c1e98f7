"""
Session-scoped locks: at most one in-flight turn per onboarding session.

FF_USE_REDIS on  → Redis lock (works across worker processes).
FF_USE_REDIS off → in-process asyncio.Lock registry.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .config import get_settings
from .errors import SessionBusy
from .flags import get_flags

logger = logging.getLogger(__name__)

# key -> [lock, holders+waiters]
_local_locks: dict[str, list] = {}


@asynccontextmanager
async def _local_lock(key: str, wait: float) -> AsyncIterator[None]:
    entry = _local_locks.setdefault(key, [asyncio.Lock(), 0])
    entry[1] += 1
    lock: asyncio.Lock = entry[0]
    try:
        try:
            await asyncio.wait_for(lock.acquire(), timeout=wait)
        except asyncio.TimeoutError:
            raise SessionBusy(f"Session {key} is busy")
        try:
            yield
        finally:
            lock.release()
    finally:
        entry[1] -= 1
        if entry[1] == 0:
            _local_locks.pop(key, None)


@asynccontextmanager
async def _redis_lock(key: str, wait: float, ttl: float) -> AsyncIterator[None]:
    from redis.exceptions import LockError

    from .redis import get_redis

    client = await get_redis()
    lock = client.lock(f"lock:onboarding:{key}", timeout=ttl, blocking_timeout=wait)
    acquired = await lock.acquire()
    if not acquired:
        raise SessionBusy(f"Session {key} is busy")
    try:
        yield
    finally:
        try:
            await lock.release()
        except LockError as e:
            # Lock expired while the turn was running; the turn itself finished.
            logger.warning("Session lock %s released late: %s", key, e)


@asynccontextmanager
async def session_lock(key: str, wait: Optional[float] = None) -> AsyncIterator[None]:
    """
    Serialize turns for one session. Raises SessionBusy if the lock cannot be
    taken within `wait` seconds.
    """
    settings = get_settings()
    wait = settings.session_lock_wait_seconds if wait is None else wait

    if get_flags().use_redis:
        async with _redis_lock(key, wait, settings.session_lock_timeout_seconds):
            yield
    else:
        async with _local_lock(key, wait):
            yield
