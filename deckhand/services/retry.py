"""
Bounded retry for store reads that may race a recent write.

Linear backoff: delay, 2*delay, ... between attempts. Never blocks longer
than attempts * delay in total.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from ..core.config import get_settings
from ..core.errors import TransientReadInconsistency

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE = (SQLAlchemyError, TransientReadInconsistency, OSError)


async def read_with_retry(
    read: Callable[[], Awaitable[T]],
    accept: Optional[Callable[[T], bool]] = None,
    attempts: Optional[int] = None,
    delay: Optional[float] = None,
    label: str = "read",
) -> T:
    """
    Run `read` up to `attempts` times.

    A failed read (database error) is retried; after the last attempt it
    raises TransientReadInconsistency. A read whose value does not satisfy
    `accept` is retried too, but the last value is returned as is.
    """
    settings = get_settings()
    attempts = max(1, attempts or settings.read_retry_attempts)
    delay = settings.read_retry_delay_seconds if delay is None else delay

    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            value = await read()
        except RETRYABLE as e:
            last_error = e
            logger.warning("%s failed (attempt %d/%d): %s", label, attempt, attempts, e)
        else:
            if accept is None or accept(value) or attempt == attempts:
                return value
            logger.info("%s not visible yet (attempt %d/%d)", label, attempt, attempts)

        if attempt < attempts and delay > 0:
            await asyncio.sleep(delay * attempt)

    raise TransientReadInconsistency(f"{label} failed after {attempts} attempts: {last_error}")
