"""
Post-authentication hand-off.

One writer (the auth-complete request) links sessions and applies consent
side effects. Readers (redirect lookups for the same user) wait for it to
finish instead of racing it with reads of half-written state.

    async with handoff_writer(user_id):
        ... link, commit ...

    await wait_for_handoff(user_id)   # returns at once if nothing in flight
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from ..core.config import get_settings

logger = logging.getLogger(__name__)


class AuthHandoff:
    """A one-shot ready signal for one user's hand-off."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, result: Any = None) -> None:
        if not self._future.done():
            self._future.set_result(result)

    def fail(self, error: Exception) -> None:
        if not self._future.done():
            self._future.set_exception(error)
            # Nobody may be waiting; mark it retrieved so the loop does not warn
            self._future.exception()

    async def wait(self, timeout: float) -> bool:
        """True once the writer finished successfully, False on failure or timeout."""
        try:
            await asyncio.wait_for(asyncio.shield(self._future), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("Hand-off for user=%s still running after %.1fs", self.user_id, timeout)
            return False
        except Exception as e:
            logger.warning("Hand-off for user=%s failed: %s", self.user_id, e)
            return False


_handoffs: dict[str, AuthHandoff] = {}


def current_handoff(user_id: str) -> Optional[AuthHandoff]:
    return _handoffs.get(user_id)


@asynccontextmanager
async def handoff_writer(user_id: str) -> AsyncIterator[AuthHandoff]:
    """Register a hand-off for the duration of the block and signal readers at exit."""
    handoff = AuthHandoff(user_id)
    _handoffs[user_id] = handoff
    try:
        yield handoff
    except Exception as e:
        handoff.fail(e)
        raise
    else:
        handoff.resolve()
    finally:
        if not handoff.done:
            handoff.fail(RuntimeError("hand-off cancelled"))
        if _handoffs.get(user_id) is handoff:
            del _handoffs[user_id]


async def wait_for_handoff(user_id: str, timeout: Optional[float] = None) -> bool:
    """
    Wait for an in-flight hand-off for this user. Returns True when there is
    none or it completed, False when it failed or did not finish in time.
    """
    handoff = current_handoff(user_id)
    if handoff is None or handoff.done:
        return True
    timeout = get_settings().handoff_wait_seconds if timeout is None else timeout
    return await handoff.wait(timeout)
