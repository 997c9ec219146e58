from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Interrupted(Exception):
    """Raised by CancelToken.race when cancellation wins."""


class CancelToken:
    """Cooperative interrupt flag with wake-on-change semantics.

    A single token is owned by one TurnEngine. It is set by the user interrupt
    and cleared only when the next user turn starts. Waiters are woken through
    an asyncio.Event, so it must be set from the event loop thread (use
    ``loop.call_soon_threadsafe(token.cancel)`` from elsewhere).
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> bool:
        """Request cancellation. Returns False if it was already pending."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def reset(self) -> None:
        self._event.clear()

    async def race(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless cancellation is requested first.

        On cancellation the inner task is cancelled and awaited, so cleanup
        in it (e.g. killing a child process) finishes before Interrupted is
        raised.
        """
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.debug("task raised while being cancelled", exc_info=True)
        raise Interrupted()
