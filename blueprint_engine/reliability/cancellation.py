import asyncio
from typing import Awaitable, Optional, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GenerationCancelled(Exception):
    """Raised when a caller abandons a unit of work."""


class CancellationToken:
    """Cooperative cancellation signal passed down through a generation.

    Honoured at every suspension point: backoff sleeps and in-flight
    provider calls both return early once ``cancel()`` is called.
    """

    def __init__(self):
        self._cancelled = False
        # Created on first await so a token can be built outside the event loop
        self._event: Optional[asyncio.Event] = None
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    def cancel(self, reason: str = "cancelled by caller"):
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason
            if self._event is not None:
                self._event.set()
            logger.info(f"Cancellation requested: {reason}")

    def raise_if_cancelled(self):
        if self._cancelled:
            raise GenerationCancelled(self.reason)

    async def sleep(self, delay: float):
        """Sleep for ``delay`` seconds unless cancelled first."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._get_event().wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise GenerationCancelled(self.reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable``, abandoning it as soon as the token fires."""
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._get_event().wait())

        try:
            done, _ = await asyncio.wait(
                {work, waiter},
                return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Abandoned call finished with error after cancellation: {e}")
        raise GenerationCancelled(self.reason)


async def cancellable_sleep(delay: float, token: Optional[CancellationToken] = None):
    if token is None:
        await asyncio.sleep(delay)
    else:
        await token.sleep(delay)


async def run_cancellable(awaitable: Awaitable[T], token: Optional[CancellationToken] = None) -> T:
    if token is None:
        return await awaitable
    return await token.run(awaitable)
