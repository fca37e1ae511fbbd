"""
Cancellation - cooperative abort signal for in-flight pipeline runs.

A CancellationToken is handed to the orchestrator and threaded through
every blocking or polling call (dev-server waits, health polling,
package installation, AI repair). Waits end early when the token fires,
so a caller can reclaim the remote environment without waiting for
timeouts to elapse.
"""

import asyncio
import logging
from typing import Awaitable, Dict, Optional, TypeVar

from bwork.sandbox.exceptions import PipelineCancelledError

logger = logging.getLogger("bwork.sandbox.cancellation")

T = TypeVar("T")


class CancellationToken:
    """
    One-shot cancellation signal backed by an asyncio.Event.

    Usage:
        token = CancellationToken()
        ...
        token.cancel("user closed the preview")
        ...
        await token.sleep(2.0)  # raises PipelineCancelledError
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelledError(self.reason or "Cancelled")

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, waking immediately if cancelled."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        The pending operation is cancelled when the token wins the race.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        raise PipelineCancelledError(self.reason or "Cancelled")


async def cancellable_sleep(seconds: float, token: Optional[CancellationToken] = None) -> None:
    """asyncio.sleep that honours an optional token."""
    if token is None:
        await asyncio.sleep(seconds)
    else:
        await token.sleep(seconds)


async def cancellable(awaitable: Awaitable[T], token: Optional[CancellationToken] = None) -> T:
    """Await with an optional token."""
    if token is None:
        return await awaitable
    return await token.run(awaitable)


class CancellationRegistry:
    """
    In-process map of sandbox record id to the token of its running pipeline.

    Lets the terminate endpoint abort a run started by another request.
    """

    def __init__(self):
        self._tokens: Dict[str, CancellationToken] = {}

    def register(self, sandbox_id: str, token: CancellationToken) -> None:
        self._tokens[sandbox_id] = token

    def unregister(self, sandbox_id: str) -> None:
        self._tokens.pop(sandbox_id, None)

    def get(self, sandbox_id: str) -> Optional[CancellationToken]:
        return self._tokens.get(sandbox_id)

    def cancel(self, sandbox_id: str, reason: str = "Terminated by request") -> bool:
        """Cancel the run owning `sandbox_id`. Returns False if none is active."""
        token = self._tokens.get(sandbox_id)
        if token is None:
            return False
        logger.info(f"Cancelling pipeline for sandbox {sandbox_id}: {reason}")
        token.cancel(reason)
        return True


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
cancellation_registry = CancellationRegistry()
