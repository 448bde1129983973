"""In-process cancellation for session flows.

Key components:
- CancellationToken: Wraps an asyncio.Event; checked at loop and
  tool-call boundaries
- run_cancellable(): Race a coroutine against a token, cancelling the
  coroutine if the token fires first
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Coroutine  # noqa: TC003 - runtime for TypeVar
from typing import TypeVar

from otron.core.errors import Aborted

__all__ = ["CancellationToken", "run_cancellable"]

T = TypeVar("T")


class CancellationToken:
    """Helper class to signal and observe cancellation of a session.

    Covers same-process aborts such as a client disconnect. Cancellation
    requested from another process goes through the session store flag.
    """

    def __init__(self, event: asyncio.Event | None = None) -> None:
        self._event = event or asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "Request was aborted") -> None:
        """Signal cancellation. The first reason given is kept."""
        if self.reason is None:
            self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, reason: str | None = None) -> None:
        """Raise Aborted if the token has been signalled.

        Args:
            reason: Message to use instead of the token's own reason.
        """
        if self.is_cancelled:
            raise Aborted(reason or self.reason or "Request was aborted")

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(
    coro: Coroutine[object, object, T], token: CancellationToken | None
) -> T:
    """Await ``coro`` unless ``token`` fires first.

    Returns:
        The coroutine's result.

    Raises:
        Aborted: If the token was signalled before the coroutine finished.
            The coroutine is cancelled in that case.
    """
    if token is None:
        return await coro
    if token.is_cancelled:
        coro.close()
        token.raise_if_cancelled()

    task = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    except BaseException:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await waiter
        return task.result()

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    raise Aborted(token.reason or "Request was aborted during generation")
