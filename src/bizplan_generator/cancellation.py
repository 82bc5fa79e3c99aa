"""Cooperative cancellation for pipeline runs."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from .errors import PipelineCancelledError

T = TypeVar("T")


class CancellationToken:
    """A one-shot cancel signal shared by a run, its stages and their HTTP calls.

    ``sleep()`` and ``guard()`` return control as soon as ``cancel()`` is
    called, so a run aborts within one backoff window or one in-flight
    request rather than after it.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelledError(self.reason or "cancelled")

    async def sleep(self, seconds: float) -> None:
        """Wait *seconds*, raising ``PipelineCancelledError`` early on cancel."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        On cancel the underlying task is cancelled and
        ``PipelineCancelledError`` is raised.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
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
        await asyncio.gather(task, return_exceptions=True)
        raise PipelineCancelledError(self.reason or "cancelled")


async def cancellable_sleep(seconds: float, token: CancellationToken | None = None) -> None:
    """Backoff delay used by the provider retry loop."""
    if token is None:
        await asyncio.sleep(seconds)
    else:
        await token.sleep(seconds)
