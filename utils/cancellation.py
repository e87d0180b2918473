"""Cooperative cancellation shared by reference across one agent turn."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from models.errors import OperationCancelled

T = TypeVar("T")


class CancellationToken:
    """
    Cancellation flag checked at each suspension point.

    Components call `raise_if_cancelled()` before issuing an upstream call and
    before appending a result. `guard()` races an in-flight awaitable against
    the token so a disconnected caller stops network I/O early.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token fires first, in which case raise OperationCancelled."""
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            work.cancel()
            waiter.cancel()
            raise
        if work in done:
            waiter.cancel()
            return work.result()
        work.cancel()
        raise OperationCancelled(self.reason or "cancelled")


def never_cancelled() -> CancellationToken:
    """A fresh token nobody holds a reference to cancel."""
    return CancellationToken()
