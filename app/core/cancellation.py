"""
Cooperative cancellation shared by the export and import pipelines.

One token is threaded through every call of a run. Loops check it before
starting new work and network calls are raced against it with `guard`, so a
cancelled run stops at the next suspension point.
"""

import asyncio
from typing import Awaitable, TypeVar

from services.exceptions import OperationCancelled

T = TypeVar("T")


class CancellationToken:
    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, aborting it as soon as the token is cancelled."""
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        try:
            await work
        except (asyncio.CancelledError, Exception):
            pass
        raise OperationCancelled()


def never_cancelled() -> CancellationToken:
    """A fresh token for callers that do not offer cancellation"""
    return CancellationToken()
