"""Cooperative cancellation for in-flight adapter I/O.

Each adapter connection owns one ``CancellationToken``. Every network call is
run through ``CancellationToken.run`` so that ``disconnect`` can abort it.
Cancelling after the response has been received is a no-op.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from gameinsights.adapters.datasource.errors import QueryCancelledError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal shared by the I/O of one connection."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._tasks: set[asyncio.Task[object]] = set()

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel`` has been called."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation and abort every pending operation."""
        self._event.set()
        for task in list(self._tasks):
            task.cancel()

    def raise_if_cancelled(self) -> None:
        """Raise ``QueryCancelledError`` if the token has fired."""
        if self.cancelled:
            raise QueryCancelledError()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Args:
            awaitable: The I/O operation to run.

        Returns:
            The operation's result.

        Raises:
            QueryCancelledError: If the token fired before or while the
                operation was pending.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise QueryCancelledError()

        task: asyncio.Task[T] = asyncio.ensure_future(awaitable)
        self._tasks.add(task)  # type: ignore[arg-type]
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError as e:
            if self.cancelled:
                task.cancel()
                raise QueryCancelledError() from e
            # The caller itself was cancelled.
            task.cancel()
            raise
        finally:
            self._tasks.discard(task)  # type: ignore[arg-type]
