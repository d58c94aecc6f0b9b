"""Freshness cache holding an adapter's last fetched row set.

Refreshes are serialized on an ``asyncio.Lock``: a reader that finds the
cache stale while another refresh is running waits for it and then re-checks
staleness instead of fetching again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta
from typing import Any

from gameinsights.adapters.datasource.types import SchemaInfo, utc_now

Row = dict[str, Any]
Loader = Callable[[], Awaitable[tuple[list[Row], SchemaInfo]]]
Clock = Callable[[], datetime]


class FreshnessCache:
    """Time-boxed cache of rows, schema and fetch timestamp.

    Attributes:
        refresh_interval: How long a fetch stays fresh.
    """

    def __init__(self, refresh_interval_minutes: float = 5, clock: Clock = utc_now) -> None:
        """Initialize an empty cache.

        Args:
            refresh_interval_minutes: Freshness window.
            clock: Source of the current time, injectable for tests.
        """
        self.refresh_interval = timedelta(minutes=refresh_interval_minutes)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._rows: tuple[Row, ...] = ()
        self._schema: SchemaInfo | None = None
        self._last_fetch: datetime | None = None

    @property
    def rows(self) -> tuple[Row, ...]:
        """Cached rows as an immutable sequence of copies."""
        return tuple(dict(row) for row in self._rows)

    @property
    def schema(self) -> SchemaInfo | None:
        """Schema of the cached rows."""
        return self._schema

    @property
    def last_fetch(self) -> datetime | None:
        """When the cached rows were fetched."""
        return self._last_fetch

    @property
    def is_empty(self) -> bool:
        """True before the first store and after ``clear``."""
        return self._last_fetch is None

    def now(self) -> datetime:
        """Current time according to the cache clock."""
        return self._clock()

    def is_stale(self, now: datetime | None = None) -> bool:
        """True iff nothing was fetched yet or the interval has elapsed."""
        if self._last_fetch is None:
            return True
        current = now if now is not None else self._clock()
        return current - self._last_fetch > self.refresh_interval

    def store(
        self,
        rows: Sequence[Row],
        schema: SchemaInfo,
        fetched_at: datetime | None = None,
    ) -> None:
        """Replace the cached state in one step."""
        self._rows = tuple(dict(row) for row in rows)
        self._schema = schema
        self._last_fetch = fetched_at if fetched_at is not None else self._clock()

    def clear(self) -> None:
        """Drop all cached state."""
        self._rows = ()
        self._schema = None
        self._last_fetch = None

    async def refresh(self, loader: Loader) -> None:
        """Run ``loader`` and store its result, never overlapping another refresh.

        Errors from ``loader`` propagate and leave the previous state intact.
        """
        async with self._lock:
            await self._load(loader)

    async def ensure_fresh(self, loader: Loader) -> bool:
        """Refresh if stale.

        Returns:
            True if this call performed a fetch.
        """
        if not self.is_stale():
            return False
        async with self._lock:
            # Another caller may have refreshed while we waited.
            if not self.is_stale():
                return False
            await self._load(loader)
            return True

    async def _load(self, loader: Loader) -> None:
        rows, schema = await loader()
        self.store(rows, schema)
