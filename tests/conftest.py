"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from gameinsights.settings import Settings


class FakeClock:
    """Manually advanced clock for freshness tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def anyio_backend() -> str:
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    """Return a fake clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Return settings built from a clean environment."""
    for name in (
        "GAMEINSIGHTS_REFRESH_INTERVAL_MINUTES",
        "GAMEINSIGHTS_REQUEST_TIMEOUT_SECONDS",
        "GAMEINSIGHTS_POSTGRES_PROXY_URL",
        "GAMEINSIGHTS_MAX_ROWS",
        "GAMEINSIGHTS_LOG_LEVEL",
        "GAMEINSIGHTS_LOG_JSON",
    ):
        monkeypatch.delenv(name, raising=False)
    return Settings()
