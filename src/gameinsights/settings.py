"""Runtime settings for the adapter layer.

Values are read from environment variables once and cached. Adapters accept
an explicit ``Settings`` instance so tests can override any of them.
"""

from __future__ import annotations

import os
from functools import lru_cache


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Adapter settings loaded from environment."""

    def __init__(self) -> None:
        """Load settings from environment variables."""
        self.default_refresh_interval_minutes = float(
            os.getenv("GAMEINSIGHTS_REFRESH_INTERVAL_MINUTES", "5")
        )
        self.request_timeout_seconds = float(
            os.getenv("GAMEINSIGHTS_REQUEST_TIMEOUT_SECONDS", "30")
        )
        self.postgres_proxy_url = os.getenv("GAMEINSIGHTS_POSTGRES_PROXY_URL", "")
        self.max_rows = int(os.getenv("GAMEINSIGHTS_MAX_ROWS", "100000"))

        # Logging
        self.log_level = os.getenv("GAMEINSIGHTS_LOG_LEVEL", "INFO")
        self.log_json = _env_bool("GAMEINSIGHTS_LOG_JSON", False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    return Settings()
