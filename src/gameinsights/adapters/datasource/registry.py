"""Adapter factory and registry of live connections.

``adapter_class_for`` maps a source type to its adapter class with an
exhaustive match, so adding a ``SourceType`` member without an adapter is a
type error. ``AdapterRegistry`` is a plain value owned by its creator that
maps connection ids to connected adapters.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any, assert_never

import httpx
import structlog

from gameinsights.adapters.datasource.api.firebase import FirebaseAdapter
from gameinsights.adapters.datasource.api.google_sheets import GoogleSheetsAdapter
from gameinsights.adapters.datasource.api.playfab import PlayFabAdapter
from gameinsights.adapters.datasource.api.rest import RestAPIAdapter
from gameinsights.adapters.datasource.api.unity import UnityAdapter
from gameinsights.adapters.datasource.api.webhook import WebhookAdapter
from gameinsights.adapters.datasource.base import DataSourceAdapter
from gameinsights.adapters.datasource.config import AdapterConfig, parse_config
from gameinsights.adapters.datasource.errors import ConfigurationError
from gameinsights.adapters.datasource.file.local import FileAdapter
from gameinsights.adapters.datasource.sql.postgres import PostgreSQLAdapter
from gameinsights.adapters.datasource.sql.supabase import SupabaseAdapter
from gameinsights.adapters.datasource.types import (
    SOURCE_CATEGORIES,
    SourceCategory,
    SourceType,
)
from gameinsights.settings import Settings

logger = structlog.get_logger()


def adapter_class_for(source_type: SourceType) -> type[DataSourceAdapter[Any]]:
    """Adapter class implementing ``source_type``."""
    match source_type:
        case SourceType.FILE:
            return FileAdapter
        case SourceType.REST_API:
            return RestAPIAdapter
        case SourceType.GOOGLE_SHEETS:
            return GoogleSheetsAdapter
        case SourceType.WEBHOOK:
            return WebhookAdapter
        case SourceType.POSTGRESQL:
            return PostgreSQLAdapter
        case SourceType.SUPABASE:
            return SupabaseAdapter
        case SourceType.PLAYFAB:
            return PlayFabAdapter
        case SourceType.UNITY:
            return UnityAdapter
        case SourceType.FIREBASE:
            return FirebaseAdapter
        case _:
            assert_never(source_type)


def _source_type(source: SourceType | str | AdapterConfig | Mapping[str, Any]) -> SourceType:
    if isinstance(source, SourceType):
        return source
    if isinstance(source, AdapterConfig):
        value: Any = source.source_type
    elif isinstance(source, Mapping):
        value = source.get("source_type")
    else:
        value = source
    try:
        return SourceType(value)
    except ValueError as e:
        raise ConfigurationError(
            message=f"Unknown source type: {value!r}",
            field="source_type",
        ) from e


def create_adapter(
    source: SourceType | str | AdapterConfig | Mapping[str, Any],
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DataSourceAdapter[Any]:
    """Create a disconnected adapter.

    Args:
        source: A source type, or a config whose ``source_type`` decides.
        settings: Runtime settings passed to the adapter.
        transport: Optional httpx transport passed to the adapter.

    Raises:
        ConfigurationError: If the source type is unknown.
    """
    adapter_class = adapter_class_for(_source_type(source))
    return adapter_class(settings, transport=transport)


@asynccontextmanager
async def adapter_for(
    config: AdapterConfig | Mapping[str, Any],
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[DataSourceAdapter[Any]]:
    """Connect an adapter for ``config`` and disconnect it on exit.

    Usage:
        async with adapter_for({"source_type": "rest_api", ...}) as adapter:
            data = await adapter.fetch_data()
    """
    parsed = parse_config(config)
    adapter = create_adapter(parsed, settings, transport=transport)
    await adapter.connect(parsed)
    async with adapter:
        yield adapter


class AdapterRegistry:
    """Connected adapters keyed by connection id.

    Each connection id owns exactly one adapter instance; no two configs
    share an adapter. The registry is created and owned by its caller.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create an empty registry.

        Args:
            settings: Settings handed to every adapter the registry creates.
            transport: httpx transport handed to every adapter it creates.
        """
        self._settings = settings
        self._transport = transport
        self._adapters: dict[str, DataSourceAdapter[Any]] = {}

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    @property
    def connection_ids(self) -> list[str]:
        """Ids of all registered connections, in registration order."""
        return list(self._adapters)

    def register(self, connection_id: str, adapter: DataSourceAdapter[Any]) -> None:
        """Register an adapter the caller created and connected.

        Raises:
            ValueError: If the id is taken by a different adapter.
        """
        existing = self._adapters.get(connection_id)
        if existing is not None and existing is not adapter:
            raise ValueError(f"Connection id already registered: {connection_id}")
        self._adapters[connection_id] = adapter

    def get(self, connection_id: str) -> DataSourceAdapter[Any] | None:
        """Adapter registered under ``connection_id``, if any."""
        return self._adapters.get(connection_id)

    def all(self) -> list[DataSourceAdapter[Any]]:
        """Every registered adapter."""
        return list(self._adapters.values())

    def by_category(self, category: SourceCategory) -> list[DataSourceAdapter[Any]]:
        """Registered adapters whose source type falls in ``category``."""
        return [a for a in self._adapters.values() if SOURCE_CATEGORIES[a.source_type] == category]

    async def connect(
        self, connection_id: str, config: AdapterConfig | Mapping[str, Any]
    ) -> DataSourceAdapter[Any]:
        """Create and connect an adapter, then register it.

        An adapter already registered under ``connection_id`` is disconnected
        and replaced. Nothing is registered when connecting fails.

        Raises:
            ConfigurationError: If ``config`` is invalid.
            ConnectionFailedError: If the connection cannot be established.
        """
        parsed = parse_config(config)
        adapter = create_adapter(parsed, self._settings, transport=self._transport)
        await adapter.connect(parsed)
        await self.disconnect(connection_id)
        self._adapters[connection_id] = adapter
        logger.info(
            "registry_connection_added",
            connection_id=connection_id,
            source_type=adapter.source_type.value,
        )
        return adapter

    async def disconnect(self, connection_id: str) -> bool:
        """Disconnect and forget one connection. Returns whether it existed."""
        adapter = self._adapters.pop(connection_id, None)
        if adapter is None:
            return False
        await adapter.disconnect()
        logger.info("registry_connection_removed", connection_id=connection_id)
        return True

    async def disconnect_all(self) -> None:
        """Disconnect every registered adapter."""
        for connection_id in list(self._adapters):
            await self.disconnect(connection_id)
