"""Base adapter interface and the shared connection lifecycle.

``BaseAdapter`` is the abstract contract every adapter implements. It holds
no state. ``DataSourceAdapter`` implements that contract by composing a
per-connection ``Connection`` (config, freshness cache, cancellation token
and optional HTTP session) and delegating backend work to a few hooks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, ClassVar, Generic, Self, TypeVar

import httpx
import structlog

from gameinsights.adapters.datasource.cache import FreshnessCache
from gameinsights.adapters.datasource.cancellation import CancellationToken
from gameinsights.adapters.datasource.config import AdapterConfig, parse_config
from gameinsights.adapters.datasource.errors import (
    AccessDeniedError,
    AdapterError,
    AuthenticationFailedError,
    ConfigurationError,
    ConnectionFailedError,
    InvalidIdentifierError,
    NotConnectedError,
    QueryCancelledError,
    UnsupportedOperationError,
)
from gameinsights.adapters.datasource.filtering import apply_query
from gameinsights.adapters.datasource.http import HTTPSession
from gameinsights.adapters.datasource.inference import build_schema
from gameinsights.adapters.datasource.types import (
    AdapterCapabilities,
    DataQuery,
    NormalizedData,
    NormalizedMetadata,
    SchemaInfo,
    SourceType,
    utc_now,
)
from gameinsights.settings import Settings, get_settings

logger = structlog.get_logger()

Row = dict[str, Any]
ConfigT = TypeVar("ConfigT", bound=AdapterConfig)

# Errors that already describe why connect failed and are re-raised as-is.
_CONNECT_PASSTHROUGH: tuple[type[AdapterError], ...] = (
    ConfigurationError,
    InvalidIdentifierError,
    UnsupportedOperationError,
    AuthenticationFailedError,
    AccessDeniedError,
    ConnectionFailedError,
    QueryCancelledError,
)


class BaseAdapter(ABC):
    """Abstract contract for all data source adapters.

    All adapters must provide:
    - Connection management (connect/disconnect)
    - Connection testing
    - Schema inference and data fetching
    - A static capability declaration
    - Async context manager support
    """

    @property
    @abstractmethod
    def source_type(self) -> SourceType:
        """Get the source type for this adapter."""
        ...

    @property
    @abstractmethod
    def capabilities(self) -> AdapterCapabilities:
        """Get the capabilities of this adapter."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if adapter is currently connected."""
        ...

    @abstractmethod
    async def connect(self, config: AdapterConfig | Mapping[str, Any]) -> None:
        """Validate ``config``, open the connection and perform the initial fetch.

        Raises:
            ConfigurationError: If a required field is missing or malformed.
            ConnectionFailedError: If the handshake or initial fetch fails.
            AuthenticationFailedError: If credentials are rejected.
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Cancel in-flight requests and drop all state. Never raises."""
        ...

    @abstractmethod
    async def test_connection(self) -> bool:
        """Probe the backend. Returns False instead of raising."""
        ...

    @abstractmethod
    async def fetch_schema(self) -> SchemaInfo:
        """Schema of the (refreshed if stale) cached rows.

        Raises:
            NotConnectedError: If called before a successful connect.
        """
        ...

    @abstractmethod
    async def fetch_data(self, query: DataQuery | None = None) -> NormalizedData:
        """Rows matching ``query``.

        Raises:
            NotConnectedError: If called before a successful connect.
        """
        ...

    @abstractmethod
    async def refresh(self) -> None:
        """Force a refetch regardless of freshness."""
        ...

    def get_capabilities(self) -> AdapterCapabilities:
        """Alias of ``capabilities``."""
        return self.capabilities

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Async context manager exit."""
        await self.disconnect()


class Connection(Generic[ConfigT]):
    """State of one live adapter connection.

    A new instance is created on every connect and discarded on disconnect,
    so nothing survives from one connection to the next.

    Attributes:
        config: The validated configuration.
        cache: Freshness cache for this connection.
        token: Cancellation token threaded through every request.
        http: HTTP session, when the adapter opened one.
    """

    def __init__(
        self,
        config: ConfigT,
        refresh_interval_minutes: float,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.cache = FreshnessCache(refresh_interval_minutes, clock)
        self.token = CancellationToken()
        self.http: HTTPSession | None = None

    def open_http(
        self,
        source: str,
        *,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> HTTPSession:
        """Create this connection's HTTP session."""
        self.http = HTTPSession(
            source=source,
            token=self.token,
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        return self.http

    @property
    def session(self) -> HTTPSession:
        """The HTTP session. Only valid after ``open_http``."""
        if self.http is None:
            raise NotConnectedError(self.config.name)
        return self.http

    async def close(self) -> None:
        """Cancel pending I/O, close the HTTP session and clear the cache."""
        self.token.cancel()
        if self.http is not None:
            await self.http.aclose()
            self.http = None
        self.cache.clear()


class DataSourceAdapter(BaseAdapter, Generic[ConfigT]):
    """Adapter built on a per-connection ``Connection``.

    Subclasses declare ``config_model``, ``SOURCE_TYPE`` and ``CAPABILITIES``
    and implement ``_open``, ``_load`` and ``_probe``. Sources that push
    queries to their backend override ``_query``.
    """

    config_model: ClassVar[type[AdapterConfig]]
    connection_class: ClassVar[type[Connection[Any]]] = Connection
    SOURCE_TYPE: ClassVar[SourceType]
    CAPABILITIES: ClassVar[AdapterCapabilities]
    # Union the keys of this many rows when naming columns.
    KEY_SCAN: ClassVar[int | None] = None

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Create a disconnected adapter.

        Args:
            settings: Runtime settings. Defaults to the environment.
            transport: httpx transport for every session this adapter opens.
            clock: Time source for the freshness cache.
        """
        self._settings = settings or get_settings()
        self._transport = transport
        self._clock = clock
        self._connection: Connection[ConfigT] | None = None

    @property
    def source_type(self) -> SourceType:
        """Get the source type for this adapter."""
        return self.SOURCE_TYPE

    @property
    def capabilities(self) -> AdapterCapabilities:
        """Get the capabilities of this adapter."""
        return self.CAPABILITIES

    @property
    def is_connected(self) -> bool:
        """Check if adapter is currently connected."""
        return self._connection is not None

    @property
    def config(self) -> ConfigT | None:
        """Configuration of the live connection, if any."""
        return self._connection.config if self._connection else None

    @property
    def max_rows(self) -> int:
        """Row cap applied to pushed-down queries."""
        return min(self.CAPABILITIES.max_rows_per_query, self._settings.max_rows)

    @property
    def request_timeout(self) -> float:
        """Per-request timeout in seconds."""
        return self._settings.request_timeout_seconds

    def _require(self) -> Connection[ConfigT]:
        if self._connection is None:
            raise NotConnectedError(self.SOURCE_TYPE.value)
        return self._connection

    # Hooks

    def _validate(self, config: ConfigT) -> None:
        """Extra synchronous config checks. Raise ``ConfigurationError``."""

    @abstractmethod
    async def _open(self, conn: Connection[ConfigT]) -> None:
        """Open sessions and perform the handshake."""
        ...

    @abstractmethod
    async def _load(self, conn: Connection[ConfigT]) -> list[Row]:
        """Fetch the full row set for the cache."""
        ...

    @abstractmethod
    async def _probe(self, conn: Connection[ConfigT]) -> bool:
        """Lightweight reachability check."""
        ...

    async def _describe(self, conn: Connection[ConfigT], rows: list[Row]) -> SchemaInfo:
        """Schema for freshly loaded rows."""
        return build_schema(rows, key_scan=self.KEY_SCAN)

    async def _query(
        self, conn: Connection[ConfigT], query: DataQuery | None
    ) -> list[Row]:
        """Evaluate ``query`` against the cached rows, capping ``limit`` at ``max_rows``."""
        if query is not None and query.limit is not None and query.limit > self.max_rows:
            query = query.model_copy(update={"limit": self.max_rows})
        return apply_query(conn.cache.rows, query)

    async def _teardown(self, conn: Connection[ConfigT]) -> None:
        """Best-effort remote cleanup on disconnect."""

    def _source_label(self, config: ConfigT) -> str:
        return f"{self.SOURCE_TYPE.value}:{config.name}"

    def _refresh_interval(self, config: ConfigT) -> float:
        if config.refresh_interval_minutes is not None:
            return config.refresh_interval_minutes
        return self._settings.default_refresh_interval_minutes

    def _loader(self, conn: Connection[ConfigT]) -> Callable[[], Any]:
        async def load() -> tuple[list[Row], SchemaInfo]:
            rows = await self._load(conn)
            return rows, await self._describe(conn, rows)

        return load

    # Contract

    async def connect(self, config: AdapterConfig | Mapping[str, Any]) -> None:
        """Validate ``config``, open the connection and perform the initial fetch.

        Connecting an already connected adapter disconnects it first. On any
        failure the adapter is left disconnected with no cached state.

        Raises:
            ConfigurationError: If a required field is missing or malformed.
            ConnectionFailedError: If the handshake or initial fetch fails.
            AuthenticationFailedError: If credentials are rejected.
        """
        if self._connection is not None:
            await self.disconnect()

        parsed: ConfigT = parse_config(config, self.config_model)  # type: ignore[assignment]
        self._validate(parsed)

        conn: Connection[ConfigT] = self.connection_class(
            parsed, self._refresh_interval(parsed), self._clock
        )
        self._connection = conn
        try:
            await self._open(conn)
            await conn.cache.refresh(self._loader(conn))
        except AdapterError as e:
            logger.warning(
                "adapter_connect_failed",
                source_type=self.SOURCE_TYPE.value,
                name=parsed.name,
                error_code=e.code.value,
            )
            await self._discard(conn, teardown=True)
            if isinstance(e, _CONNECT_PASSTHROUGH):
                raise
            raise ConnectionFailedError(
                message=f"Failed to connect to {self._source_label(parsed)}: {e.message}",
                details={"cause": e.code.value, **e.details},
            ) from e
        except BaseException:
            await self._discard(conn)
            raise

        logger.info(
            "adapter_connected",
            source_type=self.SOURCE_TYPE.value,
            name=parsed.name,
            row_count=len(conn.cache.rows),
        )

    async def _discard(self, conn: Connection[ConfigT], teardown: bool = False) -> None:
        if self._connection is conn:
            self._connection = None
        conn.token.cancel()
        if teardown:
            await self._teardown_quietly(conn)
        await conn.close()

    async def _teardown_quietly(self, conn: Connection[ConfigT]) -> None:
        try:
            await self._teardown(conn)
        except (AdapterError, httpx.HTTPError) as e:
            logger.warning(
                "adapter_teardown_failed",
                source_type=self.SOURCE_TYPE.value,
                name=conn.config.name,
                error=str(e),
            )

    async def disconnect(self) -> None:
        """Cancel in-flight requests, tear down the backend session and drop state.

        Idempotent. Teardown failures are logged, never raised.
        """
        conn = self._connection
        if conn is None:
            return
        self._connection = None
        conn.token.cancel()
        await self._teardown_quietly(conn)
        await conn.close()
        logger.info(
            "adapter_disconnected",
            source_type=self.SOURCE_TYPE.value,
            name=conn.config.name,
        )

    async def test_connection(self) -> bool:
        """Probe the backend. Returns False when not connected or on any failure."""
        conn = self._connection
        if conn is None:
            return False
        try:
            return await self._probe(conn)
        except (AdapterError, httpx.HTTPError):
            return False

    async def fetch_schema(self) -> SchemaInfo:
        """Schema of the (refreshed if stale) cached rows.

        Raises:
            NotConnectedError: If called before a successful connect.
        """
        conn = self._require()
        await conn.cache.ensure_fresh(self._loader(conn))
        schema = conn.cache.schema
        if schema is None:
            raise NotConnectedError(self.SOURCE_TYPE.value)
        return schema

    async def fetch_data(self, query: DataQuery | None = None) -> NormalizedData:
        """Rows matching ``query``, refreshing a stale cache first.

        Raises:
            NotConnectedError: If called before a successful connect.
            InvalidIdentifierError: If a pushed-down query names a bad column.
            QueryError: If the backend rejects the query.
        """
        conn = self._require()
        await conn.cache.ensure_fresh(self._loader(conn))
        rows = await self._query(conn, query)

        if query is not None and query.columns:
            columns = list(query.columns)
        elif conn.cache.schema is not None and conn.cache.schema.columns:
            columns = conn.cache.schema.column_names
        else:
            columns = list(rows[0].keys()) if rows else []

        fetched_at = conn.cache.last_fetch or conn.cache.now()
        return NormalizedData(
            columns=columns,
            rows=rows,
            metadata=NormalizedMetadata(
                source=self._source_label(conn.config),
                fetched_at=fetched_at.isoformat(),
                row_count=len(rows),
            ),
        )

    async def refresh(self) -> None:
        """Force a refetch regardless of freshness.

        Raises:
            NotConnectedError: If called before a successful connect.
        """
        conn = self._require()
        await conn.cache.refresh(self._loader(conn))
        logger.info(
            "adapter_refreshed",
            source_type=self.SOURCE_TYPE.value,
            name=conn.config.name,
            row_count=len(conn.cache.rows),
        )
