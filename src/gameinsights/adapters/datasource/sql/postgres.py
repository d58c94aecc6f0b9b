"""PostgreSQL adapter implementation.

PostgreSQL is reached through an HTTP proxy that owns the actual database
connection. Every action is a JSON POST to ``{proxy_url}/api/postgres/<action>``
answered with ``{"success": ..., "data": ..., "error": ...}``. Structured
queries are translated to SQL and pushed down to the server; caller supplied
SQL is checked by the read-only validator first.
"""

from __future__ import annotations

from typing import Any, cast

import structlog

from gameinsights.adapters.datasource.base import Connection, DataSourceAdapter
from gameinsights.adapters.datasource.config import PostgreSQLConfig
from gameinsights.adapters.datasource.errors import (
    ConfigurationError,
    ConnectionFailedError,
    QueryError,
)
from gameinsights.adapters.datasource.inference import build_schema
from gameinsights.adapters.datasource.translation import SQLQueryBuilder
from gameinsights.adapters.datasource.types import (
    AdapterCapabilities,
    DataQuery,
    NormalizedData,
    NormalizedMetadata,
    SchemaInfo,
    SourceType,
)
from gameinsights.safety.validator import sanitize_identifier, validate_read_only

logger = structlog.get_logger()

POSTGRES_CAPABILITIES = AdapterCapabilities(
    supports_realtime=False,
    supports_filtering=True,
    supports_aggregation=True,
    max_rows_per_query=100000,
)

TABLES_SQL = """
SELECT table_name, table_schema, table_type
FROM information_schema.tables
WHERE table_schema = $1
AND table_type IN ('BASE TABLE', 'VIEW')
ORDER BY table_name
"""

COLUMNS_SQL = """
SELECT column_name, data_type, is_nullable, column_default, character_maximum_length
FROM information_schema.columns
WHERE table_schema = $1
AND table_name = $2
ORDER BY ordinal_position
"""

Row = dict[str, Any]


def _pushes_down(query: DataQuery | None) -> bool:
    return query is not None and bool(
        query.filters
        or query.order_by is not None
        or query.limit is not None
        or query.offset is not None
    )


class PostgresConnection(Connection[PostgreSQLConfig]):
    """Connection that also holds the proxy session id and catalog metadata."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.connection_id: str | None = None
        self.tables: list[Row] = []
        self.columns: list[Row] = []


class PostgreSQLAdapter(DataSourceAdapter[PostgreSQLConfig]):
    """PostgreSQL adapter via the query proxy.

    Connect opens a proxy session, lists the schema's tables, reads the
    configured table's column metadata and loads the table (or the custom
    query). Queries with filters, ordering or paging against a configured
    table run on the server.
    """

    config_model = PostgreSQLConfig
    connection_class = PostgresConnection
    SOURCE_TYPE = SourceType.POSTGRESQL
    CAPABILITIES = POSTGRES_CAPABILITIES

    def _source_label(self, config: PostgreSQLConfig) -> str:
        return f"postgresql:{config.database}/{config.table_name or 'query'}"

    def _proxy_url(self, config: PostgreSQLConfig) -> str:
        return (config.proxy_url or self._settings.postgres_proxy_url).rstrip("/")

    def _builder(self, config: PostgreSQLConfig) -> SQLQueryBuilder:
        return SQLQueryBuilder(
            cast(str, config.table_name), schema=config.db_schema, max_rows=self.max_rows
        )

    def _validate(self, config: PostgreSQLConfig) -> None:
        if not self._proxy_url(config):
            raise ConfigurationError(
                message="proxy_url is required (or set GAMEINSIGHTS_POSTGRES_PROXY_URL)",
                field="proxy_url",
            )
        if not config.table_name and not config.custom_query:
            raise ConfigurationError(
                message="Either table_name or custom_query is required",
                field="table_name",
            )
        sanitize_identifier(config.db_schema, "schema")
        if config.table_name:
            sanitize_identifier(config.table_name, "table")
        if config.custom_query:
            validate_read_only(config.custom_query)

    async def _post(
        self,
        conn: Connection[PostgreSQLConfig],
        action: str,
        body: dict[str, Any],
        cancellable: bool = True,
    ) -> Any:
        """POST one proxy action and return its ``data``.

        Raises:
            QueryError: If the proxy answers non-2xx or ``success`` is false.
        """
        response = await conn.session.request(
            "POST",
            f"/api/postgres/{action}",
            json=body,
            check_status=False,
            cancellable=cancellable,
        )
        if not response.is_success:
            raise QueryError(
                message=f"Proxy error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise QueryError(
                message="Proxy returned a non-JSON response",
                status_code=response.status_code,
            ) from e
        if not isinstance(payload, dict) or not payload.get("success"):
            error = payload.get("error") if isinstance(payload, dict) else None
            raise QueryError(message=error or f"Proxy {action} failed")
        return payload.get("data")

    def _credentials(self, config: PostgreSQLConfig) -> dict[str, Any]:
        return {
            "host": config.host,
            "port": config.port,
            "database": config.database,
            "username": config.username,
            "password": config.password,
            "ssl": config.ssl,
        }

    async def _run(
        self,
        conn: Connection[PostgreSQLConfig],
        sql: str,
        params: list[Any] | None = None,
    ) -> list[Row]:
        conn = cast(PostgresConnection, conn)
        body: dict[str, Any] = {"connectionId": conn.connection_id, "sql": sql}
        if params is not None:
            body["params"] = params
        data = await self._post(conn, "query", body)
        return [dict(row) for row in data or []]

    async def _open(self, conn: Connection[PostgreSQLConfig]) -> None:
        pg = cast(PostgresConnection, conn)
        config = pg.config
        pg.open_http(
            f"PostgreSQL proxy for {config.database}",
            base_url=self._proxy_url(config),
            headers={"Content-Type": "application/json"},
            timeout=self.request_timeout,
            transport=self._transport,
        )
        data = await self._post(pg, "connect", self._credentials(config))
        connection_id = data.get("connectionId") if isinstance(data, dict) else None
        if not connection_id:
            raise ConnectionFailedError(
                message="PostgreSQL proxy did not return a connection id",
                details={"database": config.database},
            )
        pg.connection_id = connection_id

        pg.tables = await self._run(pg, TABLES_SQL, [config.db_schema])
        if config.table_name:
            pg.columns = await self._run(pg, COLUMNS_SQL, [config.db_schema, config.table_name])
        logger.debug(
            "postgres_catalog_loaded",
            database=config.database,
            tables=len(pg.tables),
            columns=len(pg.columns),
        )

    async def _load(self, conn: Connection[PostgreSQLConfig]) -> list[Row]:
        config = conn.config
        sql = config.custom_query or self._builder(config).build()
        return await self._run(conn, sql)

    async def _describe(self, conn: Connection[PostgreSQLConfig], rows: list[Row]) -> SchemaInfo:
        columns = cast(PostgresConnection, conn).columns
        return build_schema(
            rows,
            native_types={c["column_name"]: c.get("data_type") for c in columns},
            nullable_hints={c["column_name"]: c.get("is_nullable") == "YES" for c in columns},
        )

    async def _query(
        self, conn: Connection[PostgreSQLConfig], query: DataQuery | None
    ) -> list[Row]:
        config = conn.config
        if config.custom_query or not config.table_name or not _pushes_down(query):
            return await super()._query(conn, query)
        return await self._run(conn, self._builder(config).build(query))

    async def _teardown(self, conn: Connection[PostgreSQLConfig]) -> None:
        connection_id = cast(PostgresConnection, conn).connection_id
        if connection_id and conn.http is not None:
            await self._post(
                conn, "disconnect", {"connectionId": connection_id}, cancellable=False
            )

    async def _probe(self, conn: Connection[PostgreSQLConfig]) -> bool:
        data = await self._post(conn, "test", self._credentials(conn.config))
        return isinstance(data, dict) and data.get("connected") is True

    async def execute_query(self, sql: str) -> NormalizedData:
        """Run caller supplied read-only SQL on the server.

        Args:
            sql: A single ``SELECT`` or ``WITH`` statement.

        Returns:
            The result rows. The cache is not touched.

        Raises:
            NotConnectedError: If called before a successful connect.
            UnsupportedOperationError: If ``sql`` is not read-only.
            QueryError: If the proxy or the database rejects the query.
        """
        conn = self._require()
        validate_read_only(sql)
        rows = await self._run(conn, sql)
        return NormalizedData(
            columns=list(rows[0].keys()) if rows else [],
            rows=rows,
            metadata=NormalizedMetadata(
                source=f"postgresql:{conn.config.database}",
                fetched_at=conn.cache.now().isoformat(),
                row_count=len(rows),
            ),
        )

    def list_tables(self) -> list[Row]:
        """Tables and views of the configured schema, as listed on connect."""
        conn = self._connection
        if not isinstance(conn, PostgresConnection):
            return []
        return [dict(t) for t in conn.tables]

    def table_columns(self) -> list[Row]:
        """``information_schema`` column rows of the configured table."""
        conn = self._connection
        if not isinstance(conn, PostgresConnection):
            return []
        return [dict(c) for c in conn.columns]


