"""Supabase adapter implementation.

Reads one table of a Supabase project through its PostgREST endpoint
(``/rest/v1``). Structured queries are translated to PostgREST parameters
and pushed down; the project's optional ``get_tables``/``get_columns`` RPC
functions supply catalog metadata when they exist.
"""

from __future__ import annotations

from typing import Any, cast

import structlog

from gameinsights.adapters.datasource.base import Connection, DataSourceAdapter
from gameinsights.adapters.datasource.config import SupabaseConfig
from gameinsights.adapters.datasource.errors import ConnectionFailedError
from gameinsights.adapters.datasource.http import bearer_auth
from gameinsights.adapters.datasource.inference import build_schema
from gameinsights.adapters.datasource.translation import PostgRESTQueryBuilder
from gameinsights.adapters.datasource.types import (
    AdapterCapabilities,
    DataQuery,
    SchemaInfo,
    SourceType,
)
from gameinsights.safety.validator import sanitize_identifier

logger = structlog.get_logger()

REST_PATH = "/rest/v1"

SUPABASE_CAPABILITIES = AdapterCapabilities(
    supports_realtime=True,
    supports_filtering=True,
    supports_aggregation=True,
    max_rows_per_query=100000,
)

Row = dict[str, Any]


class SupabaseConnection(Connection[SupabaseConfig]):
    """Connection that also holds catalog metadata."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.tables: list[Row] = []
        self.columns: list[Row] = []


class SupabaseAdapter(DataSourceAdapter[SupabaseConfig]):
    """Supabase (PostgREST) adapter.

    Connect checks that the configured table exists, reads its column
    metadata and loads it. Queries with filters, ordering or paging are
    sent to PostgREST; projections alone are applied to the cache.
    """

    config_model = SupabaseConfig
    connection_class = SupabaseConnection
    SOURCE_TYPE = SourceType.SUPABASE
    CAPABILITIES = SUPABASE_CAPABILITIES

    def _source_label(self, config: SupabaseConfig) -> str:
        return f"supabase:{config.table_name}"

    def _validate(self, config: SupabaseConfig) -> None:
        sanitize_identifier(config.table_name, "table")
        sanitize_identifier(config.db_schema, "schema")
        for column in config.select_columns or []:
            sanitize_identifier(column, "column")

    def _builder(self, config: SupabaseConfig) -> PostgRESTQueryBuilder:
        return PostgRESTQueryBuilder(config.table_name, max_rows=self.max_rows)

    def _headers(self, config: SupabaseConfig) -> dict[str, str]:
        headers = {
            "apikey": config.api_key,
            "Content-Type": "application/json",
            "Prefer": "return=representation",
            **bearer_auth(config.api_key),
        }
        if config.db_schema != "public":
            headers["Accept-Profile"] = config.db_schema
            headers["Content-Profile"] = config.db_schema
        return headers

    async def _optional_rpc(
        self, conn: Connection[SupabaseConfig], function: str, params: dict[str, str]
    ) -> list[Row] | None:
        """GET an RPC that projects may not define. ``None`` when unavailable."""
        response = await conn.session.request(
            "GET", f"{REST_PATH}/rpc/{function}", params=params, check_status=False
        )
        if not response.is_success:
            logger.debug(
                "supabase_rpc_unavailable", function=function, status=response.status_code
            )
            return None
        try:
            data = response.json()
        except ValueError:
            logger.debug("supabase_rpc_unavailable", function=function, status="non_json")
            return None
        return [dict(item) for item in data] if isinstance(data, list) else None

    async def _open(self, conn: Connection[SupabaseConfig]) -> None:
        sb = cast(SupabaseConnection, conn)
        config = sb.config
        sb.open_http(
            f"Supabase table {config.table_name}",
            base_url=config.project_url,
            headers=self._headers(config),
            timeout=self.request_timeout,
            transport=self._transport,
        )

        tables = await self._optional_rpc(sb, "get_tables", {"schema_name": config.db_schema})
        sb.tables = tables or [
            {
                "table_name": config.table_name,
                "table_schema": config.db_schema,
                "table_type": "BASE TABLE",
            }
        ]
        if not any(t.get("table_name") == config.table_name for t in sb.tables):
            raise ConnectionFailedError(
                message=(
                    f"Table {config.table_name!r} not found in schema {config.db_schema!r}"
                ),
                details={"table": config.table_name, "schema": config.db_schema},
            )
        sb.columns = (
            await self._optional_rpc(sb, "get_columns", {"table_name": config.table_name})
            or []
        )

    async def _get_rows(
        self, conn: Connection[SupabaseConfig], params: list[tuple[str, str]]
    ) -> list[Row]:
        data = await conn.session.get_json(f"{REST_PATH}/{conn.config.table_name}", params=params)
        if not isinstance(data, list):
            return []
        return [dict(row) for row in data]

    async def _load(self, conn: Connection[SupabaseConfig]) -> list[Row]:
        config = conn.config
        return await self._get_rows(conn, self._builder(config).build(select=config.select_columns))

    async def _describe(self, conn: Connection[SupabaseConfig], rows: list[Row]) -> SchemaInfo:
        columns = cast(SupabaseConnection, conn).columns
        return build_schema(
            rows,
            native_types={c["column_name"]: c.get("data_type") for c in columns},
            nullable_hints={c["column_name"]: c.get("is_nullable") == "YES" for c in columns},
        )

    async def _query(self, conn: Connection[SupabaseConfig], query: DataQuery | None) -> list[Row]:
        if query is None or not (
            query.filters
            or query.order_by is not None
            or query.limit is not None
            or query.offset is not None
        ):
            return await super()._query(conn, query)
        params = self._builder(conn.config).build(query, select=conn.config.select_columns)
        return await self._get_rows(conn, params)

    async def _probe(self, conn: Connection[SupabaseConfig]) -> bool:
        response = await conn.session.request("HEAD", f"{REST_PATH}/", check_status=False)
        return response.is_success

    async def execute_rpc(self, function: str, params: dict[str, Any] | None = None) -> Any:
        """Call a Postgres function exposed by PostgREST.

        Args:
            function: Function name. Must be a plain identifier.
            params: Named arguments sent as the JSON body.

        Returns:
            The decoded JSON result.

        Raises:
            NotConnectedError: If called before a successful connect.
            InvalidIdentifierError: If ``function`` is not a plain identifier.
            QueryError: If PostgREST rejects the call.
        """
        conn = self._require()
        sanitize_identifier(function, "function")
        return await conn.session.post_json(f"{REST_PATH}/rpc/{function}", params or {})

    def list_tables(self) -> list[Row]:
        """Tables reported by ``get_tables``, or just the configured table."""
        conn = self._connection
        if not isinstance(conn, SupabaseConnection):
            return []
        return [dict(t) for t in conn.tables]

    def table_columns(self) -> list[Row]:
        """Column metadata reported by ``get_columns``, if the project defines it."""
        conn = self._connection
        if not isinstance(conn, SupabaseConnection):
            return []
        return [dict(c) for c in conn.columns]
