"""Tests for SupabaseAdapter against a mock PostgREST server."""

import json

import httpx
import pytest

from gameinsights.adapters.datasource.errors import (
    AuthenticationFailedError,
    ConnectionFailedError,
    InvalidIdentifierError,
)
from gameinsights.adapters.datasource.sql.supabase import SupabaseAdapter
from gameinsights.adapters.datasource.types import (
    ColumnType,
    DataQuery,
    FilterOperator,
    OrderBy,
    QueryFilter,
)

PROJECT = "https://abcd.supabase.co"
ROWS = [
    {"id": 1, "player": "ana", "score": 30},
    {"id": 2, "player": "bo", "score": 10},
]


class PostgREST:
    """Mock PostgREST endpoint."""

    def __init__(self, rpc=True, tables=None):
        self.rpc = rpc
        self.tables = tables if tables is not None else [{"table_name": "scores"}]
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/rest/v1/rpc/"):
            function = path.rsplit("/", 1)[-1]
            if request.method == "POST":
                return httpx.Response(200, json={"called": function, "args": json.loads(request.content)})
            if not self.rpc:
                return httpx.Response(404, json={"message": "function not found"})
            if function == "get_tables":
                return httpx.Response(200, json=self.tables)
            return httpx.Response(
                200,
                json=[
                    {"column_name": "id", "data_type": "bigint", "is_nullable": "NO"},
                    {"column_name": "player", "data_type": "text", "is_nullable": "YES"},
                ],
            )
        if request.method == "HEAD":
            return httpx.Response(200)
        return httpx.Response(200, json=ROWS)

    def table_requests(self):
        return [r for r in self.requests if r.url.path == "/rest/v1/scores"]


def config(**overrides):
    return {
        "name": "scores",
        "source_type": "supabase",
        "project_url": PROJECT,
        "api_key": "anon-key",
        "table_name": "scores",
        **overrides,
    }


class TestSupabaseAdapter:
    """Tests for the Supabase adapter."""

    @pytest.mark.asyncio
    async def test_connect_headers_and_load(self, settings):
        """Connect sends the key headers and loads the table."""
        server = PostgREST()
        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(server))

        await adapter.connect(config())

        load = server.table_requests()[0]
        assert load.headers["apikey"] == "anon-key"
        assert load.headers["Authorization"] == "Bearer anon-key"
        assert "Accept-Profile" not in load.headers
        assert load.url.params.multi_items() == [("select", "*"), ("limit", "100000")]
        assert adapter.list_tables() == [{"table_name": "scores"}]
        assert len(adapter.table_columns()) == 2

    @pytest.mark.asyncio
    async def test_schema_profile_headers(self, settings):
        """A non-public schema is selected with profile headers."""
        server = PostgREST()
        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(server))

        await adapter.connect(config(schema="analytics"))

        load = server.table_requests()[0]
        assert load.headers["Accept-Profile"] == "analytics"
        assert load.headers["Content-Profile"] == "analytics"

    @pytest.mark.asyncio
    async def test_missing_rpcs_fall_back(self, settings):
        """Without catalog RPCs the configured table is assumed."""
        server = PostgREST(rpc=False)
        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(server))

        await adapter.connect(config())

        assert adapter.list_tables()[0]["table_name"] == "scores"
        assert adapter.table_columns() == []
        schema = await adapter.fetch_schema()
        assert schema.column_names == ["id", "player", "score"]

    @pytest.mark.asyncio
    async def test_unknown_table(self, settings):
        """A table missing from get_tables fails connect."""
        server = PostgREST(tables=[{"table_name": "other"}])
        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(server))

        with pytest.raises(ConnectionFailedError):
            await adapter.connect(config())

        assert server.table_requests() == []

    @pytest.mark.asyncio
    async def test_native_types(self, settings):
        """Column types come from get_columns when available."""
        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(PostgREST()))
        await adapter.connect(config())

        schema = await adapter.fetch_schema()
        by_name = {column.name: column for column in schema.columns}

        assert by_name["id"].type == ColumnType.NUMBER
        assert by_name["player"].nullable is True

    @pytest.mark.asyncio
    async def test_filtered_query_pushed_down(self, settings):
        """Filters and ordering become PostgREST parameters."""
        server = PostgREST()
        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(server))
        await adapter.connect(config(select_columns=["player", "score"]))

        await adapter.fetch_data(
            DataQuery(
                filters=[QueryFilter(column="score", operator=FilterOperator.GTE, value=20)],
                order_by=OrderBy(column="score", direction="desc"),
                limit=5,
            )
        )

        params = server.table_requests()[-1].url.params.multi_items()
        assert params == [
            ("select", "player,score"),
            ("score", "gte.20"),
            ("order", "score.desc"),
            ("limit", "5"),
        ]

    @pytest.mark.asyncio
    async def test_projection_served_from_cache(self, settings):
        """A projection alone makes no request."""
        server = PostgREST()
        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(server))
        await adapter.connect(config())
        before = len(server.requests)

        data = await adapter.fetch_data(DataQuery(columns=["player"]))

        assert len(server.requests) == before
        assert data.rows == [{"player": "ana"}, {"player": "bo"}]
        assert data.metadata.source == "supabase:scores"

    @pytest.mark.asyncio
    async def test_execute_rpc(self, settings):
        """RPC calls POST their arguments; bad names are refused."""
        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(PostgREST()))
        await adapter.connect(config())

        result = await adapter.execute_rpc("top_players", {"n": 3})

        assert result == {"called": "top_players", "args": {"n": 3}}
        with pytest.raises(InvalidIdentifierError):
            await adapter.execute_rpc("x; drop")

    @pytest.mark.asyncio
    async def test_invalid_select_column(self, settings):
        """Configured select columns must be plain identifiers."""
        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(PostgREST()))

        with pytest.raises(InvalidIdentifierError):
            await adapter.connect(config(select_columns=["score);--"]))

    @pytest.mark.asyncio
    async def test_bad_api_key(self, settings):
        """A 401 on load is an authentication failure."""

        def handler(request):
            if "/rpc/" in request.url.path:
                return httpx.Response(404)
            return httpx.Response(401, json={"message": "Invalid API key"})

        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(handler))

        with pytest.raises(AuthenticationFailedError):
            await adapter.connect(config())

    @pytest.mark.asyncio
    async def test_probe(self, settings):
        """test_connection sends HEAD to the REST root."""
        server = PostgREST()
        adapter = SupabaseAdapter(settings, transport=httpx.MockTransport(server))
        await adapter.connect(config())

        assert await adapter.test_connection() is True
        assert server.requests[-1].method == "HEAD"
