"""Generic REST API adapter implementation.

This module provides an adapter over any JSON endpoint that returns a list
of records, optionally nested under a dot-separated ``data_path``.
"""

from __future__ import annotations

from typing import Any

from gameinsights.adapters.datasource.base import Connection, DataSourceAdapter
from gameinsights.adapters.datasource.config import RestAPIConfig
from gameinsights.adapters.datasource.errors import QueryError
from gameinsights.adapters.datasource.http import basic_auth, bearer_auth
from gameinsights.adapters.datasource.types import AdapterCapabilities, SourceType

REST_API_CAPABILITIES = AdapterCapabilities(
    supports_realtime=True,
    supports_filtering=True,
    supports_aggregation=False,
    max_rows_per_query=10000,
)


def build_auth_headers(config: RestAPIConfig) -> dict[str, str]:
    """Request headers for the configured auth scheme plus custom headers."""
    headers = {"Content-Type": "application/json", **config.headers}
    if not config.auth_value:
        return headers
    if config.auth_type == "bearer":
        headers.update(bearer_auth(config.auth_value))
    elif config.auth_type == "apikey":
        headers[config.api_key_header] = config.auth_value
    elif config.auth_type == "basic":
        headers.update(basic_auth(config.auth_value))
    return headers


def extract_records(payload: Any, data_path: str | None) -> list[dict[str, Any]]:
    """Walk ``data_path`` into ``payload`` and return a list of row dicts.

    A single object is wrapped in a list. Scalar items become
    ``{"value": item}``.

    Raises:
        QueryError: If a path segment is missing.
    """
    data = payload
    if data_path:
        for segment in data_path.split("."):
            if isinstance(data, dict) and segment in data:
                data = data[segment]
            elif isinstance(data, list) and segment.isdigit() and int(segment) < len(data):
                data = data[int(segment)]
            else:
                raise QueryError(message=f"data_path segment {segment!r} not found in response")

    items = data if isinstance(data, list) else [data]
    return [item if isinstance(item, dict) else {"value": item} for item in items]


class RestAPIAdapter(DataSourceAdapter[RestAPIConfig]):
    """REST API adapter.

    Fetches the endpoint with GET on connect and whenever the cache goes
    stale. Queries are evaluated client-side.
    """

    config_model = RestAPIConfig
    SOURCE_TYPE = SourceType.REST_API
    CAPABILITIES = REST_API_CAPABILITIES

    def _source_label(self, config: RestAPIConfig) -> str:
        return config.endpoint

    async def _open(self, conn: Connection[RestAPIConfig]) -> None:
        conn.open_http(
            f"REST API {conn.config.name}",
            headers=build_auth_headers(conn.config),
            timeout=self.request_timeout,
            transport=self._transport,
        )

    async def _load(self, conn: Connection[RestAPIConfig]) -> list[dict[str, Any]]:
        payload = await conn.session.get_json(conn.config.endpoint)
        return extract_records(payload, conn.config.data_path)

    async def _probe(self, conn: Connection[RestAPIConfig]) -> bool:
        response = await conn.session.request("HEAD", conn.config.endpoint, check_status=False)
        return response.is_success
