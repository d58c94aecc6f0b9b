"""Google Sheets adapter implementation.

Reads one sheet (or an A1 range) of a spreadsheet through the Sheets v4
REST API using an OAuth access token obtained elsewhere.
"""

from __future__ import annotations

import re
from typing import Any, cast
from urllib.parse import quote

from gameinsights.adapters.datasource.base import Connection, DataSourceAdapter
from gameinsights.adapters.datasource.config import GoogleSheetsConfig
from gameinsights.adapters.datasource.file.local import parse_value as parse_cell
from gameinsights.adapters.datasource.http import bearer_auth
from gameinsights.adapters.datasource.types import AdapterCapabilities, SourceType

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
SPREADSHEET_FIELDS = "spreadsheetId,properties.title,sheets.properties"

GOOGLE_SHEETS_CAPABILITIES = AdapterCapabilities(
    supports_realtime=False,
    supports_filtering=True,
    supports_aggregation=False,
    max_rows_per_query=10000,
)

_NON_WORD = re.compile(r"[^\w\s]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")


def sanitize_header(header: Any, index: int) -> str:
    """Turn a header cell into a column name.

    Strips punctuation, joins words with ``_`` and lowercases. Blank headers
    become ``Column<n>`` (1-based).
    """
    if not isinstance(header, str) or not header.strip():
        return f"Column{index + 1}"
    name = _WHITESPACE.sub("_", _NON_WORD.sub("", header.strip())).lower()
    return name or f"Column{index + 1}"


def parse_value(value: Any) -> Any:
    """Coerce a sheet cell. Case-insensitive for ``true``/``false``."""
    if value is None:
        return None
    if isinstance(value, bool | int | float):
        return value
    text = str(value).strip()
    if text.lower() in {"true", "false"}:
        return text.lower() == "true"
    if text.lower() == "null":
        return text
    return parse_cell(text)


def rows_from_values(values: list[list[Any]], has_header_row: bool) -> list[dict[str, Any]]:
    """Convert a Sheets ``values`` grid into row dicts."""
    if not values:
        return []
    width = max(len(row) for row in values)
    if has_header_row:
        header = list(values[0]) + [None] * (width - len(values[0]))
        names = [sanitize_header(cell, i) for i, cell in enumerate(header)]
        body = values[1:]
    else:
        names = [f"Column{i + 1}" for i in range(width)]
        body = values
    return [
        {name: parse_value(row[i]) if i < len(row) else None for i, name in enumerate(names)}
        for row in body
    ]


class GoogleSheetsConnection(Connection[GoogleSheetsConfig]):
    """Connection that also remembers the spreadsheet's sheet titles."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.title = ""
        self.sheet_titles: list[str] = []


class GoogleSheetsAdapter(DataSourceAdapter[GoogleSheetsConfig]):
    """Google Sheets adapter.

    Connect fetches spreadsheet metadata (validating the token and ID), then
    the values of the configured range. Queries run client-side.
    """

    config_model = GoogleSheetsConfig
    connection_class = GoogleSheetsConnection
    SOURCE_TYPE = SourceType.GOOGLE_SHEETS
    CAPABILITIES = GOOGLE_SHEETS_CAPABILITIES

    def _source_label(self, config: GoogleSheetsConfig) -> str:
        return f"sheets:{config.spreadsheet_id}"

    @staticmethod
    def build_range(config: GoogleSheetsConfig, sheet_titles: list[str]) -> str:
        """Explicit range, else the quoted sheet name, else the first sheet."""
        if config.range:
            return config.range
        sheet = config.sheet_name or (sheet_titles[0] if sheet_titles else "Sheet1")
        return f"'{sheet}'"

    async def _fetch_info(self, conn: GoogleSheetsConnection) -> None:
        data = await conn.session.get_json(
            f"/{quote(conn.config.spreadsheet_id, safe='')}",
            params={"fields": SPREADSHEET_FIELDS},
        )
        conn.title = (data.get("properties") or {}).get("title") or "Untitled"
        conn.sheet_titles = [
            sheet["properties"]["title"]
            for sheet in data.get("sheets") or []
            if sheet.get("properties", {}).get("title")
        ]

    async def _open(self, conn: Connection[GoogleSheetsConfig]) -> None:
        conn = cast(GoogleSheetsConnection, conn)
        conn.open_http(
            "Google Sheets",
            base_url=SHEETS_API_BASE,
            headers=bearer_auth(conn.config.access_token),
            timeout=self.request_timeout,
            transport=self._transport,
        )
        await self._fetch_info(conn)

    async def _load(self, conn: Connection[GoogleSheetsConfig]) -> list[dict[str, Any]]:
        conn = cast(GoogleSheetsConnection, conn)
        cell_range = self.build_range(conn.config, conn.sheet_titles)
        data = await conn.session.get_json(
            f"/{quote(conn.config.spreadsheet_id, safe='')}/values/{quote(cell_range, safe='')}"
        )
        return rows_from_values(data.get("values") or [], conn.config.has_header_row)

    async def _probe(self, conn: Connection[GoogleSheetsConfig]) -> bool:
        conn = cast(GoogleSheetsConnection, conn)
        await self._fetch_info(conn)
        return True

    @property
    def sheet_titles(self) -> list[str]:
        """Titles of the sheets in the connected spreadsheet."""
        conn = self._connection
        return list(conn.sheet_titles) if isinstance(conn, GoogleSheetsConnection) else []
