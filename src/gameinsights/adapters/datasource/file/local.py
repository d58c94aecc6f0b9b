"""Uploaded file adapter implementation.

This module provides an adapter over an uploaded CSV, JSON or Parquet file,
given either as in-memory content or as a local path. CSV cells are coerced
to numbers, booleans and nulls; Parquet files are read through DuckDB.
"""

from __future__ import annotations

import asyncio
import csv
import io
import json
import os
import re
import tempfile
from decimal import Decimal
from typing import Any

import duckdb

from gameinsights.adapters.datasource.base import Connection, DataSourceAdapter
from gameinsights.adapters.datasource.config import FileConfig
from gameinsights.adapters.datasource.errors import ConnectionFailedError, QueryError
from gameinsights.adapters.datasource.types import AdapterCapabilities, SourceType

FILE_CAPABILITIES = AdapterCapabilities(
    supports_realtime=False,
    supports_filtering=True,
    supports_aggregation=False,
    max_rows_per_query=100000,
)

_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_INTEGER = re.compile(r"^[+-]?\d+$")


def parse_value(raw: str | None) -> Any:
    """Coerce a CSV cell.

    ``''`` and ``'null'`` become ``None``, ``'true'``/``'false'`` become
    booleans and numeric literals become ``int`` or ``float``.
    """
    if raw is None:
        return None
    value = raw.strip()
    if value == "" or value == "null":
        return None
    if value == "true":
        return True
    if value == "false":
        return False
    if _INTEGER.match(value):
        return int(value)
    if _NUMBER.match(value):
        return float(value)
    return value


def parse_csv(content: str) -> list[dict[str, Any]]:
    """Parse CSV text with a header row into coerced row dicts."""
    reader = csv.reader(io.StringIO(content.strip()))
    try:
        header = next(reader)
    except StopIteration:
        return []
    names = [name.strip() for name in header]
    rows: list[dict[str, Any]] = []
    for record in reader:
        if not any(cell.strip() for cell in record):
            continue
        rows.append(
            {
                name: parse_value(record[i] if i < len(record) else None)
                for i, name in enumerate(names)
            }
        )
    return rows


def parse_json(content: str) -> list[dict[str, Any]]:
    """Parse a JSON array of objects, or a single object wrapped in a list."""
    payload = json.loads(content)
    items = payload if isinstance(payload, list) else [payload]
    rows = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError("JSON rows must be objects")
        rows.append(item)
    return rows


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def read_parquet(path: str) -> list[dict[str, Any]]:
    """Read every row of a Parquet file with an in-memory DuckDB connection."""
    conn = duckdb.connect(":memory:")
    try:
        result = conn.execute("SELECT * FROM read_parquet(?)", [path])
        names = [col[0] for col in result.description or []]
        return [
            {name: _plain(value) for name, value in zip(names, row, strict=False)}
            for row in result.fetchall()
        ]
    finally:
        conn.close()


def _read_parquet_bytes(content: bytes) -> list[dict[str, Any]]:
    handle = tempfile.NamedTemporaryFile(suffix=".parquet", delete=False)
    try:
        with handle:
            handle.write(content)
        return read_parquet(handle.name)
    finally:
        os.unlink(handle.name)


def _text(content: str | bytes) -> str:
    if isinstance(content, bytes):
        return content.decode("utf-8-sig")
    return content


class FileAdapter(DataSourceAdapter[FileConfig]):
    """Adapter over a single uploaded file.

    The file is parsed once on connect and re-read on refresh. Filtering,
    ordering and pagination run client-side.
    """

    config_model = FileConfig
    SOURCE_TYPE = SourceType.FILE
    CAPABILITIES = FILE_CAPABILITIES

    def _source_label(self, config: FileConfig) -> str:
        return f"file:{os.path.basename(config.path) if config.path else config.name}"

    async def _open(self, conn: Connection[FileConfig]) -> None:
        path = conn.config.path
        if path is not None and not os.path.isfile(path):
            raise ConnectionFailedError(
                message=f"File does not exist: {path}",
                details={"path": path},
            )

    def _parse(self, config: FileConfig) -> list[dict[str, Any]]:
        if config.file_type == "parquet":
            if config.path is not None:
                return read_parquet(config.path)
            content = config.content
            data = content.encode("latin-1") if isinstance(content, str) else content
            return _read_parquet_bytes(data or b"")

        if config.path is not None:
            with open(config.path, encoding="utf-8-sig") as f:
                text = f.read()
        else:
            text = _text(config.content or "")
        return parse_csv(text) if config.file_type == "csv" else parse_json(text)

    async def _load(self, conn: Connection[FileConfig]) -> list[dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._parse, conn.config)
        except (ValueError, csv.Error, UnicodeDecodeError) as e:
            raise QueryError(message=f"Failed to parse {conn.config.file_type} file: {e}") from e
        except duckdb.Error as e:
            raise QueryError(message=f"Failed to read parquet file: {e}") from e
        except OSError as e:
            raise ConnectionFailedError(
                message=f"Failed to read file: {e}",
                details={"path": conn.config.path},
            ) from e

    async def _probe(self, conn: Connection[FileConfig]) -> bool:
        return len(conn.cache.rows) > 0
