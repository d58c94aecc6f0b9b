"""Type definitions for the unified data source layer.

This module defines all the data structures used across all adapters,
ensuring the same output shape regardless of the underlying source.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceType(str, Enum):
    """Supported data source types."""

    # Uploads
    FILE = "file"

    # APIs
    REST_API = "rest_api"
    GOOGLE_SHEETS = "google_sheets"
    WEBHOOK = "webhook"

    # Databases
    POSTGRESQL = "postgresql"
    SUPABASE = "supabase"

    # Game backends
    PLAYFAB = "playfab"
    UNITY = "unity"
    FIREBASE = "firebase"


class SourceCategory(str, Enum):
    """Categories of data sources."""

    FILE = "file"
    API = "api"
    DATABASE = "database"
    CLOUD = "cloud"


SOURCE_CATEGORIES: dict[SourceType, SourceCategory] = {
    SourceType.FILE: SourceCategory.FILE,
    SourceType.REST_API: SourceCategory.API,
    SourceType.GOOGLE_SHEETS: SourceCategory.CLOUD,
    SourceType.WEBHOOK: SourceCategory.API,
    SourceType.POSTGRESQL: SourceCategory.DATABASE,
    SourceType.SUPABASE: SourceCategory.DATABASE,
    SourceType.PLAYFAB: SourceCategory.CLOUD,
    SourceType.UNITY: SourceCategory.CLOUD,
    SourceType.FIREBASE: SourceCategory.CLOUD,
}


class ColumnType(str, Enum):
    """Semantic column types produced by schema inference."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    UNKNOWN = "unknown"


class FilterOperator(str, Enum):
    """Operators accepted in a query filter."""

    EQ = "="
    NEQ = "!="
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    CONTAINS = "contains"
    IN = "in"


class ColumnInfo(BaseModel):
    """Inferred description of a single column."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: ColumnType
    nullable: bool = True
    sample_values: list[Any] = Field(default_factory=list)


class SchemaInfo(BaseModel):
    """Schema derived from the cached row set."""

    model_config = ConfigDict(frozen=True)

    columns: list[ColumnInfo]
    row_count: int
    sample_data: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        """Names of all columns in declaration order."""
        return [col.name for col in self.columns]


class QueryFilter(BaseModel):
    """A single ``column <op> value`` predicate."""

    model_config = ConfigDict(frozen=True)

    column: str
    operator: FilterOperator
    value: Any = None


class OrderBy(BaseModel):
    """Single-column sort order."""

    model_config = ConfigDict(frozen=True)

    column: str
    direction: Literal["asc", "desc"] = "asc"


class DataQuery(BaseModel):
    """Abstract read request.

    Every field is optional. ``None`` means "no constraint", not "empty".
    """

    model_config = ConfigDict(frozen=True)

    columns: list[str] | None = None
    filters: list[QueryFilter] | None = None
    limit: int | None = None
    offset: int | None = None
    order_by: OrderBy | None = None

    @field_validator("limit", "offset", mode="before")
    @classmethod
    def _truncate_row_count(cls, value: Any) -> Any:
        """Fractional limits and offsets are truncated toward zero."""
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError("row count must be finite")
            return math.trunc(value)
        return value


class NormalizedMetadata(BaseModel):
    """Provenance attached to every result."""

    model_config = ConfigDict(frozen=True)

    source: str
    fetched_at: str
    row_count: int


class NormalizedData(BaseModel):
    """The result shape returned by every adapter."""

    model_config = ConfigDict(frozen=True)

    columns: list[str]
    rows: list[dict[str, Any]]
    metadata: NormalizedMetadata


class AdapterCapabilities(BaseModel):
    """Capabilities of an adapter."""

    model_config = ConfigDict(frozen=True)

    supports_realtime: bool = False
    supports_filtering: bool = True
    supports_aggregation: bool = False
    max_rows_per_query: int = 10000


def utc_now() -> datetime:
    """Timezone-aware current time, used as the default cache clock."""
    return datetime.now(UTC)
