"""Game Insights data source layer.

Pulls tabular data from uploaded files, REST APIs, PostgreSQL, Supabase,
Google Sheets, webhook receivers, PlayFab, Unity Gaming Services and Firebase
through one async adapter contract.
"""

from gameinsights.adapters.datasource import (
    AdapterRegistry,
    DataQuery,
    NormalizedData,
    SchemaInfo,
    SourceType,
    adapter_for,
    create_adapter,
)

__version__ = "0.1.0"

__all__ = [
    "AdapterRegistry",
    "DataQuery",
    "NormalizedData",
    "SchemaInfo",
    "SourceType",
    "adapter_for",
    "create_adapter",
]
