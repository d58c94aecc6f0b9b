"""Unified data source adapter layer.

This module provides a pluggable adapter architecture that normalizes
heterogeneous data sources (uploaded files, REST APIs, databases and game
backend services) into one asynchronous query contract.

Core Principle: All sources become "rows with columns" from the caller's perspective.
"""

from gameinsights.adapters.datasource.errors import (
    AccessDeniedError,
    AdapterError,
    AuthenticationFailedError,
    ConfigurationError,
    ConnectionFailedError,
    ErrorCode,
    InvalidIdentifierError,
    NotConnectedError,
    QueryCancelledError,
    QueryError,
    QueryTimeoutError,
    RateLimitedError,
    UnsupportedOperationError,
)
from gameinsights.adapters.datasource.types import (
    SOURCE_CATEGORIES,
    AdapterCapabilities,
    ColumnInfo,
    ColumnType,
    DataQuery,
    FilterOperator,
    NormalizedData,
    NormalizedMetadata,
    OrderBy,
    QueryFilter,
    SchemaInfo,
    SourceCategory,
    SourceType,
)
from gameinsights.adapters.datasource.config import (
    AdapterConfig,
    AnyAdapterConfig,
    DateRange,
    FirebaseConfig,
    FirebaseServiceAccount,
    FileConfig,
    GoogleSheetsConfig,
    PlayFabConfig,
    PostgreSQLConfig,
    RestAPIConfig,
    SupabaseConfig,
    UnityConfig,
    WebhookConfig,
    parse_config,
)
from gameinsights.adapters.datasource.base import BaseAdapter, Connection, DataSourceAdapter
from gameinsights.adapters.datasource.cache import FreshnessCache
from gameinsights.adapters.datasource.cancellation import CancellationToken

# Adapters
from gameinsights.adapters.datasource.file.local import FileAdapter
from gameinsights.adapters.datasource.api.rest import RestAPIAdapter
from gameinsights.adapters.datasource.api.google_sheets import GoogleSheetsAdapter
from gameinsights.adapters.datasource.api.playfab import PlayFabAdapter
from gameinsights.adapters.datasource.api.unity import UnityAdapter
from gameinsights.adapters.datasource.api.webhook import WebhookAdapter
from gameinsights.adapters.datasource.api.firebase import FirebaseAdapter
from gameinsights.adapters.datasource.sql.postgres import PostgreSQLAdapter
from gameinsights.adapters.datasource.sql.supabase import SupabaseAdapter
from gameinsights.adapters.datasource.registry import (
    AdapterRegistry,
    adapter_class_for,
    adapter_for,
    create_adapter,
)

__all__ = [
    # Base classes
    "BaseAdapter",
    "DataSourceAdapter",
    "Connection",
    "FreshnessCache",
    "CancellationToken",
    # Registry
    "AdapterRegistry",
    "adapter_class_for",
    "adapter_for",
    "create_adapter",
    # Adapters
    "FileAdapter",
    "RestAPIAdapter",
    "GoogleSheetsAdapter",
    "PlayFabAdapter",
    "UnityAdapter",
    "WebhookAdapter",
    "FirebaseAdapter",
    "PostgreSQLAdapter",
    "SupabaseAdapter",
    # Configs
    "AdapterConfig",
    "AnyAdapterConfig",
    "DateRange",
    "FileConfig",
    "RestAPIConfig",
    "GoogleSheetsConfig",
    "PlayFabConfig",
    "UnityConfig",
    "WebhookConfig",
    "FirebaseConfig",
    "FirebaseServiceAccount",
    "PostgreSQLConfig",
    "SupabaseConfig",
    "parse_config",
    # Types
    "SOURCE_CATEGORIES",
    "AdapterCapabilities",
    "ColumnInfo",
    "ColumnType",
    "DataQuery",
    "FilterOperator",
    "NormalizedData",
    "NormalizedMetadata",
    "OrderBy",
    "QueryFilter",
    "SchemaInfo",
    "SourceCategory",
    "SourceType",
    # Errors
    "ErrorCode",
    "AdapterError",
    "ConfigurationError",
    "InvalidIdentifierError",
    "ConnectionFailedError",
    "AuthenticationFailedError",
    "NotConnectedError",
    "AccessDeniedError",
    "QueryError",
    "QueryTimeoutError",
    "QueryCancelledError",
    "UnsupportedOperationError",
    "RateLimitedError",
]
