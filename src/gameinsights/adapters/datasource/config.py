"""Per-source connection configuration models.

Each source type has its own frozen pydantic model. ``parse_config`` turns a
plain mapping into the right model and converts validation failures into
``ConfigurationError`` so that no network call is ever made with a bad config.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Annotated, Any, Literal
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from gameinsights.adapters.datasource.errors import ConfigurationError
from gameinsights.adapters.datasource.types import SourceType

TITLE_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")
GCP_PROJECT_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.:-]*$")
BIGQUERY_DATASET_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

PlayFabDataType = Literal["player_data", "playstream_events", "catalog_items", "title_data"]
UnityDataType = Literal[
    "analytics_events",
    "players",
    "cloud_save",
    "leaderboards",
    "economy_currencies",
    "economy_purchases",
    "economy_balances",
    "economy_inventory",
    "remote_config",
]
ExpectedFieldType = Literal["string", "number", "boolean", "date", "unknown"]


def _require_http_url(value: str, field: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ValueError(f"{field} must be an http(s) URL")
    return value


class DateRange(BaseModel):
    """Inclusive ISO-8601 date window for event sources."""

    model_config = ConfigDict(frozen=True)

    start: str | None = None
    end: str | None = None


class AdapterConfig(BaseModel):
    """Fields shared by every source configuration."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1)
    source_type: str
    refresh_interval_minutes: float | None = Field(default=None, gt=0)


class FileConfig(AdapterConfig):
    """Uploaded file contents or a local path."""

    source_type: Literal["file"] = "file"
    file_type: Literal["csv", "json", "parquet"]
    content: str | bytes | None = None
    path: str | None = None

    @model_validator(mode="after")
    def _content_or_path(self) -> FileConfig:
        if (self.content is None) == (self.path is None):
            raise ValueError("exactly one of content or path is required")
        return self


class RestAPIConfig(AdapterConfig):
    """Generic JSON REST endpoint."""

    source_type: Literal["rest_api"] = "rest_api"
    endpoint: str
    auth_type: Literal["none", "bearer", "apikey", "basic"] = "none"
    auth_value: str | None = None
    api_key_header: str = "X-API-Key"
    headers: dict[str, str] = Field(default_factory=dict)
    data_path: str | None = None

    @field_validator("endpoint")
    @classmethod
    def _endpoint_is_url(cls, value: str) -> str:
        return _require_http_url(value, "endpoint")

    @model_validator(mode="after")
    def _auth_value_present(self) -> RestAPIConfig:
        if self.auth_type != "none" and not self.auth_value:
            raise ValueError(f"auth_value is required for auth_type {self.auth_type!r}")
        return self


class PostgreSQLConfig(AdapterConfig):
    """PostgreSQL reached through the HTTP query proxy."""

    source_type: Literal["postgresql"] = "postgresql"
    proxy_url: str | None = None
    host: str = Field(min_length=1)
    port: int = Field(default=5432, gt=0, le=65535)
    database: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = ""
    ssl: bool = True
    db_schema: str = Field(default="public", alias="schema")
    table_name: str | None = None
    custom_query: str | None = None

    @field_validator("proxy_url")
    @classmethod
    def _proxy_is_url(cls, value: str | None) -> str | None:
        if value:
            return _require_http_url(value, "proxy_url").rstrip("/")
        return value


class SupabaseConfig(AdapterConfig):
    """Supabase project table exposed over PostgREST."""

    source_type: Literal["supabase"] = "supabase"
    project_url: str
    api_key: str = Field(min_length=1)
    table_name: str = Field(min_length=1)
    db_schema: str = Field(default="public", alias="schema")
    select_columns: list[str] | None = None

    @field_validator("project_url")
    @classmethod
    def _supabase_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme != "https" or not parsed.hostname:
            raise ValueError("project_url must be an https URL")
        if "supabase" not in parsed.hostname:
            raise ValueError("project_url must point at a Supabase host")
        return value.rstrip("/")


class GoogleSheetsConfig(AdapterConfig):
    """Google Sheets spreadsheet read with an OAuth access token."""

    source_type: Literal["google_sheets"] = "google_sheets"
    spreadsheet_id: str = Field(min_length=1)
    access_token: str = Field(min_length=1)
    sheet_name: str | None = None
    range: str | None = None
    has_header_row: bool = True


class PlayFabConfig(AdapterConfig):
    """PlayFab title accessed through the Server API."""

    source_type: Literal["playfab"] = "playfab"
    title_id: str = Field(min_length=1)
    secret_key: str = Field(min_length=1)
    data_types: list[PlayFabDataType] = Field(
        default_factory=lambda: ["player_data", "playstream_events"]
    )
    event_types: list[str] | None = None
    date_range: DateRange | None = None
    segment_id: str | None = None
    max_results: int = Field(default=10000, gt=0)

    @field_validator("title_id")
    @classmethod
    def _title_id_alphanumeric(cls, value: str) -> str:
        if not TITLE_ID_PATTERN.match(value):
            raise ValueError("title_id must be alphanumeric")
        return value

    @field_validator("data_types")
    @classmethod
    def _default_when_empty(cls, value: list[str]) -> list[str]:
        return value or ["player_data", "playstream_events"]


class UnityConfig(AdapterConfig):
    """Unity Gaming Services project accessed with a service account."""

    source_type: Literal["unity"] = "unity"
    project_id: str = Field(min_length=1)
    environment_id: str = "production"
    key_id: str = Field(min_length=1)
    secret_key: str = Field(min_length=1)
    data_types: list[UnityDataType] = Field(default_factory=lambda: ["analytics_events", "players"])
    date_range: DateRange | None = None
    max_results: int = Field(default=1000, gt=0)
    # Players whose cloud save and economy state are read. Defaults to the
    # players listed by the player API.
    player_ids: list[str] | None = None
    leaderboard_ids: list[str] = Field(default_factory=list)

    @field_validator("data_types")
    @classmethod
    def _default_when_empty(cls, value: list[str]) -> list[str]:
        return value or ["analytics_events", "players"]


class FirebaseServiceAccount(BaseModel):
    """The fields of a Google service account key used for the JWT grant."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    client_email: str = Field(min_length=1)
    private_key: str = Field(min_length=1)
    private_key_id: str | None = None
    project_id: str | None = None
    token_uri: str = "https://oauth2.googleapis.com/token"


class FirebaseConfig(AdapterConfig):
    """Firebase Analytics project read through GA4 or its BigQuery export."""

    source_type: Literal["firebase"] = "firebase"
    project_id: str = Field(min_length=1)
    service_account: FirebaseServiceAccount | None = None
    access_token: str | None = None
    # GA4 property backing the project. Defaults to project_id.
    property_id: str | None = None
    bigquery_dataset_id: str | None = None
    event_types: list[str] | None = None
    date_range: DateRange | None = None
    max_events: int = Field(default=10000, gt=0)

    @field_validator("project_id")
    @classmethod
    def _project_id_format(cls, value: str) -> str:
        if not GCP_PROJECT_PATTERN.match(value):
            raise ValueError("project_id contains invalid characters")
        return value

    @field_validator("bigquery_dataset_id")
    @classmethod
    def _dataset_id_format(cls, value: str | None) -> str | None:
        if value is not None and not BIGQUERY_DATASET_PATTERN.match(value):
            raise ValueError("bigquery_dataset_id contains invalid characters")
        return value

    @model_validator(mode="after")
    def _credentials_present(self) -> FirebaseConfig:
        if self.service_account is None and not self.access_token:
            raise ValueError("either service_account or access_token is required")
        return self


class WebhookConfig(AdapterConfig):
    """Events pushed through a webhook receiver service."""

    source_type: Literal["webhook"] = "webhook"
    receiver_url: str
    endpoint_id: str | None = None
    secret_key: str | None = None
    max_buffer_size: int = Field(default=1000, gt=0)
    expected_schema: dict[str, ExpectedFieldType] | None = None
    # Listen on the receiver's event stream. Without it only pushed events arrive.
    stream_events: bool = True

    @field_validator("receiver_url")
    @classmethod
    def _receiver_is_url(cls, value: str) -> str:
        return _require_http_url(value, "receiver_url").rstrip("/")


AnyAdapterConfig = Annotated[
    FileConfig
    | RestAPIConfig
    | PostgreSQLConfig
    | SupabaseConfig
    | GoogleSheetsConfig
    | PlayFabConfig
    | UnityConfig
    | FirebaseConfig
    | WebhookConfig,
    Field(discriminator="source_type"),
]

_config_adapter: TypeAdapter[Any] = TypeAdapter(AnyAdapterConfig)


_TAGS = {member.value for member in SourceType}


def _first_error_field(error: ValidationError) -> str | None:
    detail = error.errors()[0]
    if detail["type"] in {"union_tag_not_found", "union_tag_invalid"}:
        return "source_type"
    # Discriminated unions prefix the location with the union tag.
    loc = [str(part) for part in detail["loc"]]
    if loc and loc[0] in _TAGS:
        loc = loc[1:]
    return ".".join(loc) or None


def _configuration_error(error: ValidationError) -> ConfigurationError:
    first = error.errors()[0]
    field = _first_error_field(error)
    message = first["msg"]
    if field:
        message = f"{field}: {message}"
    return ConfigurationError(message=message, field=field)


def parse_config(
    data: Mapping[str, Any] | AdapterConfig,
    model: type[AdapterConfig] | None = None,
) -> AdapterConfig:
    """Validate a raw configuration mapping.

    Args:
        data: Either an already-built config model or a mapping with a
            ``source_type`` key.
        model: Expected config class. When given, the result must be an
            instance of it.

    Returns:
        The validated, frozen configuration.

    Raises:
        ConfigurationError: If a required field is missing or malformed.
    """
    if isinstance(data, AdapterConfig):
        config = data
    else:
        try:
            if model is not None:
                config = model.model_validate(dict(data))
            else:
                config = _config_adapter.validate_python(dict(data))
        except ValidationError as e:
            raise _configuration_error(e) from e

    if model is not None and not isinstance(config, model):
        raise ConfigurationError(
            message=f"Expected {model.__name__}, got {type(config).__name__}",
            field="source_type",
        )
    return config
