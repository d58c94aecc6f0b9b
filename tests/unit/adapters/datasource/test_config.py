"""Tests for per-source configuration models."""

import pytest

from gameinsights.adapters.datasource.config import (
    FileConfig,
    FirebaseConfig,
    PlayFabConfig,
    PostgreSQLConfig,
    RestAPIConfig,
    SupabaseConfig,
    UnityConfig,
    WebhookConfig,
    parse_config,
)
from gameinsights.adapters.datasource.errors import ConfigurationError


class TestParseConfig:
    """Tests for parse_config."""

    def test_dispatches_on_source_type(self):
        """The source_type key picks the config model."""
        config = parse_config(
            {"name": "events", "source_type": "rest_api", "endpoint": "https://api.example.com"}
        )

        assert isinstance(config, RestAPIConfig)
        assert config.auth_type == "none"
        assert config.api_key_header == "X-API-Key"

    def test_unknown_source_type(self):
        """An unknown source_type names the source_type field."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config({"name": "x", "source_type": "ftp"})

        assert exc_info.value.field == "source_type"

    def test_missing_field_named(self):
        """The first missing field is reported without the union tag."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config({"name": "db", "source_type": "postgresql", "host": "localhost"})

        assert exc_info.value.field == "database"

    def test_expected_model_mismatch(self):
        """A config of another source type is rejected."""
        config = FileConfig(name="f", file_type="csv", content="a\n1")

        with pytest.raises(ConfigurationError):
            parse_config(config, RestAPIConfig)

    def test_extra_fields_ignored(self):
        """Unknown keys do not fail validation."""
        config = parse_config(
            {"name": "f", "source_type": "file", "file_type": "json", "content": "[]", "x": 1}
        )

        assert isinstance(config, FileConfig)

    def test_configs_are_frozen(self):
        """Configs cannot be mutated after validation."""
        config = FileConfig(name="f", file_type="csv", content="a\n1")

        with pytest.raises(ValueError):
            config.name = "g"  # type: ignore[misc]


class TestSourceConfigs:
    """Tests for source-specific validation."""

    def test_file_requires_exactly_one_input(self):
        """Content and path are mutually exclusive and one is required."""
        with pytest.raises(ConfigurationError):
            parse_config({"name": "f", "source_type": "file", "file_type": "csv"})
        with pytest.raises(ConfigurationError):
            parse_config(
                {
                    "name": "f",
                    "source_type": "file",
                    "file_type": "csv",
                    "content": "a",
                    "path": "/tmp/a.csv",
                }
            )

    def test_rest_endpoint_must_be_http(self):
        """Non-http endpoints are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config({"name": "r", "source_type": "rest_api", "endpoint": "ftp://x"})

        assert exc_info.value.field == "endpoint"

    def test_rest_auth_value_required(self):
        """Bearer auth without a token is rejected."""
        with pytest.raises(ConfigurationError):
            parse_config(
                {
                    "name": "r",
                    "source_type": "rest_api",
                    "endpoint": "https://x.io",
                    "auth_type": "bearer",
                }
            )

    def test_postgres_schema_alias(self):
        """The schema key populates db_schema."""
        config = PostgreSQLConfig.model_validate(
            {
                "name": "db",
                "host": "localhost",
                "database": "game",
                "username": "reader",
                "schema": "analytics",
                "proxy_url": "https://proxy.example.com/",
            }
        )

        assert config.db_schema == "analytics"
        assert config.port == 5432
        assert config.ssl is True
        assert config.proxy_url == "https://proxy.example.com"

    @pytest.mark.parametrize(
        "url",
        ["http://abc.supabase.co", "https://example.com", "not a url"],
    )
    def test_supabase_url_rejected(self, url):
        """Supabase URLs must be https on a supabase host."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config(
                {
                    "name": "s",
                    "source_type": "supabase",
                    "project_url": url,
                    "api_key": "k",
                    "table_name": "events",
                }
            )

        assert exc_info.value.field == "project_url"

    def test_supabase_url_normalized(self):
        """A trailing slash is stripped."""
        config = SupabaseConfig(
            name="s", project_url="https://abc.supabase.co/", api_key="k", table_name="events"
        )

        assert config.project_url == "https://abc.supabase.co"

    def test_playfab_title_id_alphanumeric(self):
        """PlayFab title ids must be alphanumeric."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config(
                {"name": "p", "source_type": "playfab", "title_id": "AB-12", "secret_key": "s"}
            )

        assert exc_info.value.field == "title_id"

    def test_playfab_defaults(self):
        """PlayFab defaults its data types and result cap."""
        config = PlayFabConfig(name="p", title_id="AB12", secret_key="s", data_types=[])

        assert config.data_types == ["player_data", "playstream_events"]
        assert config.max_results == 10000

    def test_unity_defaults(self):
        """Unity defaults its environment, data types and result cap."""
        config = UnityConfig(name="u", project_id="p", key_id="k", secret_key="s")

        assert config.environment_id == "production"
        assert config.data_types == ["analytics_events", "players"]
        assert config.max_results == 1000

    def test_firebase_needs_credentials(self):
        """Firebase needs a service account or an access token."""
        with pytest.raises(ConfigurationError):
            parse_config({"name": "f", "source_type": "firebase", "project_id": "dungeon-run"})

    def test_firebase_service_account(self):
        """Service account keys keep the grant fields and default the token URI."""
        config = parse_config(
            {
                "name": "f",
                "source_type": "firebase",
                "project_id": "dungeon-run",
                "service_account": {
                    "type": "service_account",
                    "client_email": "reader@dungeon-run.iam.gserviceaccount.com",
                    "private_key": "pem",
                },
            }
        )

        assert isinstance(config, FirebaseConfig)
        assert config.service_account.token_uri == "https://oauth2.googleapis.com/token"
        assert config.max_events == 10000

    def test_webhook_defaults(self):
        """Webhook receivers stream by default and lose a trailing slash."""
        config = WebhookConfig(name="w", receiver_url="https://hooks.game.test/")

        assert config.receiver_url == "https://hooks.game.test"
        assert config.max_buffer_size == 1000
        assert config.stream_events is True

    def test_webhook_expected_types(self):
        """Expected payload types are limited to inferred column types."""
        with pytest.raises(ConfigurationError):
            parse_config(
                {
                    "name": "w",
                    "source_type": "webhook",
                    "receiver_url": "https://hooks.game.test",
                    "expected_schema": {"score": "float"},
                }
            )

    def test_refresh_interval_must_be_positive(self):
        """A zero refresh interval is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config(
                {
                    "name": "f",
                    "source_type": "file",
                    "file_type": "csv",
                    "content": "a",
                    "refresh_interval_minutes": 0,
                }
            )

        assert exc_info.value.field == "refresh_interval_minutes"
