"""Firebase Analytics adapter implementation.

Reads game events either from the GA4 Data API (daily event counts per event
name, device category and country) or, when a BigQuery export dataset is
configured, raw events from the date-sharded ``events_*`` export tables.

Requests authenticate with an OAuth access token. The token is either given
in the config or minted from a service account key through the JWT bearer
grant, in which case it is renewed shortly before it expires.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime, timedelta
from typing import Any, Literal, cast

import jwt
import structlog

from gameinsights.adapters.datasource.base import Connection, DataSourceAdapter
from gameinsights.adapters.datasource.config import FirebaseConfig, FirebaseServiceAccount
from gameinsights.adapters.datasource.errors import (
    AuthenticationFailedError,
    ConfigurationError,
    QueryError,
    UnsupportedOperationError,
)
from gameinsights.adapters.datasource.http import bearer_auth, raise_for_status
from gameinsights.adapters.datasource.inference import parse_date
from gameinsights.adapters.datasource.types import (
    AdapterCapabilities,
    NormalizedData,
    NormalizedMetadata,
    SourceType,
)
from gameinsights.safety.validator import validate_read_only

logger = structlog.get_logger()

FIREBASE_API = "https://firebase.googleapis.com/v1beta1"
ANALYTICS_DATA_API = "https://analyticsdata.googleapis.com/v1beta"
BIGQUERY_API = "https://bigquery.googleapis.com/bigquery/v2"

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_SCOPES = " ".join(
    [
        "https://www.googleapis.com/auth/firebase.readonly",
        "https://www.googleapis.com/auth/analytics.readonly",
        "https://www.googleapis.com/auth/bigquery.readonly",
    ]
)
TOKEN_LIFETIME_SECONDS = 3600
# Tokens this close to expiry are renewed before use.
TOKEN_RENEW_MARGIN = timedelta(seconds=60)
DEFAULT_LOOKBACK_DAYS = 30
EXPORT_TABLE_PREFIX = "events_"

REPORT_DIMENSIONS = ("eventName", "date", "deviceCategory", "country")
REPORT_METRICS = ("eventCount", "activeUsers")

EXPORT_COLUMNS = (
    "event_name",
    "event_timestamp",
    "user_id",
    "user_pseudo_id",
    "device",
    "geo",
    "app_info",
    "event_params",
    "user_properties",
)

FIREBASE_CAPABILITIES = AdapterCapabilities(
    supports_realtime=False,
    supports_filtering=True,
    supports_aggregation=True,
    max_rows_per_query=100000,
)

GroupBy = Literal["day", "week", "month"]

_VALUE_KEYS = ("string_value", "int_value", "float_value", "double_value")
_MICROS = 1_000_000


def _param_value(value: Any) -> Any:
    if isinstance(value, dict):
        for key in _VALUE_KEYS:
            if value.get(key) is not None:
                return value[key]
        return json.dumps(value, sort_keys=True)
    return value


def flatten_params(params: Any, prefix: str) -> dict[str, Any]:
    """Flatten event params or user properties into ``<prefix><key>`` columns.

    Accepts both the export's list of ``{"key", "value"}`` records and a plain
    mapping. Typed value records collapse to their first non-null value.
    """
    if isinstance(params, dict):
        items: Iterable[tuple[Any, Any]] = params.items()
    else:
        items = ((p.get("key"), p.get("value")) for p in params or [] if isinstance(p, dict))
    return {f"{prefix}{key}": _param_value(value) for key, value in items}


def timestamp_to_iso(micros: Any) -> str | None:
    """ISO-8601 UTC time of a microsecond epoch timestamp."""
    if not isinstance(micros, int | float) or isinstance(micros, bool):
        return None
    return datetime.fromtimestamp(micros / _MICROS, UTC).isoformat()


def flatten_event(event: dict[str, Any]) -> dict[str, Any]:
    """Flatten an analytics event into one row."""
    device = event.get("device") or {}
    geo = event.get("geo") or {}
    app_info = event.get("app_info") or {}
    timestamp = event.get("event_timestamp")
    return {
        "event_name": event.get("event_name"),
        "event_timestamp": timestamp,
        "event_date": timestamp_to_iso(timestamp),
        "user_id": event.get("user_id"),
        "user_pseudo_id": event.get("user_pseudo_id"),
        "device_category": device.get("category"),
        "device_brand": device.get("mobile_brand_name"),
        "device_model": device.get("mobile_model_name"),
        "os": device.get("operating_system"),
        "os_version": device.get("operating_system_version"),
        "language": device.get("language"),
        "country": geo.get("country"),
        "region": geo.get("region"),
        "city": geo.get("city"),
        "app_id": app_info.get("id"),
        "app_version": app_info.get("version"),
        **flatten_params(event.get("event_params"), "param_"),
        **flatten_params(event.get("user_properties"), "user_prop_"),
    }


def events_from_report(report: dict[str, Any], app_id: str) -> list[dict[str, Any]]:
    """Turn a GA4 ``runReport`` response into events, one per report row.

    Each row is an aggregate, so its counts land in ``event_params`` and the
    pseudo user id names the day.
    """
    events: list[dict[str, Any]] = []
    for row in report.get("rows") or []:
        name, day, category, country = (d.get("value") for d in row.get("dimensionValues") or [])
        event_count, active_users = (m.get("value") for m in row.get("metricValues") or [])
        day_start = datetime.strptime(day, "%Y%m%d").replace(tzinfo=UTC)
        events.append(
            {
                "event_name": name,
                "event_timestamp": int(day_start.timestamp()) * _MICROS,
                "user_pseudo_id": f"aggregated_{day}",
                "device": {"category": category},
                "geo": {"country": country},
                "app_info": {"id": app_id},
                "event_params": {
                    "event_count": int(event_count),
                    "active_users": int(active_users),
                },
            }
        )
    return events


def _bigquery_scalar(value: Any, field_type: str) -> Any:
    if value is None:
        return None
    if field_type in {"INTEGER", "INT64"}:
        return int(value)
    if field_type in {"FLOAT", "FLOAT64", "NUMERIC", "BIGNUMERIC"}:
        return float(value)
    if field_type in {"BOOLEAN", "BOOL"}:
        return str(value).lower() == "true"
    return value


def _bigquery_value(cell: Any, field: dict[str, Any]) -> Any:
    value = cell.get("v") if isinstance(cell, dict) else cell
    if field.get("mode") == "REPEATED":
        item_field = {**field, "mode": "NULLABLE"}
        return [_bigquery_value(item, item_field) for item in value or []]
    if field.get("type") in {"RECORD", "STRUCT"}:
        if value is None:
            return None
        return _bigquery_record(value.get("f") or [], field.get("fields") or [])
    return _bigquery_scalar(value, str(field.get("type", "STRING")))


def _bigquery_record(cells: Sequence[Any], fields: Sequence[dict[str, Any]]) -> dict[str, Any]:
    record: dict[str, Any] = {}
    for index, cell in enumerate(cells):
        field = fields[index] if index < len(fields) else {}
        record[field.get("name") or f"col_{index}"] = _bigquery_value(cell, field)
    return record


def rows_from_bigquery(result: dict[str, Any]) -> list[dict[str, Any]]:
    """Decode a BigQuery ``queries`` response into plain records.

    Values arrive as strings inside ``{"f": [{"v": ...}]}`` cells; they are
    converted by the column types in the response schema, and nested
    records become dicts.
    """
    fields = (result.get("schema") or {}).get("fields") or []
    return [_bigquery_record(row.get("f") or [], fields) for row in result.get("rows") or []]


def _to_micros(value: str | datetime, end_of_day: bool = False) -> int:
    moment = value if isinstance(value, datetime) else parse_date(value)
    if moment is None:
        raise ValueError(f"Not a date: {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    micros = int(moment.timestamp() * _MICROS)
    # A bare date as an inclusive upper bound covers the whole day.
    if end_of_day and isinstance(value, str) and len(value.strip()) == 10:
        micros += 24 * 3600 * _MICROS - 1
    return micros


def _period(moment: datetime, group_by: GroupBy) -> str:
    if group_by == "week":
        # Weeks start on Sunday.
        start = moment.date() - timedelta(days=(moment.weekday() + 1) % 7)
        return start.isoformat()
    if group_by == "month":
        return f"{moment.year}-{moment.month:02d}"
    return moment.date().isoformat()


def aggregate_metrics(
    rows: Sequence[dict[str, Any]],
    start: str | datetime,
    end: str | datetime,
    group_by: GroupBy = "day",
) -> list[dict[str, Any]]:
    """Event, user, session and purchase counts per period.

    Args:
        rows: Flattened events.
        start: Inclusive window start.
        end: Inclusive window end.
        group_by: ``day``, ``week`` (starting Sunday) or ``month``.

    Returns:
        One dict per period with events, sorted by period.
    """
    low, high = _to_micros(start), _to_micros(end, end_of_day=True)
    grouped: dict[str, list[dict[str, Any]]] = {}
    for row in rows:
        timestamp = row.get("event_timestamp")
        if not isinstance(timestamp, int | float) or not low <= timestamp <= high:
            continue
        moment = datetime.fromtimestamp(timestamp / _MICROS, UTC)
        grouped.setdefault(_period(moment, group_by), []).append(row)

    metrics: list[dict[str, Any]] = []
    for period in sorted(grouped):
        events = grouped[period]
        users = len({e.get("user_pseudo_id") for e in events})
        metrics.append(
            {
                "period": period,
                "total_events": len(events),
                "unique_users": users,
                "sessions": sum(1 for e in events if e.get("event_name") == "session_start"),
                "purchases": sum(1 for e in events if e.get("event_name") == "in_app_purchase"),
                "events_per_user": len(events) / users,
            }
        )
    return metrics


def retention_cohorts(
    rows: Sequence[dict[str, Any]],
    cohort_start: str | datetime,
    cohort_end: str | datetime,
    retention_days: Sequence[int] = (1, 3, 7, 14, 30),
) -> list[dict[str, Any]]:
    """Per-user retention flags for users whose ``first_open`` is in the window.

    ``day_<n>`` is True when the user has any event in the 24 hours starting
    ``n`` days after their first open.
    """
    low, high = _to_micros(cohort_start), _to_micros(cohort_end, end_of_day=True)
    first_opens: dict[Any, int] = {}
    for row in rows:
        timestamp = row.get("event_timestamp")
        if (
            row.get("event_name") == "first_open"
            and isinstance(timestamp, int | float)
            and low <= timestamp <= high
        ):
            first_opens[row.get("user_pseudo_id")] = int(timestamp)

    day = 24 * 3600 * _MICROS
    cohorts: list[dict[str, Any]] = []
    for user, first_open in first_opens.items():
        seen = [
            r["event_timestamp"]
            for r in rows
            if r.get("user_pseudo_id") == user
            and isinstance(r.get("event_timestamp"), int | float)
            and r["event_timestamp"] >= first_open
        ]
        record: dict[str, Any] = {
            "cohort_date": datetime.fromtimestamp(first_open / _MICROS, UTC).date().isoformat(),
            "user_id": user,
        }
        for n in retention_days:
            window_start = first_open + n * day
            record[f"day_{n}"] = any(window_start <= t < window_start + day for t in seen)
        cohorts.append(record)
    return cohorts


class FirebaseConnection(Connection[FirebaseConfig]):
    """Connection that also holds the OAuth token and project metadata."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.access_token: str | None = None
        self.token_expiry: datetime | None = None
        self.project: dict[str, Any] = {}


class FirebaseAdapter(DataSourceAdapter[FirebaseConfig]):
    """Firebase Analytics adapter.

    Events are cached as flattened rows; filters, ordering and paging run
    client-side. Event params and user properties become ``param_<key>``
    and ``user_prop_<key>`` columns, so column names are the union of the
    keys of the first 100 rows.
    """

    config_model = FirebaseConfig
    connection_class = FirebaseConnection
    SOURCE_TYPE = SourceType.FIREBASE
    CAPABILITIES = FIREBASE_CAPABILITIES
    KEY_SCAN = 100

    def _source_label(self, config: FirebaseConfig) -> str:
        return f"firebase:{config.project_id}"

    def _validate(self, config: FirebaseConfig) -> None:
        if config.date_range is None:
            return
        for bound in ("start", "end"):
            value = getattr(config.date_range, bound)
            try:
                if value:
                    date.fromisoformat(value[:10])
            except ValueError as e:
                raise ConfigurationError(
                    message=f"date_range.{bound} must be an ISO date", field=f"date_range.{bound}"
                ) from e

    async def _open(self, conn: Connection[FirebaseConfig]) -> None:
        conn.open_http(
            f"Firebase project {conn.config.project_id}",
            timeout=self.request_timeout,
            transport=self._transport,
        )
        fb = cast(FirebaseConnection, conn)
        await self._authenticate(fb)
        fb.project = await self._get(fb, f"{FIREBASE_API}/projects/{conn.config.project_id}")
        logger.debug(
            "firebase_project_loaded",
            project_id=conn.config.project_id,
            display_name=fb.project.get("displayName"),
        )

    async def _authenticate(self, conn: FirebaseConnection) -> str:
        """Return a usable access token, minting a new one when needed.

        Raises:
            AuthenticationFailedError: If the grant is rejected, the key
                cannot sign, or a given token expired with no service
                account to renew it.
        """
        now = conn.cache.now()
        expiry = conn.token_expiry
        if conn.access_token and expiry and now < expiry - TOKEN_RENEW_MARGIN:
            return conn.access_token

        config = conn.config
        if config.service_account is not None:
            token, lifetime = await self._exchange(conn, config.service_account)
        elif conn.access_token is None and config.access_token:
            token, lifetime = config.access_token, TOKEN_LIFETIME_SECONDS
        else:
            raise AuthenticationFailedError(
                message="Firebase access token expired and no service account is configured"
            )
        conn.access_token = token
        conn.token_expiry = now + timedelta(seconds=lifetime)
        return token

    async def _exchange(
        self, conn: FirebaseConnection, account: FirebaseServiceAccount
    ) -> tuple[str, int]:
        issued = int(conn.cache.now().timestamp())
        claims = {
            "iss": account.client_email,
            "sub": account.client_email,
            "aud": account.token_uri,
            "iat": issued,
            "exp": issued + TOKEN_LIFETIME_SECONDS,
            "scope": TOKEN_SCOPES,
        }
        headers = {"kid": account.private_key_id} if account.private_key_id else None
        try:
            assertion = jwt.encode(claims, account.private_key, algorithm="RS256", headers=headers)
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise AuthenticationFailedError(
                message=f"Could not sign the service account assertion: {e}"
            ) from e

        response = await conn.session.request(
            "POST",
            account.token_uri,
            data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            check_status=False,
        )
        if response.status_code in {400, 401}:
            raise AuthenticationFailedError(
                message="Google rejected the service account grant",
                details={"status_code": response.status_code, "error": response.text[:200]},
            )
        raise_for_status(response, conn.session.source)
        data = response.json()
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationFailedError(message="Token exchange returned no access token")
        return token, int(data.get("expires_in") or TOKEN_LIFETIME_SECONDS)

    async def _get(self, conn: FirebaseConnection, url: str) -> dict[str, Any]:
        token = await self._authenticate(conn)
        data = await conn.session.get_json(url, headers=bearer_auth(token))
        return data if isinstance(data, dict) else {}

    async def _post(self, conn: FirebaseConnection, url: str, body: Any) -> dict[str, Any]:
        token = await self._authenticate(conn)
        data = await conn.session.post_json(url, body, headers=bearer_auth(token))
        return data if isinstance(data, dict) else {}

    def _date_window(self, conn: Connection[FirebaseConfig]) -> tuple[date, date]:
        date_range = conn.config.date_range
        today = conn.cache.now().date()
        start = end = None
        if date_range and date_range.start:
            start = date.fromisoformat(date_range.start[:10])
        if date_range and date_range.end:
            end = date.fromisoformat(date_range.end[:10])
        end = end or today
        return start or end - timedelta(days=DEFAULT_LOOKBACK_DAYS), end

    async def _load(self, conn: Connection[FirebaseConfig]) -> list[dict[str, Any]]:
        fb = cast(FirebaseConnection, conn)
        if conn.config.bigquery_dataset_id:
            events = await self._load_export(fb)
        else:
            events = await self._load_report(fb)
        return [flatten_event(e) for e in events]

    async def _load_report(self, conn: FirebaseConnection) -> list[dict[str, Any]]:
        config = conn.config
        start, end = self._date_window(conn)
        body: dict[str, Any] = {
            "dateRanges": [{"startDate": start.isoformat(), "endDate": end.isoformat()}],
            "dimensions": [{"name": name} for name in REPORT_DIMENSIONS],
            "metrics": [{"name": name} for name in REPORT_METRICS],
            "limit": config.max_events,
        }
        if config.event_types:
            body["dimensionFilter"] = {
                "filter": {
                    "fieldName": "eventName",
                    "inListFilter": {"values": list(config.event_types)},
                }
            }
        property_id = config.property_id or config.project_id
        report = await self._post(
            conn, f"{ANALYTICS_DATA_API}/properties/{property_id}:runReport", body
        )
        return events_from_report(report, config.project_id)

    def export_query(
        self, config: FirebaseConfig, start: date, end: date
    ) -> tuple[str, list[dict[str, Any]]]:
        """SQL and named parameters reading the export tables for a date window."""
        table = f"`{config.project_id}.{config.bigquery_dataset_id}.{EXPORT_TABLE_PREFIX}*`"
        parameters: list[dict[str, Any]] = [
            _string_parameter("start_suffix", start.strftime("%Y%m%d")),
            _string_parameter("end_suffix", end.strftime("%Y%m%d")),
        ]
        sql = (
            f"SELECT {', '.join(EXPORT_COLUMNS)} FROM {table} "
            "WHERE _TABLE_SUFFIX BETWEEN @start_suffix AND @end_suffix"
        )
        if config.event_types:
            sql += " AND event_name IN UNNEST(@event_names)"
            parameters.append(
                {
                    "name": "event_names",
                    "parameterType": {"type": "ARRAY", "arrayType": {"type": "STRING"}},
                    "parameterValue": {"arrayValues": [{"value": e} for e in config.event_types]},
                }
            )
        return f"{sql} LIMIT {int(config.max_events)}", parameters

    async def _load_export(self, conn: FirebaseConnection) -> list[dict[str, Any]]:
        start, end = self._date_window(conn)
        sql, parameters = self.export_query(conn.config, start, end)
        return await self._run_bigquery(conn, sql, parameters)

    async def _run_bigquery(
        self,
        conn: FirebaseConnection,
        sql: str,
        parameters: list[dict[str, Any]] | None = None,
    ) -> list[dict[str, Any]]:
        body: dict[str, Any] = {
            "query": sql,
            "useLegacySql": False,
            "maxResults": conn.config.max_events,
        }
        if parameters:
            body["parameterMode"] = "NAMED"
            body["queryParameters"] = parameters
        result = await self._post(
            conn, f"{BIGQUERY_API}/projects/{conn.config.project_id}/queries", body
        )
        if result.get("jobComplete") is False:
            raise QueryError(message="BigQuery job did not complete in time", query=sql)
        return rows_from_bigquery(result)

    async def _probe(self, conn: Connection[FirebaseConfig]) -> bool:
        await self._get(
            cast(FirebaseConnection, conn), f"{FIREBASE_API}/projects/{conn.config.project_id}"
        )
        return True

    async def query_bigquery(self, sql: str) -> NormalizedData:
        """Run caller supplied read-only SQL against the BigQuery export.

        Raises:
            NotConnectedError: If called before a successful connect.
            UnsupportedOperationError: If no export dataset is configured or
                ``sql`` is not read-only.
            QueryError: If BigQuery rejects the query.
        """
        conn = cast(FirebaseConnection, self._require())
        if not conn.config.bigquery_dataset_id:
            raise UnsupportedOperationError(
                "BigQuery is not configured; set bigquery_dataset_id", query=sql
            )
        validate_read_only(sql, dialect="bigquery")
        rows = await self._run_bigquery(conn, sql)
        return NormalizedData(
            columns=list(rows[0].keys()) if rows else [],
            rows=rows,
            metadata=NormalizedMetadata(
                source=f"bigquery:{conn.config.project_id}.{conn.config.bigquery_dataset_id}",
                fetched_at=conn.cache.now().isoformat(),
                row_count=len(rows),
            ),
        )

    async def _events(self) -> list[dict[str, Any]]:
        conn = self._require()
        await conn.cache.ensure_fresh(self._loader(conn))
        return list(conn.cache.rows)

    async def available_event_types(self) -> list[str]:
        """Distinct event names in the cached events, sorted."""
        return sorted({row["event_name"] for row in await self._events() if row.get("event_name")})

    async def user_properties(self, user_id: str) -> dict[str, Any]:
        """``user_prop_*`` columns of the user's most recent event.

        ``user_id`` matches either the user id or the pseudo id.
        """
        events = [
            row
            for row in await self._events()
            if user_id in (row.get("user_id"), row.get("user_pseudo_id"))
        ]
        if not events:
            return {}
        latest = max(events, key=lambda row: row.get("event_timestamp") or 0)
        return {
            key.removeprefix("user_prop_"): value
            for key, value in latest.items()
            if key.startswith("user_prop_")
        }

    async def get_aggregated_metrics(
        self, start: str, end: str, group_by: GroupBy = "day"
    ) -> list[dict[str, Any]]:
        """See ``aggregate_metrics``."""
        return aggregate_metrics(await self._events(), start, end, group_by)

    async def get_retention_cohorts(
        self,
        cohort_start: str,
        cohort_end: str,
        retention_days: Sequence[int] = (1, 3, 7, 14, 30),
    ) -> list[dict[str, Any]]:
        """See ``retention_cohorts``."""
        return retention_cohorts(await self._events(), cohort_start, cohort_end, retention_days)


def _string_parameter(name: str, value: str) -> dict[str, Any]:
    return {
        "name": name,
        "parameterType": {"type": "STRING"},
        "parameterValue": {"value": value},
    }
