"""PlayFab adapter implementation.

This module provides an adapter over the PlayFab Server API. Player
profiles, PlayStream events, catalog items and title data are fetched with
``X-SecretKey`` authentication and flattened into one heterogeneous row set
tagged by ``_type``.
"""

from __future__ import annotations

from typing import Any

import structlog

from gameinsights.adapters.datasource.base import Connection, DataSourceAdapter
from gameinsights.adapters.datasource.config import PlayFabConfig
from gameinsights.adapters.datasource.types import AdapterCapabilities, SourceType

logger = structlog.get_logger()

PLAYFAB_API_HOST = "playfabapi.com"
# Upper bound PlayFab accepts for MaxBatchSize.
MAX_SEGMENT_BATCH = 10000

PLAYFAB_CAPABILITIES = AdapterCapabilities(
    supports_realtime=False,
    supports_filtering=True,
    supports_aggregation=False,
    max_rows_per_query=10000,
)


def flatten_event_data(data: dict[str, Any] | None, prefix: str = "data") -> dict[str, Any]:
    """Flatten nested event payloads into ``data_<key>`` columns.

    Nested objects are joined with ``_``, so ``{"a": {"b": 1}}`` becomes
    ``{"data_a_b": 1}``.
    """
    flattened: dict[str, Any] = {}
    for key, value in (data or {}).items():
        if isinstance(value, dict):
            flattened.update(flatten_event_data(value, f"{prefix}_{key}"))
        else:
            flattened[f"{prefix}_{key}"] = value
    return flattened


def flatten_player_profile(player: dict[str, Any]) -> dict[str, Any]:
    """Flatten a ``PlayerProfile`` into one row."""
    locations = player.get("Locations") or [{}]
    linked = player.get("LinkedAccounts")
    row: dict[str, Any] = {
        "_type": "player",
        "playfab_id": player.get("PlayerId") or player.get("PlayFabId"),
        "display_name": player.get("DisplayName"),
        "created": player.get("Created"),
        "last_login": player.get("LastLogin"),
        "banned_until": player.get("BannedUntil"),
        "avatar_url": player.get("AvatarUrl"),
        "total_value_usd": player.get("TotalValueToDateInUSD"),
        "country": locations[0].get("CountryCode"),
        "city": locations[0].get("City"),
        "linked_accounts": ",".join(a.get("Platform", "") for a in linked) if linked else None,
    }
    for stat in player.get("Statistics") or []:
        row[f"stat_{stat.get('Name') or stat.get('StatisticName')}"] = stat.get("Value")
    row.update(player.get("VirtualCurrencyBalances") or {})
    return row


def flatten_event(event: dict[str, Any]) -> dict[str, Any]:
    """Flatten a PlayStream event into one row."""
    return {
        "_type": "event",
        "event_id": event.get("EventId"),
        "event_name": event.get("EventName"),
        "timestamp": event.get("Timestamp"),
        "event_namespace": event.get("EventNamespace"),
        "entity_type": event.get("EntityType"),
        "entity_id": event.get("EntityId"),
        "source": event.get("Source"),
        **flatten_event_data(event.get("EventData")),
    }


def flatten_catalog_item(item: dict[str, Any]) -> dict[str, Any]:
    """Flatten a catalog item into one row."""
    tags = item.get("Tags")
    row: dict[str, Any] = {
        "_type": "catalog_item",
        "item_id": item.get("ItemId"),
        "item_class": item.get("ItemClass"),
        "catalog_version": item.get("CatalogVersion"),
        "display_name": item.get("DisplayName"),
        "description": item.get("Description"),
        "tags": ",".join(tags) if tags else None,
        "is_consumable": bool(item.get("Consumable")),
        "is_bundle": bool(item.get("Bundle")),
    }
    for currency, price in (item.get("VirtualCurrencyPrices") or {}).items():
        row[f"price_{currency}"] = price
    return row


class PlayFabAdapter(DataSourceAdapter[PlayFabConfig]):
    """PlayFab Server API adapter.

    Every call is a POST to ``https://<title_id>.playfabapi.com/Server/<Endpoint>``.
    Rows of different kinds share one cache, so column names are the union
    of the keys of the first 100 rows.
    """

    config_model = PlayFabConfig
    SOURCE_TYPE = SourceType.PLAYFAB
    CAPABILITIES = PLAYFAB_CAPABILITIES
    KEY_SCAN = 100

    def _source_label(self, config: PlayFabConfig) -> str:
        return f"playfab:{config.title_id}"

    async def _open(self, conn: Connection[PlayFabConfig]) -> None:
        conn.open_http(
            f"PlayFab title {conn.config.title_id}",
            base_url=f"https://{conn.config.title_id}.{PLAYFAB_API_HOST}",
            headers={
                "Content-Type": "application/json",
                "X-SecretKey": conn.config.secret_key,
            },
            timeout=self.request_timeout,
            transport=self._transport,
        )
        await self._call(conn, "GetTitleData", {"Keys": ["_test_connection"]})

    async def _call(
        self, conn: Connection[PlayFabConfig], endpoint: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        payload = {key: value for key, value in body.items() if value is not None}
        result = await conn.session.post_json(f"/Server/{endpoint}", payload)
        data = result.get("data") if isinstance(result, dict) else None
        return data or {}

    async def get_players_in_segment(
        self, conn: Connection[PlayFabConfig], segment_id: str, max_results: int
    ) -> list[dict[str, Any]]:
        """Page through ``GetPlayersInSegment`` up to ``max_results`` profiles."""
        players: list[dict[str, Any]] = []
        continuation: str | None = None
        while True:
            data = await self._call(
                conn,
                "GetPlayersInSegment",
                {
                    "SegmentId": segment_id,
                    "MaxBatchSize": min(max_results - len(players), MAX_SEGMENT_BATCH),
                    "ContinuationToken": continuation,
                },
            )
            players.extend(data.get("PlayerProfiles") or [])
            continuation = data.get("ContinuationToken")
            if not continuation or len(players) >= max_results:
                return players[:max_results]

    async def get_playstream_events(
        self,
        conn: Connection[PlayFabConfig],
        start_time: str | None = None,
        end_time: str | None = None,
        event_name: str | None = None,
    ) -> list[dict[str, Any]]:
        """Page through ``GetPlayStreamEvents`` up to ``max_results`` events."""
        max_events = conn.config.max_results
        events: list[dict[str, Any]] = []
        continuation: str | None = None
        while True:
            data = await self._call(
                conn,
                "GetPlayStreamEvents",
                {
                    "StartTime": start_time,
                    "EndTime": end_time,
                    "EventName": event_name,
                    "ContinuationToken": continuation,
                },
            )
            events.extend(data.get("Events") or [])
            continuation = data.get("ContinuationToken")
            if not continuation or len(events) >= max_events:
                return events[:max_events]

    async def get_catalog_items(
        self, conn: Connection[PlayFabConfig], catalog_version: str | None = None
    ) -> list[dict[str, Any]]:
        """Items of the (default) catalog."""
        data = await self._call(conn, "GetCatalogItems", {"CatalogVersion": catalog_version})
        return list(data.get("Catalog") or [])

    async def get_title_data(
        self, conn: Connection[PlayFabConfig], keys: list[str] | None = None
    ) -> dict[str, Any]:
        """Title data key/value pairs."""
        data = await self._call(conn, "GetTitleData", {"Keys": keys})
        return dict(data.get("Data") or {})

    async def _events_for_types(self, conn: Connection[PlayFabConfig]) -> list[dict[str, Any]]:
        """PlayStream events for each configured event name, or all events when unset.

        The combined result is capped at ``max_results``.
        """
        config = conn.config
        date_range = config.date_range
        events: list[dict[str, Any]] = []
        for event_name in config.event_types or [None]:
            if len(events) >= config.max_results:
                break
            events.extend(
                await self.get_playstream_events(
                    conn,
                    date_range.start if date_range else None,
                    date_range.end if date_range else None,
                    event_name,
                )
            )
        return events[: config.max_results]

    async def _load(self, conn: Connection[PlayFabConfig]) -> list[dict[str, Any]]:
        config = conn.config
        rows: list[dict[str, Any]] = []
        for data_type in config.data_types:
            if data_type == "player_data":
                if not config.segment_id:
                    logger.debug("playfab_player_data_skipped", reason="no segment_id")
                    continue
                players = await self.get_players_in_segment(
                    conn, config.segment_id, config.max_results
                )
                rows.extend(flatten_player_profile(p) for p in players)
            elif data_type == "playstream_events":
                events = await self._events_for_types(conn)
                rows.extend(flatten_event(e) for e in events)
            elif data_type == "catalog_items":
                items = await self.get_catalog_items(conn)
                rows.extend(flatten_catalog_item(i) for i in items)
            elif data_type == "title_data":
                title_data = await self.get_title_data(conn)
                rows.extend(
                    {"_type": "title_data", "key": key, "value": value}
                    for key, value in title_data.items()
                )
        return rows

    async def _probe(self, conn: Connection[PlayFabConfig]) -> bool:
        await self._call(conn, "GetTitleData", {"Keys": ["_test_connection"]})
        return True
