"""Unity Gaming Services adapter implementation.

This module provides an adapter over several Unity Gaming Services REST APIs
(analytics, player authentication, cloud save, leaderboards, economy and
remote config). A service account key is exchanged for a short-lived bearer
token, which is renewed when it expires.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, cast

import structlog

from gameinsights.adapters.datasource.base import Connection, DataSourceAdapter
from gameinsights.adapters.datasource.config import UnityConfig
from gameinsights.adapters.datasource.errors import AuthenticationFailedError
from gameinsights.adapters.datasource.http import basic_auth, bearer_auth
from gameinsights.adapters.datasource.types import AdapterCapabilities, SourceType

logger = structlog.get_logger()

AUTH_URL = "https://services.api.unity.com/auth/v1/token-exchange"
ANALYTICS_URL = "https://analytics.cloud.unity3d.com"
PLAYER_AUTH_URL = "https://player-auth.services.api.unity.com"
ECONOMY_URL = "https://economy.services.api.unity.com"
REMOTE_CONFIG_URL = "https://remote-config.services.api.unity.com"
CLOUD_SAVE_URL = "https://cloud-save.services.api.unity.com"
LEADERBOARDS_URL = "https://leaderboards.services.api.unity.com"

TOKEN_SCOPE = (
    "unity.analytics.read unity.player-auth.read unity.cloud-save.read "
    "unity.economy.read unity.remote-config.read unity.leaderboards.read"
)
DEFAULT_TOKEN_TTL_SECONDS = 3600
# Page size caps of the analytics and player APIs.
ANALYTICS_PAGE_LIMIT = 1000
PLAYERS_PAGE_LIMIT = 100
LEADERBOARD_PAGE_LIMIT = 1000

# Data types read once per player.
PLAYER_SCOPED_TYPES = frozenset(
    {"cloud_save", "economy_purchases", "economy_balances", "economy_inventory"}
)

UNITY_CAPABILITIES = AdapterCapabilities(
    supports_realtime=False,
    supports_filtering=True,
    supports_aggregation=False,
    max_rows_per_query=10000,
)


def flatten_params(params: dict[str, Any] | None, prefix: str = "param") -> dict[str, Any]:
    """Flatten event parameters into ``param_<key>`` columns."""
    flattened: dict[str, Any] = {}
    for key, value in (params or {}).items():
        if isinstance(value, dict):
            flattened.update(flatten_params(value, f"{prefix}_{key}"))
        else:
            flattened[f"{prefix}_{key}"] = value
    return flattened


def flatten_event(event: dict[str, Any]) -> dict[str, Any]:
    """Flatten an analytics event into one row."""
    return {
        "_type": "event",
        "event_id": event.get("eventId"),
        "event_name": event.get("eventName"),
        "timestamp": event.get("eventTimestamp"),
        "player_id": event.get("playerId"),
        "session_id": event.get("sessionId"),
        "platform": event.get("platform"),
        "country": event.get("country"),
        "app_version": event.get("appVersion"),
        **flatten_params(event.get("eventParams")),
    }


def flatten_player(player: dict[str, Any]) -> dict[str, Any]:
    """Flatten a player record into one row."""
    external = player.get("externalIds")
    return {
        "_type": "player",
        "player_id": player.get("playerId") or player.get("id"),
        "created_at": player.get("createdAt"),
        "last_login_at": player.get("lastLoginAt"),
        "is_disabled": player.get("disabled"),
        "external_providers": ",".join(e.get("providerId", "") for e in external)
        if external
        else None,
    }


def flatten_currency(currency: dict[str, Any]) -> dict[str, Any]:
    """Flatten an economy currency definition into one row."""
    return {
        "_type": "currency",
        "currency_id": currency.get("id"),
        "currency_name": currency.get("name"),
        "currency_type": currency.get("type"),
        "initial_balance": currency.get("initial"),
        "max_balance": currency.get("max"),
    }


def flatten_remote_config(entry: dict[str, Any]) -> dict[str, Any]:
    """Flatten a remote config value into one row."""
    return {
        "_type": "remote_config",
        "config_key": entry.get("key"),
        "config_type": entry.get("type"),
        "config_value": entry.get("value"),
        "updated_at": entry.get("updatedAt"),
    }


def _cell(value: Any) -> Any:
    """Nested values are stored as JSON text so rows stay flat."""
    if isinstance(value, dict | list):
        return json.dumps(value, sort_keys=True)
    return value


def flatten_cloud_save_item(player_id: str, item: dict[str, Any]) -> dict[str, Any]:
    """Flatten one cloud save key of a player into one row."""
    return {
        "_type": "cloud_save",
        "player_id": player_id,
        "save_key": item.get("key"),
        "save_value": _cell(item.get("value")),
        "write_lock": item.get("writeLock"),
        "created_at": item.get("createdAt"),
        "modified_at": item.get("modifiedAt"),
    }


def flatten_leaderboard_entry(leaderboard_id: str, entry: dict[str, Any]) -> dict[str, Any]:
    """Flatten a leaderboard score into one row."""
    return {
        "_type": "leaderboard_score",
        "leaderboard_id": leaderboard_id,
        "player_id": entry.get("playerId"),
        "player_name": entry.get("playerName"),
        "rank": entry.get("rank"),
        "score": entry.get("score"),
        "updated_at": entry.get("updatedTime"),
    }


def flatten_purchase(player_id: str, purchase: dict[str, Any]) -> dict[str, Any]:
    """Flatten a virtual purchase into one row.

    Costs and rewards become ``cost_<currency>`` and ``reward_<id>`` columns.
    """
    row: dict[str, Any] = {
        "_type": "purchase",
        "purchase_id": purchase.get("id"),
        "player_id": purchase.get("playerId") or player_id,
        "virtual_purchase_id": purchase.get("virtualPurchaseId"),
        "created_at": purchase.get("createdAt"),
    }
    for cost in purchase.get("costs") or []:
        row[f"cost_{cost.get('currencyId')}"] = cost.get("amount")
    for reward in purchase.get("rewards") or []:
        reward_id = reward.get("currencyId") or reward.get("itemId")
        row[f"reward_{reward_id}"] = reward.get("amount")
    return row


def flatten_balance(player_id: str, balance: dict[str, Any]) -> dict[str, Any]:
    """Flatten a currency balance of a player into one row."""
    return {
        "_type": "balance",
        "player_id": player_id,
        "currency_id": balance.get("currencyId"),
        "balance": balance.get("balance"),
        "modified_at": balance.get("modifiedAt"),
    }


def flatten_inventory_item(player_id: str, item: dict[str, Any]) -> dict[str, Any]:
    """Flatten an inventory item of a player into one row."""
    return {
        "_type": "inventory_item",
        "player_id": player_id,
        "item_id": item.get("itemId") or item.get("inventoryItemId"),
        "item_name": item.get("itemName"),
        "item_type": item.get("itemType"),
        "quantity": item.get("quantity"),
        "instance_data": _cell(item.get("instanceData")),
        "created_at": item.get("createdAt"),
        "modified_at": item.get("modifiedAt"),
    }


class UnityConnection(Connection[UnityConfig]):
    """Connection that also holds the exchanged access token."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.access_token: str | None = None
        self.token_expiry: datetime | None = None


class UnityAdapter(DataSourceAdapter[UnityConfig]):
    """Unity Gaming Services adapter.

    Rows from every configured data type share one cache and are tagged by
    ``_type``. Queries run client-side. Cloud save and economy player state
    are read once per player in ``player_ids``, or per listed player.
    """

    config_model = UnityConfig
    connection_class = UnityConnection
    SOURCE_TYPE = SourceType.UNITY
    CAPABILITIES = UNITY_CAPABILITIES
    KEY_SCAN = 100

    def _source_label(self, config: UnityConfig) -> str:
        return f"unity:{config.project_id}"

    def _env_path(self, config: UnityConfig) -> str:
        return f"projects/{config.project_id}/environments/{config.environment_id}"

    async def _open(self, conn: Connection[UnityConfig]) -> None:
        conn.open_http(
            f"Unity project {conn.config.project_id}",
            headers={"Content-Type": "application/json"},
            timeout=self.request_timeout,
            transport=self._transport,
        )
        await self._authenticate(cast(UnityConnection, conn))

    async def _authenticate(self, conn: UnityConnection) -> str:
        """Return a valid access token, exchanging credentials if needed.

        Raises:
            AuthenticationFailedError: If the exchange is rejected or returns
                no token.
        """
        now = conn.cache.now()
        if conn.access_token and conn.token_expiry and now < conn.token_expiry:
            return conn.access_token

        data = await conn.session.post_json(
            AUTH_URL,
            {"grant_type": "client_credentials", "scope": TOKEN_SCOPE},
            headers=basic_auth(f"{conn.config.key_id}:{conn.config.secret_key}"),
        )
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationFailedError(message="Unity token exchange returned no token")
        ttl = data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS
        conn.access_token = token
        conn.token_expiry = now + timedelta(seconds=ttl)
        return token

    async def _get(
        self, conn: Connection[UnityConfig], url: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        token = await self._authenticate(cast(UnityConnection, conn))
        data = await conn.session.get_json(url, params=params, headers=bearer_auth(token))
        return data if isinstance(data, dict) else {}

    async def get_analytics_events(self, conn: Connection[UnityConfig]) -> list[dict[str, Any]]:
        """Analytics events in the configured date range."""
        config = conn.config
        params: dict[str, Any] = {"limit": min(config.max_results, ANALYTICS_PAGE_LIMIT)}
        if config.date_range and config.date_range.start:
            params["startDate"] = config.date_range.start
        if config.date_range and config.date_range.end:
            params["endDate"] = config.date_range.end
        data = await self._get(
            conn, f"{ANALYTICS_URL}/api/v2/projects/{config.project_id}/events", params
        )
        return list(data.get("data") or [])[: config.max_results]

    async def get_players(self, conn: Connection[UnityConfig]) -> list[dict[str, Any]]:
        """Page through players with the ``cursors.next`` cursor."""
        max_players = conn.config.max_results
        url = f"{PLAYER_AUTH_URL}/v1/{self._env_path(conn.config)}/players"
        players: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {"limit": min(max_players - len(players), PLAYERS_PAGE_LIMIT)}
            if cursor:
                params["cursor"] = cursor
            data = await self._get(conn, url, params)
            players.extend(data.get("results") or [])
            cursor = (data.get("cursors") or {}).get("next")
            if not cursor or len(players) >= max_players:
                return players[:max_players]

    async def get_economy_currencies(self, conn: Connection[UnityConfig]) -> list[dict[str, Any]]:
        """Economy currency definitions."""
        url = f"{ECONOMY_URL}/v2/{self._env_path(conn.config)}/configs/currencies"
        data = await self._get(conn, url)
        return list(data.get("results") or [])

    async def get_remote_config(self, conn: Connection[UnityConfig]) -> list[dict[str, Any]]:
        """Remote config values."""
        url = f"{REMOTE_CONFIG_URL}/v1/{self._env_path(conn.config)}/configs"
        data = await self._get(conn, url)
        return list((data.get("data") or {}).get("value") or [])

    async def get_cloud_save(
        self, conn: Connection[UnityConfig], player_id: str
    ) -> list[dict[str, Any]]:
        """Cloud save keys of one player."""
        url = f"{CLOUD_SAVE_URL}/v1/{self._env_path(conn.config)}/players/{player_id}/data"
        data = await self._get(conn, url)
        return list(data.get("results") or [])

    async def get_leaderboard_scores(
        self, conn: Connection[UnityConfig], leaderboard_id: str
    ) -> list[dict[str, Any]]:
        """Page through a leaderboard's scores by offset up to ``max_results``."""
        max_scores = conn.config.max_results
        env = self._env_path(conn.config)
        url = f"{LEADERBOARDS_URL}/v1/{env}/leaderboards/{leaderboard_id}/scores"
        scores: list[dict[str, Any]] = []
        while len(scores) < max_scores:
            limit = min(max_scores - len(scores), LEADERBOARD_PAGE_LIMIT)
            data = await self._get(conn, url, {"offset": len(scores), "limit": limit})
            page = list(data.get("results") or [])
            scores.extend(page)
            if len(page) < limit:
                break
        return scores[:max_scores]

    async def get_player_purchases(
        self, conn: Connection[UnityConfig], player_id: str
    ) -> list[dict[str, Any]]:
        """Virtual purchases made by one player."""
        url = f"{ECONOMY_URL}/v2/{self._env_path(conn.config)}/players/{player_id}/purchases"
        data = await self._get(conn, url, {"limit": conn.config.max_results})
        return list(data.get("results") or [])

    async def get_player_balances(
        self, conn: Connection[UnityConfig], player_id: str
    ) -> list[dict[str, Any]]:
        """Currency balances of one player."""
        url = f"{ECONOMY_URL}/v2/{self._env_path(conn.config)}/players/{player_id}/balances"
        data = await self._get(conn, url)
        return list(data.get("results") or [])

    async def get_player_inventory(
        self, conn: Connection[UnityConfig], player_id: str
    ) -> list[dict[str, Any]]:
        """Inventory items owned by one player."""
        url = f"{ECONOMY_URL}/v2/{self._env_path(conn.config)}/players/{player_id}/inventory"
        data = await self._get(conn, url)
        return list(data.get("results") or data.get("items") or [])

    async def _player_rows(
        self, conn: Connection[UnityConfig], data_type: str, player_ids: list[str]
    ) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for player_id in player_ids:
            if data_type == "cloud_save":
                items = await self.get_cloud_save(conn, player_id)
                rows.extend(flatten_cloud_save_item(player_id, i) for i in items)
            elif data_type == "economy_purchases":
                purchases = await self.get_player_purchases(conn, player_id)
                rows.extend(flatten_purchase(player_id, p) for p in purchases)
            elif data_type == "economy_balances":
                balances = await self.get_player_balances(conn, player_id)
                rows.extend(flatten_balance(player_id, b) for b in balances)
            elif data_type == "economy_inventory":
                items = await self.get_player_inventory(conn, player_id)
                rows.extend(flatten_inventory_item(player_id, i) for i in items)
        return rows

    async def _load(self, conn: Connection[UnityConfig]) -> list[dict[str, Any]]:
        config = conn.config
        rows: list[dict[str, Any]] = []
        # Listed at most once per load and shared by the per-player types.
        players: list[dict[str, Any]] | None = None
        for data_type in config.data_types:
            if data_type == "analytics_events":
                rows.extend(flatten_event(e) for e in await self.get_analytics_events(conn))
            elif data_type == "players":
                if players is None:
                    players = await self.get_players(conn)
                rows.extend(flatten_player(p) for p in players)
            elif data_type == "leaderboards":
                if not config.leaderboard_ids:
                    logger.debug("unity_leaderboards_skipped", reason="no leaderboard_ids")
                for leaderboard_id in config.leaderboard_ids:
                    scores = await self.get_leaderboard_scores(conn, leaderboard_id)
                    rows.extend(flatten_leaderboard_entry(leaderboard_id, s) for s in scores)
            elif data_type in PLAYER_SCOPED_TYPES:
                if config.player_ids is not None:
                    player_ids = list(config.player_ids)
                else:
                    if players is None:
                        players = await self.get_players(conn)
                    player_ids = [
                        pid for p in players if (pid := p.get("playerId") or p.get("id"))
                    ]
                rows.extend(await self._player_rows(conn, data_type, player_ids))
            elif data_type == "economy_currencies":
                rows.extend(flatten_currency(c) for c in await self.get_economy_currencies(conn))
            elif data_type == "remote_config":
                rows.extend(flatten_remote_config(c) for c in await self.get_remote_config(conn))
        return rows

    async def _probe(self, conn: Connection[UnityConfig]) -> bool:
        return bool(await self._authenticate(cast(UnityConnection, conn)))
