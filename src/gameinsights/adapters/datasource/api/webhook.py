"""Webhook adapter implementation.

Events arrive from a webhook receiver service, either over its server-sent
event stream (read by a background task) or through ``push_event``. Each
event is appended to a bounded buffer and the buffer is written straight to
the connection's cache, so a read sees new events at once and is answered
by the same client-side query engine as every other source.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from collections import deque
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any, cast

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from gameinsights.adapters.datasource.base import Connection, DataSourceAdapter
from gameinsights.adapters.datasource.config import WebhookConfig
from gameinsights.adapters.datasource.errors import AdapterError, ConnectionFailedError
from gameinsights.adapters.datasource.inference import build_schema, infer_value_type
from gameinsights.adapters.datasource.types import AdapterCapabilities, SchemaInfo, SourceType

logger = structlog.get_logger()

RECEIVER_API = "/api/webhooks"
MAX_RECONNECT_ATTEMPTS = 5
BASE_RECONNECT_DELAY_SECONDS = 1.0

WEBHOOK_CAPABILITIES = AdapterCapabilities(
    supports_realtime=True,
    supports_filtering=True,
    supports_aggregation=False,
    max_rows_per_query=10000,
)


class WebhookEvent(BaseModel):
    """One received event."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    timestamp: str
    source: str = "webhook"
    event_type: str = Field(default="custom", alias="eventType")
    payload: dict[str, Any] = Field(default_factory=dict)
    validated: bool = False

    def to_row(self) -> dict[str, Any]:
        """The event as a cache row: metadata columns, then the payload."""
        return {
            "_event_id": self.id,
            "_timestamp": self.timestamp,
            "_event_type": self.event_type,
            "_source": self.source,
            "_validated": self.validated,
            **self.payload,
        }


EventListener = Callable[[WebhookEvent], None]


def validate_payload(payload: Mapping[str, Any], expected: Mapping[str, str] | None) -> bool:
    """Check payload values against expected column types.

    Missing and null fields pass, as does any field expected as ``unknown``.
    """
    for key, expected_type in (expected or {}).items():
        value = payload.get(key)
        if value is None or expected_type == "unknown":
            continue
        if infer_value_type(value).value != expected_type:
            return False
    return True


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the ``data`` of each server-sent event.

    Multi-line data is joined with newlines; comments and other fields are
    ignored.
    """
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data.append(value.removeprefix(" "))
    if data:
        yield "\n".join(data)


class WebhookConnection(Connection[WebhookConfig]):
    """Connection holding the receiver endpoint, the event buffer and the stream task."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.buffer: deque[WebhookEvent] = deque(maxlen=self.config.max_buffer_size)
        self.endpoint: dict[str, Any] = {}
        self.events_received = 0
        self.last_event_at: str | None = None
        self.streaming = False
        self.stream_task: asyncio.Task[None] | None = None

    @property
    def endpoint_id(self) -> str:
        return str(self.endpoint.get("id", ""))

    async def close(self) -> None:
        """Stop the stream task, then close like any connection."""
        task, self.stream_task = self.stream_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.buffer.clear()
        await super().close()


class WebhookAdapter(DataSourceAdapter[WebhookConfig]):
    """Webhook receiver adapter.

    Rows are the buffered events, oldest first. Once ``max_buffer_size``
    events are held the oldest is dropped for each new one. Columns are the
    union of the keys of every buffered event.
    """

    config_model = WebhookConfig
    connection_class = WebhookConnection
    SOURCE_TYPE = SourceType.WEBHOOK
    CAPABILITIES = WEBHOOK_CAPABILITIES

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._listeners: list[EventListener] = []

    def _source_label(self, config: WebhookConfig) -> str:
        conn = self._connection
        if isinstance(conn, WebhookConnection) and conn.endpoint_id:
            return f"webhook:{conn.endpoint_id}"
        return f"webhook:{config.endpoint_id or config.name}"

    async def _open(self, conn: Connection[WebhookConfig]) -> None:
        config = conn.config
        wc = cast(WebhookConnection, conn)
        conn.open_http(
            f"webhook receiver {config.receiver_url}",
            base_url=config.receiver_url,
            timeout=self.request_timeout,
            transport=self._transport,
        )
        if config.endpoint_id:
            data = await conn.session.get_json(f"{RECEIVER_API}/{config.endpoint_id}")
        else:
            body = {"secretKey": config.secret_key, "schema": config.expected_schema}
            data = await conn.session.post_json(
                RECEIVER_API, {key: value for key, value in body.items() if value is not None}
            )
        endpoint = data.get("endpoint") if isinstance(data, dict) else None
        if not isinstance(endpoint, dict) or not endpoint.get("id"):
            raise ConnectionFailedError(
                message="Webhook receiver returned no endpoint",
                details={"receiver_url": config.receiver_url},
            )
        wc.endpoint = dict(endpoint)
        wc.events_received = int(endpoint.get("eventsReceived") or 0)
        wc.last_event_at = endpoint.get("lastEventAt")
        logger.info(
            "webhook_endpoint_ready", endpoint_id=wc.endpoint_id, created=not config.endpoint_id
        )

        if config.stream_events:
            wc.stream_task = asyncio.create_task(self._listen(wc))

    async def _load(self, conn: Connection[WebhookConfig]) -> list[dict[str, Any]]:
        return [event.to_row() for event in cast(WebhookConnection, conn).buffer]

    async def _describe(
        self, conn: Connection[WebhookConfig], rows: list[dict[str, Any]]
    ) -> SchemaInfo:
        return build_schema(rows, key_scan=max(len(rows), 1))

    async def _probe(self, conn: Connection[WebhookConfig]) -> bool:
        wc = cast(WebhookConnection, conn)
        await conn.session.request("GET", f"{RECEIVER_API}/{wc.endpoint_id}/status")
        return True

    async def _listen(self, conn: WebhookConnection) -> None:
        """Read the receiver's event stream, reconnecting with exponential backoff.

        Gives up after ``MAX_RECONNECT_ATTEMPTS`` consecutive failures. A
        successful (re)connect resets the count.
        """
        url = f"{RECEIVER_API}/{conn.endpoint_id}/events"
        attempts = 0
        while True:
            try:
                async with conn.session.stream(
                    "GET", url, headers={"Accept": "text/event-stream"}
                ) as response:
                    conn.streaming = True
                    attempts = 0
                    logger.info("webhook_stream_connected", endpoint_id=conn.endpoint_id)
                    async for data in iter_sse_data(response.aiter_lines()):
                        self._receive(conn, data)
                logger.warning("webhook_stream_closed", endpoint_id=conn.endpoint_id)
            except (AdapterError, httpx.HTTPError) as e:
                logger.warning("webhook_stream_error", endpoint_id=conn.endpoint_id, error=str(e))
            finally:
                conn.streaming = False

            if attempts >= MAX_RECONNECT_ATTEMPTS:
                logger.error(
                    "webhook_stream_abandoned", endpoint_id=conn.endpoint_id, attempts=attempts
                )
                return
            delay = BASE_RECONNECT_DELAY_SECONDS * 2**attempts
            attempts += 1
            await asyncio.sleep(delay)

    def _new_event(
        self, conn: WebhookConnection, payload: Mapping[str, Any], event_type: str, source: str
    ) -> WebhookEvent:
        return WebhookEvent(
            id=uuid.uuid4().hex,
            timestamp=conn.cache.now().isoformat(),
            source=source,
            event_type=event_type,
            payload=dict(payload),
        )

    def _receive(self, conn: WebhookConnection, data: str) -> None:
        try:
            raw = json.loads(data)
            if not isinstance(raw, dict):
                raise ValueError("event is not a JSON object")
            event = WebhookEvent.model_validate(
                {"id": uuid.uuid4().hex, "timestamp": conn.cache.now().isoformat(), **raw}
            )
        except ValueError as e:
            logger.warning("webhook_event_invalid", endpoint_id=conn.endpoint_id, error=str(e))
            return
        self._ingest(conn, event)

    def _ingest(self, conn: WebhookConnection, event: WebhookEvent) -> WebhookEvent:
        event = event.model_copy(
            update={"validated": validate_payload(event.payload, conn.config.expected_schema)}
        )
        conn.buffer.append(event)
        conn.events_received += 1
        conn.last_event_at = event.timestamp
        self._sync_cache(conn)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning("webhook_listener_failed", event_id=event.id, error=str(e))
        return event

    def _sync_cache(self, conn: WebhookConnection) -> None:
        rows = [event.to_row() for event in conn.buffer]
        conn.cache.store(rows, build_schema(rows, key_scan=max(len(rows), 1)))

    def _webhook_connection(self) -> WebhookConnection:
        return cast(WebhookConnection, self._require())

    async def disconnect(self) -> None:
        """Stop streaming, drop the buffer and forget every listener."""
        await super().disconnect()
        self._listeners.clear()

    def push_event(self, payload: Mapping[str, Any], event_type: str = "custom") -> WebhookEvent:
        """Add an event by hand, as if it had been received.

        Raises:
            NotConnectedError: If called before a successful connect.
        """
        conn = self._webhook_connection()
        return self._ingest(conn, self._new_event(conn, payload, event_type, "manual"))

    def add_event_listener(self, listener: EventListener) -> Callable[[], None]:
        """Call ``listener`` with every received event. Returns its remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def recent_events(self, limit: int = 10) -> list[WebhookEvent]:
        """The newest ``limit`` buffered events, oldest first."""
        conn = self._connection
        if not isinstance(conn, WebhookConnection) or limit <= 0:
            return []
        return list(conn.buffer)[-limit:]

    def clear_buffer(self) -> None:
        """Drop every buffered event."""
        conn = self._webhook_connection()
        conn.buffer.clear()
        self._sync_cache(conn)

    @property
    def webhook_url(self) -> str | None:
        """URL external services should post events to."""
        conn = self._connection
        if not isinstance(conn, WebhookConnection):
            return None
        return f"{conn.config.receiver_url}/webhook/{conn.endpoint_id}"

    @property
    def is_streaming(self) -> bool:
        """Whether the event stream is currently open."""
        conn = self._connection
        return isinstance(conn, WebhookConnection) and conn.streaming

    def endpoint_status(self) -> dict[str, Any] | None:
        """Endpoint description with current receive statistics."""
        conn = self._connection
        if not isinstance(conn, WebhookConnection):
            return None
        return {
            **conn.endpoint,
            "eventsReceived": conn.events_received,
            "lastEventAt": conn.last_event_at,
        }
