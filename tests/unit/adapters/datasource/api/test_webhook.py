"""Tests for WebhookAdapter."""

import asyncio
import json

import httpx
import pytest

from gameinsights.adapters.datasource.api import webhook
from gameinsights.adapters.datasource.api.webhook import (
    MAX_RECONNECT_ATTEMPTS,
    WebhookAdapter,
    iter_sse_data,
    validate_payload,
)
from gameinsights.adapters.datasource.errors import ConnectionFailedError, NotConnectedError
from gameinsights.adapters.datasource.types import DataQuery, FilterOperator, QueryFilter

ENDPOINT = {"id": "ep-1", "eventsReceived": 3, "lastEventAt": "2024-01-14T00:00:00+00:00"}


class Receiver:
    """Mock webhook receiver service."""

    def __init__(self, endpoint=ENDPOINT, stream_body=b"", stream_status=200):
        self.endpoint = endpoint
        self.stream_body = stream_body
        self.stream_status = stream_status
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/events"):
            return httpx.Response(
                self.stream_status,
                content=self.stream_body,
                headers={"Content-Type": "text/event-stream"},
            )
        if path.endswith("/status"):
            return httpx.Response(200, json={"status": "active"})
        if request.method == "POST" and path == "/api/webhooks":
            return httpx.Response(201, json={"endpoint": self.endpoint})
        if path.startswith("/api/webhooks/"):
            return httpx.Response(200, json={"endpoint": self.endpoint})
        return httpx.Response(404)

    def paths(self):
        return [(r.method, r.url.path) for r in self.requests]


def config(**overrides):
    return {
        "name": "live-events",
        "source_type": "webhook",
        "receiver_url": "https://hooks.game.test/",
        "stream_events": False,
        **overrides,
    }


async def connected(settings, receiver=None, clock=None, **overrides):
    kwargs = {"clock": clock} if clock is not None else {}
    adapter = WebhookAdapter(
        settings, transport=httpx.MockTransport(receiver or Receiver()), **kwargs
    )
    await adapter.connect(config(**overrides))
    return adapter


async def lines(*items):
    for item in items:
        yield item


class TestEventParsing:
    """Tests for server-sent event parsing and payload checks."""

    @pytest.mark.asyncio
    async def test_iter_sse_data(self):
        """Data lines are grouped per event; comments and other fields are skipped."""
        stream = lines(
            'data: {"a": 1}',
            "",
            ": keepalive",
            "event: ping",
            "data: first",
            "data:second",
            "",
            "data: tail",
        )

        events = [data async for data in iter_sse_data(stream)]

        assert events == ['{"a": 1}', "first\nsecond", "tail"]

    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ({"score": 10, "player": "ana"}, True),
            ({"score": "high", "player": "ana"}, False),
            ({"player": None}, True),
            ({"score": 1, "extra": [1, 2]}, True),
        ],
    )
    def test_validate_payload(self, payload, expected):
        """Present values must match the expected type; missing and null fields pass."""
        expected_schema = {"score": "number", "player": "string", "extra": "unknown"}

        assert validate_payload(payload, expected_schema) is expected

    def test_validate_without_schema(self):
        """Anything passes when no schema is expected."""
        assert validate_payload({"score": "high"}, None) is True


class TestWebhookEndpoint:
    """Tests for endpoint creation and lookup."""

    @pytest.mark.asyncio
    async def test_creates_endpoint(self, settings):
        """Without an endpoint id a new endpoint is registered with the receiver."""
        receiver = Receiver()
        adapter = await connected(
            settings, receiver, secret_key="s3cret", expected_schema={"score": "number"}
        )

        method, path = receiver.paths()[0]
        assert (method, path) == ("POST", "/api/webhooks")
        assert json.loads(receiver.requests[0].content) == {
            "secretKey": "s3cret",
            "schema": {"score": "number"},
        }
        assert adapter.webhook_url == "https://hooks.game.test/webhook/ep-1"
        assert adapter.endpoint_status()["eventsReceived"] == 3
        data = await adapter.fetch_data()
        assert data.rows == []
        assert data.metadata.source == "webhook:ep-1"

    @pytest.mark.asyncio
    async def test_fetches_existing_endpoint(self, settings):
        """A configured endpoint id is looked up, not created."""
        receiver = Receiver()
        await connected(settings, receiver, endpoint_id="ep-1")

        assert receiver.paths() == [("GET", "/api/webhooks/ep-1")]

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, settings):
        """A receiver response without an endpoint id fails the connect."""
        adapter = WebhookAdapter(
            settings, transport=httpx.MockTransport(Receiver(endpoint={"name": "x"}))
        )

        with pytest.raises(ConnectionFailedError):
            await adapter.connect(config())

        assert adapter.is_connected is False

    @pytest.mark.asyncio
    async def test_connection_checks_status(self, settings):
        """test_connection reads the endpoint status."""
        receiver = Receiver()
        adapter = await connected(settings, receiver)

        assert await adapter.test_connection() is True
        assert receiver.paths()[-1] == ("GET", "/api/webhooks/ep-1/status")


class TestPushedEvents:
    """Tests for the event buffer and pushed events."""

    @pytest.mark.asyncio
    async def test_pushed_events_are_visible_at_once(self, settings, clock):
        """Pushed events reach the cache without another request and can be filtered."""
        receiver = Receiver()
        adapter = await connected(settings, receiver, clock=clock)
        sent = len(receiver.requests)

        adapter.push_event({"player": "ana", "score": 10}, event_type="match_end")
        adapter.push_event({"player": "bo", "score": 20}, event_type="match_end")
        data = await adapter.fetch_data(
            DataQuery(filters=[QueryFilter(column="score", operator=FilterOperator.GT, value=15)])
        )

        assert len(receiver.requests) == sent
        assert len(data.rows) == 1
        row = data.rows[0]
        assert row["player"] == "bo"
        assert row["_event_type"] == "match_end"
        assert row["_source"] == "manual"
        assert row["_timestamp"] == clock.current.isoformat()
        assert row["_validated"] is True
        assert {"_event_id", "player", "score"} <= set(data.columns)
        assert adapter.endpoint_status()["eventsReceived"] == 5

    @pytest.mark.asyncio
    async def test_buffer_drops_oldest(self, settings):
        """A full buffer drops its oldest event for each new one."""
        adapter = await connected(settings, max_buffer_size=2)

        for score in (1, 2, 3):
            adapter.push_event({"score": score})
        data = await adapter.fetch_data()

        assert [row["score"] for row in data.rows] == [2, 3]
        assert [e.payload["score"] for e in adapter.recent_events(1)] == [3]

    @pytest.mark.asyncio
    async def test_expected_schema_marks_events(self, settings):
        """Events that do not match the expected schema are kept but marked."""
        adapter = await connected(settings, expected_schema={"score": "number"})

        good = adapter.push_event({"score": 3})
        bad = adapter.push_event({"score": "high"})

        assert good.validated is True
        assert bad.validated is False

    @pytest.mark.asyncio
    async def test_clear_buffer(self, settings):
        """Clearing the buffer empties the cached rows."""
        adapter = await connected(settings)
        adapter.push_event({"score": 1})

        adapter.clear_buffer()

        assert (await adapter.fetch_data()).rows == []
        assert adapter.recent_events() == []

    @pytest.mark.asyncio
    async def test_listeners(self, settings):
        """Listeners see each event until removed, and a failing listener is skipped."""
        adapter = await connected(settings)
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        adapter.add_event_listener(broken)
        remove = adapter.add_event_listener(seen.append)
        adapter.push_event({"score": 1})
        remove()
        adapter.push_event({"score": 2})

        assert [e.payload for e in seen] == [{"score": 1}]
        assert len(adapter.recent_events()) == 2

    @pytest.mark.asyncio
    async def test_push_before_connect(self, settings):
        """Pushing needs a connection."""
        adapter = WebhookAdapter(settings)

        with pytest.raises(NotConnectedError):
            adapter.push_event({"score": 1})

    @pytest.mark.asyncio
    async def test_disconnect_drops_buffer_and_listeners(self, settings):
        """Disconnect forgets buffered events and listeners."""
        adapter = await connected(settings)
        seen = []
        adapter.add_event_listener(seen.append)
        adapter.push_event({"score": 1})

        await adapter.disconnect()
        await adapter.connect(config())
        adapter.push_event({"score": 2})

        assert len(seen) == 1
        assert [e.payload for e in adapter.recent_events()] == [{"score": 2}]

    @pytest.mark.asyncio
    async def test_state_when_disconnected(self, settings):
        """A disconnected adapter has no URL, status or events."""
        adapter = WebhookAdapter(settings)

        assert adapter.webhook_url is None
        assert adapter.endpoint_status() is None
        assert adapter.recent_events() == []
        assert adapter.is_streaming is False


class TestEventStream:
    """Tests for the receiver's server-sent event stream."""

    @pytest.mark.asyncio
    async def test_streamed_events_are_buffered(self, settings):
        """Events from the stream are buffered; malformed ones are skipped."""
        receiver = Receiver(
            stream_body=(
                b'data: {"eventType": "purchase", "source": "store", '
                b'"payload": {"sku": "gems_100"}}\n\n'
                b"data: not json\n\n"
            )
        )
        adapter = WebhookAdapter(settings, transport=httpx.MockTransport(receiver))
        received = asyncio.Event()
        adapter.add_event_listener(lambda event: received.set())

        await adapter.connect(config(stream_events=True))
        await asyncio.wait_for(received.wait(), 1)
        data = await adapter.fetch_data()

        stream_request = next(r for r in receiver.requests if r.url.path.endswith("/events"))
        assert stream_request.url.path == "/api/webhooks/ep-1/events"
        assert stream_request.headers["Accept"] == "text/event-stream"
        assert len(data.rows) == 1
        assert data.rows[0]["sku"] == "gems_100"
        assert data.rows[0]["_event_type"] == "purchase"
        assert data.rows[0]["_source"] == "store"

        await adapter.disconnect()
        assert adapter.is_streaming is False

    @pytest.mark.asyncio
    async def test_stream_gives_up_after_repeated_failures(self, settings, monkeypatch):
        """A failing stream is retried a bounded number of times."""
        monkeypatch.setattr(webhook, "BASE_RECONNECT_DELAY_SECONDS", 0.0)
        receiver = Receiver(stream_status=503)
        adapter = WebhookAdapter(settings, transport=httpx.MockTransport(receiver))

        await adapter.connect(config(stream_events=True))
        await asyncio.wait_for(adapter._connection.stream_task, 1)

        stream_requests = [r for r in receiver.requests if r.url.path.endswith("/events")]
        assert len(stream_requests) == MAX_RECONNECT_ATTEMPTS + 1
        assert adapter.is_streaming is False
        await adapter.disconnect()
