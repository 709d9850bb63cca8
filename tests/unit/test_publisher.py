"""
Unit tests for the rate-limited publish driver.

  TestPublishCommand   — body shape for structured, raw and enveloped channels
  TestPostPublish      — status classification of a single publish call
  TestPublishDriver    — batching, pacing, abort-on-failure, log volume
"""

import logging

import httpx
import pytest

from harness.channels import TOPIC_A, TOPIC_MQTT, TOPIC_RAW, Channel
from harness.errors import TransportError
from harness.publisher import (
    CLOUD_EVENT_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    PublishDriver,
    build_publish_command,
    command_for,
    post_publish,
)
from tests.helpers import PUBLISHER_URL, FakeClock, FixedOffset, request_json

_URL = f"{PUBLISHER_URL}/tests/publish"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _driver(client, clock=None, **overrides) -> PublishDriver:
    values = dict(messages_per_topic=5, rate_limit_rps=25, rng=FixedOffset(42), clock=clock or FakeClock())
    values.update(overrides)
    return PublishDriver(client, PUBLISHER_URL, **values)


@pytest.mark.unit
class TestPublishCommand:
    """Publish body construction per channel kind."""

    def test_structured_channel_publishes_plain_identifier(self):
        """A default channel sends the bare id as JSON on the messagebus component."""
        command = command_for(TOPIC_A, "http", "message-http-042")
        assert command == {
            "contentType": JSON_CONTENT_TYPE,
            "topic": "pubsub-a-topic-http",
            "data": "message-http-042",
            "protocol": "http",
            "metadata": None,
            "pubsubname": "messagebus",
        }

    def test_raw_channel_carries_raw_payload_metadata(self):
        """The raw channel asks the publisher to skip the envelope."""
        command = command_for(TOPIC_RAW, "http", "message-http-001")
        assert command["metadata"] == {"rawPayload": "true"}

    def test_alternate_backend_channel_targets_its_component(self):
        """The MQTT channel publishes to its own component and topic."""
        command = command_for(TOPIC_MQTT, "grpc", "message-grpc-001")
        assert command["pubsubname"] == "mqtt-pubsub"
        assert command["topic"] == "some-string/test-grpc"

    def test_enveloped_channel_wraps_identifier_in_cloud_event(self):
        """A channel with an event type sends a cloud event carrying the id."""
        channel = Channel(name="ce", topic="ce-topic", event_type="test.event")
        command = command_for(channel, "http", "message-http-009")
        assert command["contentType"] == CLOUD_EVENT_CONTENT_TYPE
        assert command["data"] == {
            "id": "message-http-009",
            "type": "test.event",
            "datacontenttype": "text/plain",
            "data": "message-http-009",
        }

    def test_metadata_is_copied_not_shared(self):
        """Mutating a built command never changes the channel's metadata."""
        metadata = {"rawPayload": "true"}
        command = build_publish_command("t", "http", "x", metadata=metadata)
        command["metadata"]["rawPayload"] = "false"
        assert metadata == {"rawPayload": "true"}


@pytest.mark.unit
class TestPostPublish:
    """Status classification of a single publish call."""

    @pytest.mark.parametrize("status", [200, 204])
    async def test_accepted_statuses_are_returned(self, status):
        """200 and 204 are returned to the caller as accepted."""
        async with _client(lambda request: httpx.Response(status)) as client:
            assert await post_publish(client, _URL, {}) == status

    @pytest.mark.parametrize("status", [400, 404, 500, 503])
    async def test_other_statuses_raise_with_status_code(self, status):
        """Any other status raises a TransportError carrying the status."""
        async with _client(lambda request: httpx.Response(status)) as client:
            with pytest.raises(TransportError) as excinfo:
                await post_publish(client, _URL, {})
        assert excinfo.value.status_code == status

    async def test_connection_failure_raises_without_status_code(self):
        """A request that never got a response raises with no status and keeps the cause."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransportError) as excinfo:
                await post_publish(client, _URL, {})
        assert excinfo.value.status_code is None
        assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.unit
class TestPublishDriver:
    """Batch publishing through the rate limiter."""

    async def test_all_accepted_messages_are_returned_in_send_order(self):
        """Every accepted id is reported back in the order it was sent."""
        seen = []

        def handler(request):
            seen.append(request_json(request)["data"])
            return httpx.Response(204)

        async with _client(handler) as client:
            batch = await _driver(client).send(TOPIC_A, "http")

        assert batch.ok
        assert batch.sent == [f"message-http-{i:03d}" for i in range(42, 47)]
        assert seen == batch.sent

    async def test_first_failure_aborts_the_rest_of_the_batch(self):
        """The batch stops at the first failure and reports only the ids sent before it."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500 if len(calls) == 3 else 204)

        async with _client(handler) as client:
            batch = await _driver(client).send(TOPIC_A, "http")

        assert len(calls) == 3, "driver must not continue or retry after a failure"
        assert batch.sent == ["message-http-042", "message-http-043"]
        assert batch.error.status_code == 500
        assert batch.error.sent == batch.sent

    async def test_ok_without_no_content_is_not_counted_as_accepted(self):
        """A batch publish answered with 200 instead of 204 is a failure."""
        async with _client(lambda request: httpx.Response(200)) as client:
            batch = await _driver(client).send(TOPIC_A, "http")
        assert batch.sent == []
        assert batch.error.status_code == 200

    async def test_transport_failure_aborts_with_no_status(self):
        """A timeout aborts the batch with no status code on the error."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            batch = await _driver(client).send(TOPIC_A, "http")
        assert not batch.ok
        assert batch.error.status_code is None

    async def test_sends_are_paced_by_the_rate_limit(self):
        """At 10 rps each publish after the first waits 0.1s."""
        clock = FakeClock()
        async with _client(lambda request: httpx.Response(204)) as client:
            await _driver(client, clock=clock, rate_limit_rps=10).send(TOPIC_A, "http")
        assert clock.sleeps == [pytest.approx(0.1)] * 4

    async def test_limiter_is_fresh_for_each_batch(self):
        """A new batch starts with a full bucket; pacing does not leak across sends."""
        clock = FakeClock()
        async with _client(lambda request: httpx.Response(204)) as client:
            driver = _driver(client, clock=clock, messages_per_topic=1)
            await driver.send(TOPIC_A, "http")
            await driver.send(TOPIC_RAW, "http")
        assert clock.sleeps == []

    async def test_only_the_first_message_is_logged(self, caplog):
        """Only the first publish of a batch is logged at INFO."""
        async with _client(lambda request: httpx.Response(204)) as client:
            with caplog.at_level(logging.INFO, logger="harness.publisher"):
                await _driver(client).send(TOPIC_A, "http")
        first_publish_logs = [r for r in caplog.records if "Sending first publish" in r.getMessage()]
        assert len(first_publish_logs) == 1
        assert "message-http-042" in first_publish_logs[0].getMessage()

    async def test_publish_all_returns_sent_ids_per_channel(self):
        """publish_all returns one id list per channel."""
        async with _client(lambda request: httpx.Response(204)) as client:
            sent = await _driver(client).publish_all([TOPIC_A, TOPIC_RAW], "http")
        assert set(sent) == {"pubsub-a-topic", "pubsub-raw-topic"}
        assert all(len(ids) == 5 for ids in sent.values())

    async def test_publish_all_raises_and_stops_on_first_failed_channel(self):
        """A failing channel raises and later channels are never published."""
        topics = []

        def handler(request):
            topic = request_json(request)["topic"]
            topics.append(topic)
            return httpx.Response(404 if topic.startswith("pubsub-raw") else 204)

        async with _client(handler) as client:
            with pytest.raises(TransportError) as excinfo:
                await _driver(client).publish_all([TOPIC_A, TOPIC_RAW, TOPIC_MQTT], "http")

        assert excinfo.value.status_code == 404
        assert not any(t.startswith("some-string") for t in topics)
