"""
Rate-limited publish driver.

Sends one POST /tests/publish per message to the publisher app, which does the
actual publish to the messaging backend. Only a 204 counts as accepted. The
first failure aborts the rest of the batch; the driver never retries, because
redelivery by the backend is what the scenarios verify and a local retry would
mask it.
"""

import json
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import httpx

from harness.channels import DEFAULT_PUBSUB, Channel
from harness.clock import SYSTEM_CLOCK, Clock
from harness.errors import TransportError
from harness.identifiers import RANDOM_OFFSET_MAX, generate_message_ids
from harness.ratelimit import TokenBucket

logger = logging.getLogger(__name__)

PUBLISH_PATH = "/tests/publish"
JSON_CONTENT_TYPE = "application/json"
CLOUD_EVENT_CONTENT_TYPE = "application/cloudevents+json"

_ACCEPTED_STATUSES = (httpx.codes.OK, httpx.codes.NO_CONTENT)


def cloud_event(message_id: str, event_type: str) -> dict:
    """Wrap an identifier in a structured cloud-event envelope."""
    return {
        "id": message_id,
        "type": event_type,
        "datacontenttype": "text/plain",
        "data": message_id,
    }


def build_publish_command(
    topic: str,
    protocol: str,
    data,
    metadata: Optional[Dict[str, str]] = None,
    pubsub_name: str = DEFAULT_PUBSUB,
    content_type: str = JSON_CONTENT_TYPE,
) -> dict:
    """Return the JSON body accepted by the publisher app's /tests/publish."""
    return {
        "contentType": content_type,
        "topic": topic,
        "data": data,
        "protocol": protocol,
        "metadata": dict(metadata) if metadata else None,
        "pubsubname": pubsub_name,
    }


def command_for(channel: Channel, protocol: str, message_id: str) -> dict:
    """Build the publish command carrying message_id on channel."""
    if channel.event_type:
        data = cloud_event(message_id, channel.event_type)
        content_type = CLOUD_EVENT_CONTENT_TYPE
    else:
        data = message_id
        content_type = JSON_CONTENT_TYPE
    return build_publish_command(
        topic=channel.topic_for(protocol),
        protocol=protocol,
        data=data,
        metadata=channel.metadata,
        pubsub_name=channel.pubsub_name,
        content_type=content_type,
    )


async def post_publish(client: httpx.AsyncClient, url: str, command: dict) -> int:
    """
    POST one publish command.

    Returns the status code for 200/204. Raises TransportError carrying the
    status code for any other response, or with status_code=None when the
    request never got a response.
    """
    try:
        response = await client.post(url, json=command)
    except httpx.HTTPError as exc:
        logger.warning("Publish failed with error=%s, response is nil", exc)
        raise TransportError(f"publish to {url} failed: {exc}") from exc
    if response.status_code not in _ACCEPTED_STATUSES:
        raise TransportError(
            f"publish failed with StatusCode={response.status_code}",
            status_code=response.status_code,
        )
    return response.status_code


@dataclass
class PublishBatch:
    """Outcome of one send(): accepted identifiers, in send order, plus the abort error if any."""

    channel: Channel
    sent: List[str] = field(default_factory=list)
    error: Optional[TransportError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PublishDriver:
    """
    Publishes identifier batches to the publisher app at a bounded rate.

    A fresh TokenBucket is created for every send() so pacing never carries
    over between batches or scenarios.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        publisher_url: str,
        messages_per_topic: int = 100,
        rate_limit_rps: float = 25,
        offset_max: int = RANDOM_OFFSET_MAX,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
    ):
        self.client = client
        self.url = f"{publisher_url}{PUBLISH_PATH}"
        self.messages_per_topic = messages_per_topic
        self.rate_limit_rps = rate_limit_rps
        self.offset_max = offset_max
        self.rng = rng
        self.clock = clock or SYSTEM_CLOCK

    async def send(self, channel: Channel, protocol: str) -> PublishBatch:
        batch = PublishBatch(channel=channel)
        limiter = TokenBucket(self.rate_limit_rps, clock=self.clock)
        ids = generate_message_ids(protocol, self.messages_per_topic, self.rng, self.offset_max)

        for index, message_id in enumerate(ids):
            command = command_for(channel, protocol, message_id)
            # Only the first message of a batch is traced to keep the log readable.
            if index == 0:
                logger.info(
                    "Sending first publish app at url %s and body '%s', "
                    "this log will not print for subsequent messages for same topic",
                    self.url, json.dumps(command),
                )

            await limiter.acquire()
            try:
                status = await post_publish(self.client, self.url, command)
            except TransportError as exc:
                exc.sent = list(batch.sent)
                batch.error = exc
                logger.error(
                    "Publish aborted on channel=%s after %d message(s): %s",
                    channel.name, len(batch.sent), exc,
                )
                return batch

            if status != httpx.codes.NO_CONTENT:
                batch.error = TransportError(
                    f"publish of {message_id} returned {status}, expected 204",
                    status_code=status,
                    sent=batch.sent,
                )
                logger.error("Publish aborted on channel=%s: %s", channel.name, batch.error)
                return batch

            batch.sent.append(message_id)

        return batch

    async def publish_all(self, channels: Iterable[Channel], protocol: str) -> Dict[str, List[str]]:
        """
        Send a full batch on every channel, in order.

        Returns channel name -> accepted identifiers. Raises the first batch's
        TransportError; channels after it are not published.
        """
        sent: Dict[str, List[str]] = {}
        for channel in channels:
            batch = await self.send(channel, protocol)
            if not batch.ok:
                raise batch.error
            sent[channel.name] = batch.sent
        return sent
