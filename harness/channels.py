"""
Logical delivery channels exercised by every scenario.

A channel is what the subscriber's ledger reports on: three structured topics
on the default component, one topic published with a raw (non-enveloped)
payload, and one topic on an alternate backend. The topic actually published
is suffixed with the protocol, e.g. ``pubsub-a-topic-http``.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

DEFAULT_PUBSUB = "messagebus"
MQTT_PUBSUB = "mqtt-pubsub"


@dataclass(frozen=True)
class Channel:
    name: str
    topic: str
    pubsub_name: str = DEFAULT_PUBSUB
    metadata: Dict[str, str] = field(default_factory=dict)
    # When set, each message is wrapped in a cloud event of this type.
    event_type: Optional[str] = None
    # Whether the redelivery scenarios assert on this channel.
    verify_redelivery: bool = True

    def topic_for(self, protocol: str) -> str:
        return f"{self.topic}-{protocol}"


TOPIC_A = Channel(name="pubsub-a-topic", topic="pubsub-a-topic")
TOPIC_B = Channel(name="pubsub-b-topic", topic="pubsub-b-topic")
TOPIC_C = Channel(name="pubsub-c-topic", topic="pubsub-c-topic")
TOPIC_RAW = Channel(name="pubsub-raw-topic", topic="pubsub-raw-topic", metadata={"rawPayload": "true"})
TOPIC_MQTT = Channel(name="pubsub-mqtt-topic", topic="some-string/test", pubsub_name=MQTT_PUBSUB)

DEFAULT_CHANNELS: Tuple[Channel, ...] = (TOPIC_A, TOPIC_B, TOPIC_C, TOPIC_RAW, TOPIC_MQTT)


def empty_ledger(channels=DEFAULT_CHANNELS) -> Dict[str, list]:
    """Expected ledger contents when nothing should have been delivered."""
    return {channel.name: [] for channel in channels}
