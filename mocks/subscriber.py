"""
Subscriber app mock.

Subscribes to every tracked channel for each protocol and keeps one ledger
per protocol of the identifiers it received. Its acknowledgement behaviour is
switched per protocol at runtime, exactly like the deployed subscribers:

  success        record the message, reply {"status": "SUCCESS"}
  empty-json     record the message, reply with an empty body
  error          reply 500 without recording
  retry          reply {"status": "RETRY"} without recording
  invalid-status reply {"status": "INVALID"} without recording
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

from harness.channels import DEFAULT_CHANNELS, Channel
from mocks.pubsub import InMemoryPubSub

logger = logging.getLogger(__name__)

MODES = ("success", "empty-json", "error", "retry", "invalid-status")


def extract_message_id(payload: Any) -> Optional[str]:
    """
    Pull the identifier out of a delivered payload: a raw string, or a cloud
    event whose data is the id.
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        return payload.get("data")
    return None


class MockSubscriber:
    """
    Ledger-keeping subscriber with a switchable acknowledgement mode.

    The deployed system runs one subscriber per protocol, so the mode and the
    ledger are both kept per protocol.
    """

    def __init__(self, channels: Iterable[Channel] = DEFAULT_CHANNELS):
        self.channels = tuple(channels)
        self._modes: Dict[str, str] = {}
        self._ledgers: Dict[str, Dict[str, List[str]]] = {}
        self._lock = threading.Lock()

    def subscribe_all(self, pubsub: InMemoryPubSub, protocols=("http", "grpc")) -> None:
        for protocol in protocols:
            for channel in self.channels:
                pubsub.subscribe(
                    channel.pubsub_name,
                    channel.topic_for(protocol),
                    self._handler_for(channel.name, protocol),
                )

    def _handler_for(self, channel_name: str, protocol: str):
        def handler(payload: Any) -> Tuple[int, Optional[dict]]:
            return self.receive(channel_name, payload, protocol=protocol)
        return handler

    def _ledger(self, protocol: str) -> Dict[str, List[str]]:
        return self._ledgers.setdefault(protocol, {c.name: [] for c in self.channels})

    def mode_for(self, protocol: str = "http") -> str:
        return self._modes.get(protocol, "success")

    def receive(self, channel_name: str, payload: Any, protocol: str = "http") -> Tuple[int, Optional[dict]]:
        mode = self.mode_for(protocol)
        if mode == "error":
            return 500, {"error": "subscriber configured to fail"}
        if mode == "retry":
            return 200, {"status": "RETRY"}
        if mode == "invalid-status":
            return 200, {"status": "INVALID"}

        message_id = extract_message_id(payload)
        with self._lock:
            self._ledger(protocol)[channel_name].append(message_id)
        if mode == "empty-json":
            return 200, None
        return 200, {"status": "SUCCESS"}

    def set_respond(self, mode: str, protocol: str = "http") -> None:
        if mode not in MODES:
            raise ValueError(f"unknown subscriber mode {mode!r}")
        logger.info("Subscriber %s now responding with %s", protocol, mode)
        self._modes[protocol] = mode

    def initialize(self, protocol: str = "http") -> None:
        with self._lock:
            self._ledgers[protocol] = {c.name: [] for c in self.channels}

    def get_messages(self, protocol: str = "http") -> Dict[str, List[str]]:
        with self._lock:
            return {name: list(ids) for name, ids in self._ledger(protocol).items()}
