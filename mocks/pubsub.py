"""
In-memory pub/sub component mock.

Mirrors the at-least-once contract of a real pub/sub backend closely enough
to exercise the harness end to end:

  Delivery
    publish() hands the message to the topic's subscriber immediately.
    The subscriber's reply decides what happens next.

  Acknowledgement
    2xx with an empty body or {"status": "SUCCESS"}  -> acknowledged
    2xx with {"status": "DROP"}                      -> discarded, never redelivered
    anything else (5xx, RETRY, unknown status)       -> kept pending

  Redelivery
    redeliver_pending() offers every pending message to its subscriber again.
    The mock has no background timer; callers decide when time has passed.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# A subscriber handler receives the delivered payload and returns (status_code, body).
Handler = Callable[[Any], Tuple[int, Optional[dict]]]

SUCCESS = "SUCCESS"
RETRY = "RETRY"
DROP = "DROP"


@dataclass
class Delivery:
    pubsub_name: str
    topic: str
    payload: Any
    attempts: int = 0


def _outcome(status_code: int, body: Optional[dict]) -> str:
    """Map a subscriber reply onto SUCCESS, DROP or RETRY."""
    if not 200 <= status_code < 300:
        return RETRY
    if not body:
        return SUCCESS
    status = str(body.get("status", SUCCESS)).upper()
    if status in (SUCCESS, DROP):
        return status
    return RETRY


class InMemoryPubSub:
    """In-memory pub/sub broker with per-topic subscriptions and redelivery."""

    def __init__(self, components=("messagebus", "mqtt-pubsub")):
        self.components = set(components)
        self._subscriptions: Dict[Tuple[str, str], Handler] = {}
        self._pending: Deque[Delivery] = deque()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, pubsub_name: str, topic: str, handler: Handler) -> None:
        if pubsub_name not in self.components:
            raise KeyError(f"unknown pubsub component {pubsub_name!r}")
        with self._lock:
            self._subscriptions[(pubsub_name, topic)] = handler

    def subscription_count(self) -> int:
        return len(self._subscriptions)

    # ------------------------------------------------------------------
    # Publish / deliver
    # ------------------------------------------------------------------

    def publish(self, pubsub_name: str, topic: str, payload: Any) -> None:
        """
        Accept a message and attempt one delivery.
        Messages on topics nobody subscribed to are accepted and dropped.
        """
        if pubsub_name not in self.components:
            raise KeyError(f"unknown pubsub component {pubsub_name!r}")
        delivery = Delivery(pubsub_name=pubsub_name, topic=topic, payload=payload)
        if not self._attempt(delivery):
            with self._lock:
                self._pending.append(delivery)

    def _attempt(self, delivery: Delivery) -> bool:
        """Offer one delivery. Returns True once the message is settled (acked or dropped)."""
        handler = self._subscriptions.get((delivery.pubsub_name, delivery.topic))
        if handler is None:
            logger.debug("No subscriber for %s/%s, message dropped", delivery.pubsub_name, delivery.topic)
            return True

        delivery.attempts += 1
        try:
            status_code, body = handler(delivery.payload)
        except Exception:
            logger.exception("Subscriber raised on %s/%s", delivery.pubsub_name, delivery.topic)
            return False

        outcome = _outcome(status_code, body)
        if outcome == RETRY:
            logger.debug(
                "Delivery to %s/%s not acknowledged (status=%d attempt=%d)",
                delivery.pubsub_name, delivery.topic, status_code, delivery.attempts,
            )
            return False
        if outcome == DROP:
            logger.warning("Subscriber dropped message on %s/%s", delivery.pubsub_name, delivery.topic)
        return True

    def redeliver_pending(self) -> int:
        """Retry every pending delivery once. Returns how many were settled."""
        with self._lock:
            batch = list(self._pending)
            self._pending.clear()
        settled = 0
        still_pending = []
        for delivery in batch:
            if self._attempt(delivery):
                settled += 1
            else:
                still_pending.append(delivery)
        with self._lock:
            self._pending.extendleft(reversed(still_pending))
        if settled:
            logger.info("Redelivered %d pending message(s), %d still pending", settled, len(still_pending))
        return settled

    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Utility
    # ------------------------------------------------------------------

    def purge_all(self) -> None:
        """Drop pending deliveries and subscriptions. Useful for test isolation."""
        with self._lock:
            self._pending.clear()
            self._subscriptions = {}
