"""
Test doubles and factory functions shared across test categories.

Using plain functions (not fixtures) keeps test data creation explicit and
easy to customise inline with **overrides. Every factory returns a fresh
object so tests cannot accidentally share mutable state.
"""

import json
from typing import Callable, List, Optional

import httpx

from harness.clock import Clock
from harness.config import HarnessConfig

PUBLISHER_URL = "http://publisher.test"
SUBSCRIBER_URL = "http://subscriber.test"

# A fault hook inspects each outgoing request and either returns a canned
# httpx.Response, raises an httpx exception, or returns None to pass through.
Fault = Callable[[httpx.Request], Optional[httpx.Response]]


class FakeClock(Clock):
    """Clock whose sleeps return immediately and advance virtual time."""

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0)


class FixedOffset:
    """Stand-in for random.Random that always picks the same offset."""

    def __init__(self, offset: int):
        self.offset = offset

    def randrange(self, stop: int) -> int:
        assert self.offset < stop, f"offset {self.offset} outside [0, {stop})"
        return self.offset


def make_config(**overrides) -> HarnessConfig:
    """Return a HarnessConfig with small batches suitable for in-process runs."""
    values = dict(
        publisher_url=PUBLISHER_URL,
        subscriber_url=SUBSCRIBER_URL,
        messages_per_topic=10,
        publish_rate_limit_rps=25,
        receive_retries=10,
        receive_retry_delay=5.0,
        health_check_attempts=5,
        health_check_interval=1.0,
        publish_health_check_retries=3,
        publish_health_check_interval=5.0,
    )
    values.update(overrides)
    return HarnessConfig(**values)


def flask_transport(app, fault: Optional[Fault] = None, calls: Optional[list] = None) -> httpx.MockTransport:
    """
    Route httpx requests into a Flask app through its test client.

    fault, when given, runs first for every request. calls, when given,
    receives every request that reaches the transport.
    """
    test_client = app.test_client()

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if fault is not None:
            injected = fault(request)
            if injected is not None:
                return injected
        response = test_client.open(
            request.url.path,
            method=request.method,
            data=request.content,
            content_type=request.headers.get("content-type"),
        )
        return httpx.Response(
            response.status_code,
            content=response.get_data(),
            headers={"content-type": response.content_type or "text/plain"},
        )

    return httpx.MockTransport(handler)


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content)


def is_control(request: httpx.Request, method: Optional[str] = None) -> bool:
    """True for callSubscriberMethod requests, optionally for one method only."""
    if request.url.path != "/tests/callSubscriberMethod":
        return False
    return method is None or request_json(request).get("method") == method


def is_publish(request: httpx.Request) -> bool:
    return request.url.path == "/tests/publish"
