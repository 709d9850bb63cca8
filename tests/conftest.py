"""
Root-level fixtures shared across all test categories.

Scope is function by default so every test starts with a fresh in-memory
pub/sub component, mock subscriber, and Flask app, with no shared state
between tests. Harness components reach the Flask app through
httpx.MockTransport, and a FakeClock makes every settle delay and retry
interval instant.
"""

import httpx
import pytest

from harness.environment import PubSubEnvironment
from mocks.publisher_app import create_app
from mocks.pubsub import InMemoryPubSub
from mocks.subscriber import MockSubscriber
from tests.helpers import FakeClock, FixedOffset, flask_transport, make_config


@pytest.fixture
def pubsub() -> InMemoryPubSub:
    """Fresh in-memory pub/sub component for each test."""
    return InMemoryPubSub()


@pytest.fixture
def subscriber(pubsub: InMemoryPubSub) -> MockSubscriber:
    """Mock subscriber subscribed to every channel for http and grpc."""
    sub = MockSubscriber()
    sub.subscribe_all(pubsub)
    return sub


@pytest.fixture
def flask_app(pubsub: InMemoryPubSub, subscriber: MockSubscriber):
    """Mock publisher app wired to the shared pub/sub and subscriber."""
    app = create_app(pubsub, subscriber)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(flask_app):
    """Flask test client for the mock publisher app."""
    return flask_app.test_client()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def sent_requests() -> list:
    """Every httpx request that reached the mock transport, in order."""
    return []


@pytest.fixture
async def http_client(flask_app, sent_requests):
    async with httpx.AsyncClient(transport=flask_transport(flask_app, calls=sent_requests)) as c:
        yield c


@pytest.fixture
async def env(config, http_client, clock):
    """Environment context over the in-process mock, with offset fixed at 42."""
    async with PubSubEnvironment(config, client=http_client, clock=clock, rng=FixedOffset(42)) as e:
        yield e
