"""
Mock server launcher for local harness runs.

Serves the mock publisher app, wired to an in-memory pub/sub component and a
mock subscriber, so the harness can be exercised without a cluster. The same
server answers for both the publisher and the subscriber base URL.

Usage
-----
    python run_mock_server.py

Then in a separate terminal:
    PUBLISHER_URL=localhost:5000 python run_harness.py
"""

import logging
import os

from mocks.publisher_app import create_app
from mocks.pubsub import InMemoryPubSub
from mocks.subscriber import MockSubscriber


def build_environment():
    """
    Wire up the mock publisher/subscriber pair.

    The subscriber must subscribe before the app starts accepting publishes,
    otherwise early messages are dropped for lack of a subscription.
    """
    pubsub     = InMemoryPubSub()
    subscriber = MockSubscriber()
    subscriber.subscribe_all(pubsub)
    app        = create_app(pubsub, subscriber)
    return pubsub, subscriber, app


def main() -> None:
    logging.basicConfig(level=os.environ.get("HARNESS_LOG_LEVEL", "INFO"))
    _pubsub, _subscriber, app = build_environment()
    port = int(os.environ.get("MOCK_SERVER_PORT", "5000"))

    print(f"Mock publisher/subscriber starting at http://localhost:{port}")
    print("Run the harness with:")
    print(f"  PUBLISHER_URL=localhost:{port} python run_harness.py")
    print("Press Ctrl+C to stop.\n")

    app.run(host="0.0.0.0", port=port, debug=False, use_reloader=False, threaded=False)


if __name__ == "__main__":
    main()
