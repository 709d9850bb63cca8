"""
Publisher app mock.

A Flask application exposing the same test surface as the deployed publisher:

  GET  /
    Liveness probe.

  POST /tests/publish
    Body {contentType, topic, data, protocol, metadata, pubsubname}.
    Publishes to the in-memory pub/sub. 204 on success, 404 when the topic
    (or pubsub component) is missing, 400 for an unreadable body.

  POST /tests/callSubscriberMethod
    Body {remoteApp, protocol, method}. Forwards to the mock subscriber:
    set-respond-<mode>, initialize, getMessages, each applied to the
    subscriber of the given protocol.

Pending deliveries are retried after every mode switch and before every
ledger read, standing in for the backend's redelivery timer.
"""

import logging
import uuid

from flask import Flask, jsonify, request

from mocks.pubsub import InMemoryPubSub
from mocks.subscriber import MockSubscriber

logger = logging.getLogger(__name__)

DEFAULT_PUBSUB = "messagebus"
CLOUD_EVENT_CONTENT_TYPE = "application/cloudevents+json"
SET_RESPOND_PREFIX = "set-respond-"


def _envelope(body: dict, topic: str, pubsub_name: str):
    """Build what the subscriber receives for a publish command."""
    data = body.get("data")
    metadata = body.get("metadata") or {}
    if str(metadata.get("rawPayload", "")).lower() == "true":
        return data
    if body.get("contentType") == CLOUD_EVENT_CONTENT_TYPE and isinstance(data, dict):
        event = dict(data)
    else:
        event = {
            "id": str(uuid.uuid4()),
            "type": "com.dapr.event.sent",
            "datacontenttype": body.get("contentType") or "application/json",
            "data": data,
        }
    event.setdefault("specversion", "1.0")
    event.setdefault("source", "pubsub-publisher")
    event["topic"] = topic
    event["pubsubname"] = pubsub_name
    return event


def create_app(
    pubsub: InMemoryPubSub,
    subscriber: MockSubscriber,
    remote_app: str = "pubsub-subscriber",
) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        pubsub:     The shared in-memory pub/sub component.
        subscriber: The mock subscriber, already subscribed to pubsub.
        remote_app: App id accepted in callSubscriberMethod requests.
    """
    app = Flask(__name__)

    @app.route("/", methods=["GET"])
    def index():
        return "OK", 200

    @app.route("/tests/publish", methods=["POST"])
    def publish():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "request body must be a JSON object"}), 400

        topic = body.get("topic") or ""
        pubsub_name = body.get("pubsubname") or DEFAULT_PUBSUB
        if not topic:
            logger.warning("Publish rejected: missing topic")
            return jsonify({"error": "topic is required"}), 404
        if pubsub_name not in pubsub.components:
            logger.warning("Publish rejected: unknown pubsub=%s", pubsub_name)
            return jsonify({"error": f"pubsub {pubsub_name} not found"}), 404

        pubsub.publish(pubsub_name, topic, _envelope(body, topic, pubsub_name))
        return "", 204

    @app.route("/tests/callSubscriberMethod", methods=["POST"])
    def call_subscriber_method():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "request body must be a JSON object"}), 400
        if body.get("remoteApp") != remote_app:
            return jsonify({"error": f"unknown app {body.get('remoteApp')}"}), 404

        method = body.get("method") or ""
        protocol = body.get("protocol") or "http"
        if method.startswith(SET_RESPOND_PREFIX):
            try:
                subscriber.set_respond(method[len(SET_RESPOND_PREFIX):], protocol=protocol)
            except ValueError as exc:
                return jsonify({"error": str(exc)}), 400
            pubsub.redeliver_pending()
            return "OK", 200
        if method == "initialize":
            subscriber.initialize(protocol=protocol)
            return "OK", 200
        if method == "getMessages":
            pubsub.redeliver_pending()
            return jsonify(subscriber.get_messages(protocol=protocol)), 200

        return jsonify({"error": f"unknown method {method}"}), 400

    return app
