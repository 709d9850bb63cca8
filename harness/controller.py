"""
Remote behaviour controller.

Every call goes through the publisher app's /tests/callSubscriberMethod,
which forwards it to the subscriber. Mode switches and ledger resets must
succeed: if they don't, no scenario result can be trusted, so failures raise
FatalSetupError and are never retried.
"""

import enum
import logging
from typing import Dict, List

import httpx

from harness.errors import FatalSetupError, TransportError

logger = logging.getLogger(__name__)

CONTROL_PATH = "/tests/callSubscriberMethod"

INITIALIZE = "initialize"
GET_MESSAGES = "getMessages"


class SubscriberMode(str, enum.Enum):
    """How the subscriber acknowledges deliveries."""

    SUCCESS = "success"
    ERROR = "error"
    RETRY = "retry"
    INVALID_STATUS = "invalid-status"
    EMPTY_RESPONSE = "empty-response"

    @property
    def wire_name(self) -> str:
        if self is SubscriberMode.EMPTY_RESPONSE:
            return "empty-json"
        return self.value

    @property
    def method(self) -> str:
        return f"set-respond-{self.wire_name}"


class SubscriberController:
    """Drives the remote subscriber's acknowledgement mode and ledger for one protocol."""

    def __init__(self, client: httpx.AsyncClient, publisher_url: str, remote_app: str, protocol: str):
        self.client = client
        self.url = f"{publisher_url}{CONTROL_PATH}"
        self.remote_app = remote_app
        self.protocol = protocol

    def _request(self, method: str) -> dict:
        return {"remoteApp": self.remote_app, "protocol": self.protocol, "method": method}

    async def call(self, method: str) -> httpx.Response:
        """Invoke a subscriber method; anything but 200 OK is fatal."""
        try:
            response = await self.client.post(self.url, json=self._request(method))
        except httpx.HTTPError as exc:
            raise FatalSetupError(f"control call {method!r} failed: {exc}", method=method) from exc
        if response.status_code != httpx.codes.OK:
            raise FatalSetupError(
                f"control call {method!r} returned {response.status_code}",
                method=method,
                status_code=response.status_code,
            )
        return response

    async def set_mode(self, mode: SubscriberMode) -> None:
        logger.info("Set subscriber to respond with %s (protocol=%s)", mode.value, self.protocol)
        await self.call(mode.method)

    async def initialize(self) -> None:
        logger.info("Initialize the subscriber ledger (protocol=%s)", self.protocol)
        await self.call(INITIALIZE)

    async def get_messages(self) -> Dict[str, List[str]]:
        """
        Return a snapshot of the subscriber ledger, channel -> identifiers.

        A failed read is a TransportError rather than fatal: it fails the
        scenario being asserted but leaves the environment usable.
        """
        try:
            response = await self.client.post(self.url, json=self._request(GET_MESSAGES))
        except httpx.HTTPError as exc:
            raise TransportError(f"ledger query failed: {exc}") from exc
        if response.status_code != httpx.codes.OK:
            raise TransportError(
                f"ledger query returned {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(f"ledger query returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise TransportError(f"ledger query returned {type(payload).__name__}, expected an object")
        ledger = {}
        for channel, ids in payload.items():
            # An empty ledger entry may be serialized as null.
            if ids is None:
                ids = []
            if not isinstance(ids, list):
                raise TransportError(
                    f"ledger entry for {channel} is {type(ids).__name__}, expected a list"
                )
            ledger[channel] = list(ids)
        return ledger
