"""
Test-environment context.

One PubSubEnvironment is created before all scenarios and closed after them.
It owns the shared HTTP client and hands out the components each scenario
needs, so nothing reaches for module-level state.

Usage
-----
    async with PubSubEnvironment(HarnessConfig.from_env()) as env:
        await env.wait_until_ready()
        report = await ScenarioOrchestrator(env).run()
"""

import logging
import random
from typing import Optional

import httpx

from harness.clock import SYSTEM_CLOCK, Clock
from harness.config import HarnessConfig
from harness.controller import SubscriberController
from harness.errors import FatalSetupError, TransportError
from harness.poller import ConvergencePoller
from harness.publisher import PUBLISH_PATH, PublishDriver, build_publish_command, post_publish

logger = logging.getLogger(__name__)

HEALTHCHECK_TOPIC = "pubsub-healthcheck-topic"


class PubSubEnvironment:
    """Shared handle on the deployed publisher/subscriber pair."""

    def __init__(
        self,
        config: HarnessConfig,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.clock = clock or SYSTEM_CLOCK
        self.rng = rng
        self._client = client
        self._owns_client = client is None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "PubSubEnvironment":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("PubSubEnvironment is not open; use 'async with'")
        return self._client

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    async def probe(self, url: str) -> int:
        """
        GET url until any non-5xx response arrives, at most
        health_check_attempts times. Returns the number of attempts used.
        """
        attempts = self.config.health_check_attempts
        last_error = None
        for attempt in range(1, attempts + 1):
            try:
                response = await self.client.get(url)
                if response.status_code < 500:
                    logger.info("Health probe %s ok after %d attempt(s)", url, attempt)
                    return attempt
                last_error = f"status {response.status_code}"
            except httpx.HTTPError as exc:
                last_error = str(exc)
            if attempt < attempts:
                await self.clock.sleep(self.config.health_check_interval)
        raise FatalSetupError(f"{url} not healthy after {attempts} attempt(s): {last_error}")

    async def publish_health_check(self, protocol: str = "http") -> int:
        """
        Publish a throwaway message until the publisher accepts it, with a
        constant interval between tries. Returns the number of attempts used.
        """
        url = f"{self.config.publisher_url}{PUBLISH_PATH}"
        command = build_publish_command(
            topic=f"{HEALTHCHECK_TOPIC}-{protocol}",
            protocol=protocol,
            data="health check",
        )
        retries = self.config.publish_health_check_retries
        # One initial try plus `retries` retries.
        for attempt in range(1, retries + 2):
            try:
                await post_publish(self.client, url, command)
                return attempt
            except TransportError as exc:
                logger.warning("Publish health check attempt %d failed: %s", attempt, exc)
                if attempt > retries:
                    raise FatalSetupError(f"publisher never accepted a health-check publish: {exc}") from exc
            await self.clock.sleep(self.config.publish_health_check_interval)

    async def wait_until_ready(self) -> None:
        """Probe both apps, then confirm publishing works. Raises FatalSetupError."""
        await self.probe(self.config.publisher_url)
        await self.probe(self.config.subscriber_url)
        await self.publish_health_check(self.config.protocols[0])

    # ------------------------------------------------------------------
    # Component factories
    # ------------------------------------------------------------------

    def controller(self, protocol: str) -> SubscriberController:
        return SubscriberController(
            self.client, self.config.publisher_url, self.config.subscriber_app, protocol
        )

    def publish_driver(self) -> PublishDriver:
        return PublishDriver(
            self.client,
            self.config.publisher_url,
            messages_per_topic=self.config.messages_per_topic,
            rate_limit_rps=self.config.publish_rate_limit_rps,
            offset_max=self.config.random_offset_max,
            rng=self.rng,
            clock=self.clock,
        )

    def poller(self, controller: SubscriberController) -> ConvergencePoller:
        return ConvergencePoller(
            controller.get_messages,
            retries=self.config.receive_retries,
            delay=self.config.receive_retry_delay,
            clock=self.clock,
        )
