"""
Scenario orchestrator.

Each scenario moves through IDLE -> SETUP -> PUBLISHING -> CONVERGING ->
ASSERTING -> DONE against the shared environment. Scenarios run one after
another because the subscriber's mode and ledger are shared remote state.

Failure handling per scenario:
  TransportError / ExpectationMismatch / ConfigurationError
      recorded on the scenario result; the run continues.
  FatalSetupError
      recorded on the scenario result, then re-raised to abort the run.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from harness.channels import DEFAULT_CHANNELS, Channel, empty_ledger
from harness.controller import SubscriberMode
from harness.environment import PubSubEnvironment
from harness.errors import (
    ConfigurationError,
    ExpectationMismatch,
    FatalSetupError,
    HarnessError,
    TransportError,
)
from harness.poller import ConvergencePoller, Ledger, assert_same_messages
from harness.publisher import PUBLISH_PATH, build_publish_command, post_publish

logger = logging.getLogger(__name__)


class ScenarioKind(enum.Enum):
    SUCCESS = "success"
    NO_TOPIC = "no-topic"
    EMPTY_RESPONSE = "empty-response"
    REDELIVERY = "redelivery"


class ScenarioState(enum.Enum):
    IDLE = "idle"
    SETUP = "setup"
    PUBLISHING = "publishing"
    CONVERGING = "converging"
    ASSERTING = "asserting"
    DONE = "done"


@dataclass(frozen=True)
class Scenario:
    name: str
    kind: ScenarioKind
    # Acknowledgement mode injected during setup; None when the kind injects nothing.
    mode: Optional[SubscriberMode] = None

    def __post_init__(self):
        if self.kind is ScenarioKind.REDELIVERY and self.mode not in _REDELIVERY_MODES:
            raise ValueError(f"redelivery scenario {self.name!r} needs a negative-ack mode, got {self.mode}")


_REDELIVERY_MODES = (SubscriberMode.ERROR, SubscriberMode.RETRY, SubscriberMode.INVALID_STATUS)


DEFAULT_SCENARIOS: Sequence[Scenario] = (
    Scenario("publish and subscribe message successfully", ScenarioKind.SUCCESS),
    Scenario(
        "publish with subscriber returning empty json test delivery of message once",
        ScenarioKind.EMPTY_RESPONSE,
        SubscriberMode.EMPTY_RESPONSE,
    ),
    Scenario("publish with no topic", ScenarioKind.NO_TOPIC),
    Scenario(
        "publish with subscriber error test redelivery of messages",
        ScenarioKind.REDELIVERY,
        SubscriberMode.ERROR,
    ),
    Scenario(
        "publish with subscriber retry test redelivery of messages",
        ScenarioKind.REDELIVERY,
        SubscriberMode.RETRY,
    ),
    Scenario(
        "publish with subscriber invalid status test redelivery of messages",
        ScenarioKind.REDELIVERY,
        SubscriberMode.INVALID_STATUS,
    ),
)


@dataclass
class ScenarioResult:
    scenario: Scenario
    protocol: str
    state: ScenarioState = ScenarioState.IDLE
    error: Optional[HarnessError] = None
    sent: Ledger = field(default_factory=dict)

    @property
    def name(self) -> str:
        return f"{self.scenario.name}_{self.protocol}"

    @property
    def passed(self) -> bool:
        return self.error is None and self.state is ScenarioState.DONE


@dataclass
class RunReport:
    results: List[ScenarioResult] = field(default_factory=list)
    fatal: Optional[FatalSetupError] = None

    @property
    def passed(self) -> bool:
        return self.fatal is None and all(r.passed for r in self.results)

    @property
    def failed(self) -> List[ScenarioResult]:
        return [r for r in self.results if not r.passed]

    def summary(self) -> str:
        lines = []
        for result in self.results:
            status = "PASS" if result.passed else "FAIL"
            line = f"{status} {result.name}"
            if result.error is not None:
                line += f" [{result.state.value}] {result.error}"
            lines.append(line)
        if self.fatal is not None:
            lines.append(f"ABORTED {self.fatal}")
        return "\n".join(lines)


class ScenarioOrchestrator:
    """Runs every scenario, for every protocol, against one environment."""

    def __init__(
        self,
        env: PubSubEnvironment,
        channels: Sequence[Channel] = DEFAULT_CHANNELS,
        scenarios: Sequence[Scenario] = DEFAULT_SCENARIOS,
    ):
        self.env = env
        self.channels = tuple(channels)
        self.scenarios = tuple(scenarios)
        self.report = RunReport()

    async def run(self, protocols: Optional[Iterable[str]] = None) -> RunReport:
        """
        Run all scenarios sequentially. Scenario failures are collected in
        the report; a FatalSetupError is recorded on the report and re-raised.
        """
        self.report = RunReport()
        for protocol in protocols or self.env.config.protocols:
            for scenario in self.scenarios:
                result = ScenarioResult(scenario=scenario, protocol=protocol)
                self.report.results.append(result)
                try:
                    await self._run(result)
                except FatalSetupError as exc:
                    self.report.fatal = exc
                    raise
        return self.report

    async def run_scenario(self, scenario: Scenario, protocol: str) -> ScenarioResult:
        """Run a single scenario. Only FatalSetupError propagates."""
        result = ScenarioResult(scenario=scenario, protocol=protocol)
        await self._run(result)
        return result

    async def _run(self, result: ScenarioResult) -> None:
        logger.info("Running scenario %s", result.name)
        try:
            await self._execute(result.scenario, result.protocol, result)
        except FatalSetupError as exc:
            result.error = exc
            logger.error("Scenario %s aborted the run in state %s: %s", result.name, result.state.value, exc)
            raise
        except (TransportError, ExpectationMismatch, ConfigurationError) as exc:
            result.error = exc
            logger.error("Scenario %s failed in state %s: %s", result.name, result.state.value, exc)
            return

        result.state = ScenarioState.DONE
        logger.info("Scenario %s passed", result.name)

    # ------------------------------------------------------------------
    # Scenario kinds
    # ------------------------------------------------------------------

    async def _execute(self, scenario: Scenario, protocol: str, result: ScenarioResult) -> None:
        controller = self.env.controller(protocol)
        poller = self.env.poller(controller)
        config = self.env.config

        match scenario.kind:
            case ScenarioKind.SUCCESS:
                result.state = ScenarioState.SETUP
                await controller.set_mode(SubscriberMode.SUCCESS)
                await self._publish(protocol, result)
                await self._settle(config.success_settle_delay, result)
                await self._verify(poller, result.sent, result)

            case ScenarioKind.NO_TOPIC:
                result.state = ScenarioState.PUBLISHING
                await self._publish_without_topic(protocol)
                result.state = ScenarioState.ASSERTING

            case ScenarioKind.EMPTY_RESPONSE:
                result.state = ScenarioState.SETUP
                await controller.initialize()
                await controller.set_mode(scenario.mode)
                await self._publish(protocol, result)
                await self._settle(config.empty_response_settle_delay, result)
                await self._verify(poller, result.sent, result)

                result.state = ScenarioState.SETUP
                await controller.initialize()
                await controller.set_mode(SubscriberMode.SUCCESS)
                logger.info("Validating no redelivered messages...")
                await self._settle(config.redelivery_settle_delay, result)
                await self._verify(poller, empty_ledger(self.channels), result)

            case ScenarioKind.REDELIVERY:
                result.state = ScenarioState.SETUP
                await controller.initialize()
                await controller.set_mode(scenario.mode)
                await self._publish(protocol, result)

                result.state = ScenarioState.SETUP
                await controller.set_mode(SubscriberMode.SUCCESS)
                logger.info("Validating redelivered messages...")
                await self._settle(config.redelivery_settle_delay, result)
                await self._verify(poller, self._redelivery_expectation(result.sent), result)

            case _:
                raise ValueError(f"unhandled scenario kind {scenario.kind}")

    async def _publish(self, protocol: str, result: ScenarioResult) -> None:
        result.state = ScenarioState.PUBLISHING
        result.sent = await self.env.publish_driver().publish_all(self.channels, protocol)

    async def _settle(self, delay: float, result: ScenarioResult) -> None:
        result.state = ScenarioState.CONVERGING
        await self.env.clock.sleep(delay)

    async def _verify(self, poller: ConvergencePoller, expected: Ledger, result: ScenarioResult) -> None:
        result.state = ScenarioState.CONVERGING
        poll = await poller.wait_for(expected)
        result.state = ScenarioState.ASSERTING
        assert_same_messages(expected, poll.observed)

    def _redelivery_expectation(self, sent: Ledger) -> Ledger:
        expected = {}
        for channel in self.channels:
            if channel.verify_redelivery:
                expected[channel.name] = sent.get(channel.name, [])
            else:
                logger.info("Skipping redelivery check on channel %s", channel.name)
        return expected

    async def _publish_without_topic(self, protocol: str) -> None:
        """A publish with no topic must be rejected with 404."""
        url = f"{self.env.config.publisher_url}{PUBLISH_PATH}"
        command = build_publish_command(topic="", protocol=protocol, data="unsuccessful message", pubsub_name="")
        logger.info("Sending publish without topic to %s", url)
        try:
            status = await post_publish(self.env.client, url, command)
        except TransportError as exc:
            if exc.status_code == 404:
                return
            if exc.status_code is None:
                raise
            raise ConfigurationError(f"publish without topic returned {exc.status_code}, expected 404") from exc
        raise ConfigurationError(f"publish without topic was accepted with {status}, expected 404")
