"""
Run every delivery-verification scenario against a deployed publisher/subscriber pair.

Configuration is read from the environment (see harness/config.py and
.env.example). Exit status: 0 all scenarios passed, 1 at least one scenario
failed, 2 the run was aborted because the environment could not be driven.

Usage
-----
    PUBLISHER_URL=pubsub-publisher.example:3000 \
    SUBSCRIBER_URL=pubsub-subscriber.example:3000 \
    python run_harness.py
"""

import asyncio
import logging
import os
import sys

from harness.config import HarnessConfig
from harness.environment import PubSubEnvironment
from harness.errors import FatalSetupError
from harness.scenarios import ScenarioOrchestrator

logger = logging.getLogger("run_harness")

EXIT_OK = 0
EXIT_SCENARIO_FAILED = 1
EXIT_FATAL = 2


async def run(config: HarnessConfig) -> int:
    async with PubSubEnvironment(config) as env:
        orchestrator = ScenarioOrchestrator(env)
        try:
            await env.wait_until_ready()
            report = await orchestrator.run()
        except FatalSetupError as exc:
            logger.error("Run aborted: %s", exc)
            # Readiness failures happen before any scenario records the error.
            orchestrator.report.fatal = exc
            print(orchestrator.report.summary())
            return EXIT_FATAL

    print(report.summary())
    return EXIT_OK if report.passed else EXIT_SCENARIO_FAILED


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("HARNESS_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        config = HarnessConfig.from_env()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        sys.exit(EXIT_FATAL)
    sys.exit(asyncio.run(run(config)))


if __name__ == "__main__":
    main()
