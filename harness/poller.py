"""
Convergence poller.

Delivery is asynchronous, so the ledger is polled until every channel holds
as many identifiers as were sent, or until the retry budget is spent. Only
counts are compared while polling; the final assertion compares the sorted
identifier sequences, which catches duplicated or substituted deliveries.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from harness.clock import SYSTEM_CLOCK, Clock
from harness.errors import ExpectationMismatch

logger = logging.getLogger(__name__)

Ledger = Dict[str, List[str]]

RECEIVE_MESSAGE_RETRIES = 10
RECEIVE_MESSAGE_RETRY_DELAY = 5.0


def counts_match(expected: Ledger, observed: Ledger) -> bool:
    return all(len(observed.get(channel, [])) == len(ids) for channel, ids in expected.items())


def compare_sorted(expected: Ledger, observed: Ledger) -> Dict[str, tuple]:
    """
    Return channel -> (sorted expected, sorted observed) for every channel
    in expected whose sequences differ. Delivery order is never compared.
    """
    mismatches = {}
    for channel, ids in expected.items():
        want = sorted(ids)
        got = sorted(observed.get(channel, []))
        if want != got:
            mismatches[channel] = (want, got)
    return mismatches


def assert_same_messages(expected: Ledger, observed: Ledger) -> None:
    mismatches = compare_sorted(expected, observed)
    if mismatches:
        raise ExpectationMismatch(mismatches)


@dataclass
class PollResult:
    observed: Ledger
    attempts: int
    converged: bool


class ConvergencePoller:
    """Bounded poll-until-converged over a ledger fetch coroutine."""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Ledger]],
        retries: int = RECEIVE_MESSAGE_RETRIES,
        delay: float = RECEIVE_MESSAGE_RETRY_DELAY,
        clock: Optional[Clock] = None,
    ):
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self.fetch = fetch
        self.retries = retries
        self.delay = delay
        self.clock = clock or SYSTEM_CLOCK

    async def wait_for(self, expected: Ledger) -> PollResult:
        observed: Ledger = {}
        for attempt in range(1, self.retries + 1):
            observed = await self.fetch()
            logger.info(
                "Subscriber received %s (attempt %d/%d)",
                ", ".join(f"{len(observed.get(c, []))} on {c}" for c in expected),
                attempt, self.retries,
            )
            if counts_match(expected, observed):
                return PollResult(observed=observed, attempts=attempt, converged=True)
            if attempt < self.retries:
                logger.warning("Differing lengths in received vs. sent messages, retrying.")
                await self.clock.sleep(self.delay)

        logger.warning("Ledger did not converge after %d attempt(s)", self.retries)
        return PollResult(observed=observed, attempts=self.retries, converged=False)

    async def verify(self, expected: Ledger) -> PollResult:
        """Poll until converged (or out of budget), then assert sorted equality."""
        result = await self.wait_for(expected)
        assert_same_messages(expected, result.observed)
        return result
