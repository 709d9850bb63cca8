"""
Error taxonomy for the delivery-verification harness.

  FatalSetupError      — the harness cannot drive the remote environment
                         (control call failed, services never became healthy).
                         Aborts the whole run.
  TransportError       — a publish or ledger call failed at the network or
                         HTTP-status layer. Fails the current scenario only.
  ExpectationMismatch  — sorted sent/received identifier sequences differ.
                         Fails the current scenario only.
  ConfigurationError   — a deliberately malformed request did not fail the way
                         it should have. Fails the current scenario only.
"""

from typing import Dict, List, Optional


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


class FatalSetupError(HarnessError):
    def __init__(self, message: str, method: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.method = method
        self.status_code = status_code


class TransportError(HarnessError):
    """
    A request failed before or at the HTTP-status layer.

    status_code is None when no response was received at all. sent holds the
    identifiers that were accepted before a batch was aborted.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, sent: Optional[List[str]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.sent = list(sent or [])


class ExpectationMismatch(HarnessError, AssertionError):
    """
    Expected and observed identifiers differ on one or more channels.

    mismatches maps channel name -> (sorted expected, sorted observed).
    """

    def __init__(self, mismatches: Dict[str, tuple]):
        self.mismatches = mismatches
        lines = []
        for channel, (expected, observed) in sorted(mismatches.items()):
            missing = sorted(set(expected) - set(observed))
            unexpected = sorted(set(observed) - set(expected))
            lines.append(
                f"{channel}: expected {len(expected)} got {len(observed)} "
                f"(missing={missing[:5]}, unexpected={unexpected[:5]})"
            )
        super().__init__("Delivered messages differ from expectation: " + "; ".join(lines))


class ConfigurationError(HarnessError):
    pass
