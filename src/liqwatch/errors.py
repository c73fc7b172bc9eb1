"""Exception hierarchy for liqwatch.

Ledger I/O failures, account parse failures and execution failures each have
their own type so callers can decide what to retry, skip or report.
"""

from __future__ import annotations


class LiqwatchError(Exception):
    """Base class for all liqwatch errors."""


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class LedgerError(LiqwatchError):
    """Any failure talking to the ledger RPC."""


class ConnectivityError(LedgerError):
    """Ledger unreachable, timed out, or answered with 429/5xx. Retryable."""


class RpcError(LedgerError):
    """The RPC answered with a JSON-RPC error object. Not retryable."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class FeeEstimationError(LedgerError):
    """Fee estimation returned no usable value."""


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


class ParseError(LiqwatchError):
    """Account bytes are malformed or too short for the configured layout."""


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class AuthorizationError(LiqwatchError):
    """No signing capability available at execution time."""


class SubmissionError(LiqwatchError):
    """Transaction could not be submitted or its confirmation failed.

    Args:
        message: 에러 설명.
        reference: Transaction signature obtained before the failure, if any.
    """

    def __init__(self, message: str, reference: str | None = None):
        super().__init__(message)
        self.reference = reference
