"""
Engine exceptions.

Scoring input errors propagate to the caller. Provider errors are raised inside
the explanation layer and always recovered there through fallback content.
"""

from typing import Literal, Optional


FailureReason = Literal[
    "circuit_open",
    "rate_limited",
    "budget_exceeded",
    "timeout",
    "malformed_response",
    "provider_unavailable",
    "unknown",
]


class FundMatchError(Exception):
    """Base class for engine errors."""


class InvalidScoringInputError(FundMatchError, ValueError):
    """A required organization or program field is missing or out of range."""


class ProviderError(FundMatchError):
    """The AI provider could not produce a usable response."""

    reason: FailureReason = "unknown"
    counts_toward_circuit: bool = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CircuitOpenError(ProviderError):
    """Raised without a network call while the circuit is OPEN."""

    reason = "circuit_open"
    counts_toward_circuit = False


class RateLimitExceededError(ProviderError):
    """Local token bucket is empty. No call was made."""

    reason = "rate_limited"
    counts_toward_circuit = False


class BudgetExceededError(CircuitOpenError):
    """Daily spend ceiling reached. Callers see it as an open circuit."""

    reason = "budget_exceeded"
    counts_toward_circuit = False


class ProviderRateLimitError(RateLimitExceededError):
    """The provider itself answered 429."""

    counts_toward_circuit = True


class ProviderTimeoutError(ProviderError):
    reason = "timeout"


class MalformedResponseError(ProviderError):
    reason = "malformed_response"


class ProviderUnavailableError(ProviderError):
    """Provider not configured or returned an unrecoverable error."""

    reason = "provider_unavailable"
