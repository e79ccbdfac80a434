"""Normalized exception hierarchy for the decision engine."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .models import ParseFailure, VoteDistribution


class DecisionError(Exception):
    """Base class for engine-originated errors."""


class RetryableError(DecisionError):
    """Base class for errors where retrying may succeed."""


class FatalError(DecisionError):
    """Base class for unrecoverable errors."""


class TransportError(RetryableError):
    """Raised by a generation client when a single call fails."""


class TimeoutError(TransportError):
    """Raised when a generation call exceeds its timeout."""


class RateLimitError(TransportError):
    """Raised when the generation backend signals rate limiting."""


class AuthError(FatalError):
    """Raised when the generation backend rejects the credentials."""


class ValidationError(FatalError, ValueError):
    """Raised when a decision request is malformed."""


class ConfigError(ValidationError):
    """Raised when engine configuration is invalid."""


class StateTransitionError(FatalError):
    """Raised when the engine attempts an illegal state transition."""

    def __init__(self, current: Enum, target: Enum) -> None:
        super().__init__(f"illegal transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


class ParseError(DecisionError):
    """Raised when generated text does not match the expected output grammar."""

    def __init__(self, failure: ParseFailure, detail: str) -> None:
        super().__init__(f"{failure.value}: {detail}")
        self.failure = failure
        self.detail = detail


class UnresolvedReason(str, Enum):
    """Why a batch could not be turned into an answer."""

    QUORUM_NOT_MET = "quorum_not_met"
    TIE = "tie"
    ALL_UNKNOWN = "all_unknown"
    LOW_CONFIDENCE = "low_confidence"


class UnresolvedError(DecisionError):
    """Raised by aggregation when no trustworthy answer exists."""

    def __init__(
        self,
        message: str,
        *,
        reason: UnresolvedReason,
        distribution: VoteDistribution,
        eligible: int = 0,
        required: int = 0,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.distribution = distribution
        self.eligible = eligible
        self.required = required


class QuorumError(UnresolvedError):
    """Raised when too few attempts decoded for the vote to be trusted."""


class TieError(UnresolvedError):
    """Raised when the vote ends in an exact tie and no answer is preferred."""

    def __init__(
        self,
        message: str,
        *,
        distribution: VoteDistribution,
        tied: tuple[Any, ...],
        eligible: int = 0,
        required: int = 0,
    ) -> None:
        super().__init__(
            message,
            reason=UnresolvedReason.TIE,
            distribution=distribution,
            eligible=eligible,
            required=required,
        )
        self.tied = tied


def error_family(error: BaseException | None) -> str | None:
    if error is None:
        return None
    if isinstance(error, RateLimitError):
        return "rate_limit"
    if isinstance(error, TimeoutError):
        return "timeout"
    if isinstance(error, RetryableError):
        return "retryable"
    if isinstance(error, FatalError):
        return "fatal"
    return "unknown"


def describe_error(error: BaseException) -> Mapping[str, str]:
    """Return a flat summary of ``error`` for event records."""

    return {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "error_family": error_family(error) or "unknown",
    }


__all__ = [
    "AuthError",
    "ConfigError",
    "DecisionError",
    "FatalError",
    "ParseError",
    "QuorumError",
    "RateLimitError",
    "RetryableError",
    "StateTransitionError",
    "TieError",
    "TimeoutError",
    "TransportError",
    "UnresolvedError",
    "UnresolvedReason",
    "ValidationError",
    "describe_error",
    "error_family",
]
