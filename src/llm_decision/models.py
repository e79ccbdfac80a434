"""Data models for decision requests, reasoning attempts and results."""
from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, TypeAlias

from .errors import UnresolvedReason
from .output_types import OutputSpec, value_sort_key
from .temperature import FixedTemperature, TemperatureSchedule


class ParseFailure(str, Enum):
    EMPTY_RESPONSE = "empty_response"
    AMBIGUOUS_BOOLEAN = "ambiguous_boolean"
    NO_INTEGER_FOUND = "no_integer_found"
    OUT_OF_BOUNDS = "out_of_bounds"
    NOT_IN_ALLOWED_SET = "not_in_allowed_set"


class AttemptStatus(str, Enum):
    DECODED = "decoded"
    UNKNOWN = "unknown"
    PARSE_REJECTED = "parse_rejected"
    TRANSPORT_FAILED = "transport_failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class Decoded:
    value: Any
    reasoning_trace: str = ""

    status = AttemptStatus.DECODED


@dataclass(frozen=True, slots=True)
class Unknown:
    reasoning_trace: str = ""

    status = AttemptStatus.UNKNOWN


@dataclass(frozen=True, slots=True)
class ParseRejected:
    failure: ParseFailure
    detail: str = ""

    status = AttemptStatus.PARSE_REJECTED


@dataclass(frozen=True, slots=True)
class TransportFailed:
    reason: str
    error_type: str | None = None

    status = AttemptStatus.TRANSPORT_FAILED


@dataclass(frozen=True, slots=True)
class Cancelled:
    reason: str = "deadline"

    status = AttemptStatus.CANCELLED


DecodeOutcome: TypeAlias = Decoded | Unknown | ParseRejected
AttemptOutcome: TypeAlias = Decoded | Unknown | ParseRejected | TransportFailed | Cancelled


@dataclass(frozen=True, slots=True)
class ReasoningAttempt:
    """One finalized generation attempt and its decoded outcome."""

    index: int
    temperature: float
    outcome: AttemptOutcome
    raw_text: str = ""
    tries: int = 0
    latency_ms: int | None = None

    @property
    def status(self) -> AttemptStatus:
        return self.outcome.status

    @property
    def voted(self) -> bool:
        """Only decoded values vote and count toward quorum."""

        return isinstance(self.outcome, Decoded)

    @property
    def answered(self) -> bool:
        return isinstance(self.outcome, (Decoded, Unknown))

    @property
    def produced_text(self) -> bool:
        return isinstance(self.outcome, (Decoded, Unknown, ParseRejected))

    def describe(self) -> str:
        outcome = self.outcome
        if isinstance(outcome, Decoded):
            return repr(outcome.value)
        if isinstance(outcome, ParseRejected):
            return f"{outcome.failure.value}: {outcome.detail}" if outcome.detail else outcome.failure.value
        if isinstance(outcome, TransportFailed):
            return outcome.reason
        if isinstance(outcome, Cancelled):
            return outcome.reason
        return "cannot determine"


class VoteDistribution(Mapping[Any, int]):
    """Immutable mapping of normalized decoded value to supporting vote count."""

    __slots__ = ("_counts",)

    def __init__(self, counts: Mapping[Any, int] | None = None) -> None:
        normalized: dict[Any, int] = {}
        for value, count in (counts or {}).items():
            if count < 0:
                raise ValueError("vote counts must be non-negative")
            if count:
                normalized[value] = int(count)
        self._counts = MappingProxyType(normalized)

    @classmethod
    def from_values(cls, values: Iterable[Any]) -> VoteDistribution:
        counts: dict[Any, int] = {}
        for value in values:
            counts[value] = counts.get(value, 0) + 1
        return cls(counts)

    def __getitem__(self, value: Any) -> int:
        return self._counts[value]

    def __iter__(self) -> Iterator[Any]:
        return iter(self._counts)

    def __len__(self) -> int:
        return len(self._counts)

    def __repr__(self) -> str:
        items = ", ".join(f"{value!r}: {count}" for value, count in self.ranked())
        return f"VoteDistribution({{{items}}})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, VoteDistribution):
            return dict(self._counts) == dict(other._counts)
        if isinstance(other, Mapping):
            return dict(self._counts) == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._counts.items()))

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def ranked(self) -> list[tuple[Any, int]]:
        """Entries by count descending, then by value for a stable order."""

        return sorted(
            self._counts.items(),
            key=lambda item: (-item[1], value_sort_key(item[0])),
        )

    def leaders(self) -> list[Any]:
        if not self._counts:
            return []
        top = max(self._counts.values())
        return sorted(
            (value for value, count in self._counts.items() if count == top),
            key=value_sort_key,
        )

    def as_dict(self) -> dict[Any, int]:
        return dict(self.ranked())


@dataclass(frozen=True, slots=True)
class DecisionRequest:
    """Full configuration for one ensemble reasoning call.

    Invariants are checked by :func:`llm_decision.engine.validate_request`
    when the request reaches the engine, so a malformed request yields a
    ``FAILED`` result instead of an exception at construction time.
    """

    instructions: str
    output: OutputSpec
    voting_rounds: int = 5
    temperature_schedule: TemperatureSchedule = field(default_factory=FixedTemperature)
    confidence_threshold: float = 0.5
    time_budget_s: float | None = None
    allow_unresolved: bool = True
    context: str | None = None

    @property
    def quorum(self) -> int:
        """Minimum decoded attempts: half the rounds, rounded up."""

        return -(-self.voting_rounds // 2)


class DecisionStatus(str, Enum):
    RESOLVED = "resolved"
    LOW_CONFIDENCE_RESOLVED = "low_confidence_resolved"
    UNRESOLVED = "unresolved"
    FAILED = "failed"


class DecisionState(str, Enum):
    PENDING = "pending"
    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    AGGREGATING = "aggregating"
    RESOLVED = "resolved"
    LOW_CONFIDENCE_RESOLVED = "low_confidence_resolved"
    UNRESOLVED = "unresolved"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        DecisionState.RESOLVED,
        DecisionState.LOW_CONFIDENCE_RESOLVED,
        DecisionState.UNRESOLVED,
        DecisionState.FAILED,
    }
)


@dataclass(frozen=True, slots=True)
class DecisionResult:
    status: DecisionStatus
    value: Any = None
    confidence: float = 0.0
    vote_distribution: VoteDistribution = field(default_factory=VoteDistribution)
    reasoning_traces: tuple[str, ...] = ()
    attempts_used: int = 0
    attempts_rejected: int = 0
    unresolved_reason: UnresolvedReason | None = None
    error: str | None = None
    reason: str = ""
    timed_out: bool = False
    attempts: tuple[ReasoningAttempt, ...] = ()

    @property
    def resolved(self) -> bool:
        return self.status in {
            DecisionStatus.RESOLVED,
            DecisionStatus.LOW_CONFIDENCE_RESOLVED,
        }


__all__ = [
    "AttemptOutcome",
    "AttemptStatus",
    "Cancelled",
    "DecisionRequest",
    "DecisionResult",
    "DecisionState",
    "DecisionStatus",
    "DecodeOutcome",
    "Decoded",
    "ParseFailure",
    "ParseRejected",
    "ReasoningAttempt",
    "TransportFailed",
    "Unknown",
    "VoteDistribution",
]
