"""Type-specific voting over decoded reasoning attempts."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .errors import QuorumError, TieError, UnresolvedError, UnresolvedReason
from .models import Decoded, ReasoningAttempt, Unknown, VoteDistribution
from .output_types import BoundedIntegerOutput, OutputSpec


@dataclass(frozen=True, slots=True)
class Aggregation:
    value: Any
    distribution: VoteDistribution
    voters: int
    eligible: int
    required: int
    method: str
    tie_break_applied: bool = False
    tie_break_reason: str | None = None


def quorum_size(voting_rounds: int) -> int:
    return -(-voting_rounds // 2)


def median_half_up(values: Iterable[int]) -> int:
    """Median of ``values``; an even count rounds the midpoint half up."""

    ordered = sorted(values)
    if not ordered:
        raise ValueError("median of an empty sequence")
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    # floor((a + b) / 2 + 1/2) in exact integer arithmetic
    return (ordered[middle - 1] + ordered[middle] + 1) // 2


class Aggregator:
    """Reduce attempts to one value with quorum and tie-break policy.

    Raises :class:`~llm_decision.errors.UnresolvedError` subclasses when no
    trustworthy value exists; the result never depends on the order of
    ``attempts``.
    """

    def aggregate(
        self,
        attempts: Iterable[ReasoningAttempt],
        spec: OutputSpec,
        *,
        voting_rounds: int,
        allow_unresolved: bool,
    ) -> Aggregation:
        ordered = sorted(attempts, key=lambda attempt: attempt.index)
        voters = [
            (attempt, attempt.outcome)
            for attempt in ordered
            if isinstance(attempt.outcome, Decoded)
        ]
        unknowns = sum(1 for attempt in ordered if isinstance(attempt.outcome, Unknown))
        eligible = len(voters)
        required = quorum_size(voting_rounds)
        distribution = VoteDistribution.from_values(outcome.value for _, outcome in voters)

        if not voters and unknowns >= required:
            raise UnresolvedError(
                f"{unknowns}/{voting_rounds} attempts answered cannot-determine and none decoded",
                reason=UnresolvedReason.ALL_UNKNOWN,
                distribution=distribution,
                eligible=eligible,
                required=required,
            )
        if eligible < required:
            raise QuorumError(
                f"quorum not reached: {eligible}/{voting_rounds} decoded, {required} required",
                reason=UnresolvedReason.QUORUM_NOT_MET,
                distribution=distribution,
                eligible=eligible,
                required=required,
            )

        if isinstance(spec, BoundedIntegerOutput):
            value = median_half_up(outcome.value for _, outcome in voters)
            return Aggregation(
                value=value,
                distribution=distribution,
                voters=len(voters),
                eligible=eligible,
                required=required,
                method="median",
            )

        leaders = distribution.leaders()
        if len(leaders) == 1:
            return Aggregation(
                value=leaders[0],
                distribution=distribution,
                voters=len(voters),
                eligible=eligible,
                required=required,
                method="majority",
            )
        if allow_unresolved:
            raise TieError(
                f"tie between {leaders!r} with {distribution[leaders[0]]} votes each",
                distribution=distribution,
                tied=tuple(leaders),
                eligible=eligible,
                required=required,
            )
        tied = [(attempt, outcome) for attempt, outcome in voters if outcome.value in leaders]
        chosen, chosen_outcome = min(
            tied, key=lambda pair: (pair[0].temperature, pair[0].index)
        )
        return Aggregation(
            value=chosen_outcome.value,
            distribution=distribution,
            voters=len(voters),
            eligible=eligible,
            required=required,
            method="majority",
            tie_break_applied=True,
            tie_break_reason=(
                f"lowest_temperature(t={chosen.temperature:g}, attempt={chosen.index})"
            ),
        )


def aggregate(
    attempts: Iterable[ReasoningAttempt],
    spec: OutputSpec,
    *,
    voting_rounds: int,
    allow_unresolved: bool = True,
) -> Aggregation:
    return Aggregator().aggregate(
        attempts, spec, voting_rounds=voting_rounds, allow_unresolved=allow_unresolved
    )


__all__ = ["Aggregation", "Aggregator", "aggregate", "median_half_up", "quorum_size"]
