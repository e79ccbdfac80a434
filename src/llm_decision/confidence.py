"""Confidence estimation over a vote distribution."""
from __future__ import annotations

from typing import Any

from .models import VoteDistribution


def supporting_votes(
    distribution: VoteDistribution, winner: Any, *, tolerance: int = 0
) -> int:
    """Count votes for ``winner``; integers within ``tolerance`` also count."""

    if tolerance <= 0 or isinstance(winner, bool) or not isinstance(winner, int):
        return distribution.get(winner, 0)
    return sum(
        count
        for value, count in distribution.items()
        if isinstance(value, int) and abs(value - winner) <= tolerance
    )


def estimate_confidence(
    distribution: VoteDistribution,
    winner: Any,
    total_decoded: int,
    *,
    tolerance: int = 0,
) -> float:
    """Fraction of decoded attempts supporting ``winner``, in ``[0, 1]``."""

    if total_decoded <= 0:
        return 0.0
    votes = supporting_votes(distribution, winner, tolerance=tolerance)
    return min(1.0, max(0.0, votes / total_decoded))


__all__ = ["estimate_confidence", "supporting_votes"]
