"""Pure temperature schedules mapping ``(attempt_index, rounds)`` to a temperature."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Protocol

from .errors import ValidationError


class TemperatureSchedule(Protocol):
    def __call__(self, attempt_index: int, rounds: int) -> float: ...


@dataclass(frozen=True, slots=True)
class FixedTemperature:
    """Use the same temperature for every attempt."""

    value: float = 0.7

    def __call__(self, attempt_index: int, rounds: int) -> float:
        _check_index(attempt_index, rounds)
        return float(self.value)


@dataclass(frozen=True, slots=True)
class LinearTemperature:
    """Spread temperatures evenly from ``low`` (first attempt) to ``high`` (last).

    A single-round request uses ``low``.
    """

    low: float = 0.2
    high: float = 1.0

    def __call__(self, attempt_index: int, rounds: int) -> float:
        _check_index(attempt_index, rounds)
        if rounds == 1:
            return float(self.low)
        step = (float(self.high) - float(self.low)) / (rounds - 1)
        return float(self.low) + step * attempt_index


def _check_index(attempt_index: int, rounds: int) -> None:
    if rounds < 1:
        raise ValidationError("rounds must be at least 1")
    if not 0 <= attempt_index < rounds:
        raise ValidationError(f"attempt index {attempt_index} outside 0..{rounds - 1}")


def resolve_temperatures(schedule: TemperatureSchedule, rounds: int) -> tuple[float, ...]:
    """Evaluate ``schedule`` for every attempt and validate the values."""

    temperatures: list[float] = []
    for index in range(rounds):
        value = schedule(index, rounds)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"temperature for attempt {index} must be a number")
        value = float(value)
        if not math.isfinite(value) or value < 0.0:
            raise ValidationError(
                f"temperature for attempt {index} must be finite and non-negative: {value}"
            )
        temperatures.append(value)
    return tuple(temperatures)


__all__ = [
    "FixedTemperature",
    "LinearTemperature",
    "TemperatureSchedule",
    "resolve_temperatures",
]
