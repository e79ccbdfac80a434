"""Configuration objects for engine orchestration behavior."""
from __future__ import annotations

from dataclasses import dataclass, field
import math

from .errors import ConfigError

DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_MAX_RETRIES = 1
DEFAULT_MAX_TRACES = 3


def _check_int(name: str, value: object, *, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an int")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}")


def _check_seconds(name: str, value: object, *, allow_zero: bool) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number of seconds")
    if not math.isfinite(value) or value < 0 or (value == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        raise ConfigError(f"{name} must be finite and {bound}")


@dataclass(frozen=True)
class BackoffPolicy:
    rate_limit_sleep_s: float = 0.05
    retry_sleep_s: float = 0.0

    def __post_init__(self) -> None:
        _check_seconds("rate_limit_sleep_s", self.rate_limit_sleep_s, allow_zero=True)
        _check_seconds("retry_sleep_s", self.retry_sleep_s, allow_zero=True)


@dataclass(frozen=True)
class EngineConfig:
    """Knobs shared by every ``decide()`` call of one engine."""

    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    call_timeout_s: float | None = None
    max_traces: int = DEFAULT_MAX_TRACES
    stop_when_quorum_unreachable: bool = True

    def __post_init__(self) -> None:
        _check_int("max_concurrency", self.max_concurrency, minimum=1)
        _check_int("max_retries", self.max_retries, minimum=0)
        _check_int("max_traces", self.max_traces, minimum=0)
        if self.call_timeout_s is not None:
            _check_seconds("call_timeout_s", self.call_timeout_s, allow_zero=False)
        if not isinstance(self.backoff, BackoffPolicy):
            raise ConfigError("backoff must be a BackoffPolicy")

    @property
    def max_tries(self) -> int:
        return self.max_retries + 1


__all__ = [
    "BackoffPolicy",
    "DEFAULT_MAX_CONCURRENCY",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_MAX_TRACES",
    "EngineConfig",
]
