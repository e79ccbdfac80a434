from __future__ import annotations

import math

import pytest

from llm_decision.config import BackoffPolicy, EngineConfig
from llm_decision.errors import (
    AuthError,
    ConfigError,
    describe_error,
    error_family,
    FatalError,
    RateLimitError,
    RetryableError,
    StateTransitionError,
    TimeoutError,
    TransportError,
    ValidationError,
)
from llm_decision.models import DecisionState


@pytest.mark.parametrize(
    "error, family",
    [
        (RateLimitError("429"), "rate_limit"),
        (TimeoutError("slow"), "timeout"),
        (TransportError("reset"), "retryable"),
        (AuthError("401"), "fatal"),
        (ValidationError("bad"), "fatal"),
        (RuntimeError("boom"), "unknown"),
        (None, None),
    ],
)
def test_error_family(error: BaseException | None, family: str | None) -> None:
    assert error_family(error) == family


def test_error_hierarchy() -> None:
    assert issubclass(TimeoutError, RetryableError)
    assert issubclass(ConfigError, ValidationError)
    assert issubclass(ValidationError, ValueError)
    assert issubclass(StateTransitionError, FatalError)


def test_describe_error() -> None:
    assert describe_error(RateLimitError("slow down")) == {
        "error_type": "RateLimitError",
        "error_message": "slow down",
        "error_family": "rate_limit",
    }


def test_state_transition_error_message() -> None:
    error = StateTransitionError(DecisionState.PENDING, DecisionState.RESOLVED)
    assert str(error) == "illegal transition pending -> resolved"
    assert DecisionState.RESOLVED.terminal
    assert not DecisionState.COLLECTING.terminal


def test_engine_config_defaults() -> None:
    config = EngineConfig()
    assert config.max_concurrency == 4
    assert config.max_tries == 2
    assert config.backoff == BackoffPolicy()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_concurrency": 0},
        {"max_concurrency": True},
        {"max_retries": -1},
        {"max_traces": 1.5},
        {"call_timeout_s": 0},
        {"call_timeout_s": math.inf},
        {"backoff": {"rate_limit_sleep_s": 1}},
    ],
)
def test_engine_config_validation(kwargs: dict[str, object]) -> None:
    with pytest.raises(ConfigError):
        EngineConfig(**kwargs)  # type: ignore[arg-type]


def test_backoff_policy_validation() -> None:
    with pytest.raises(ConfigError):
        BackoffPolicy(rate_limit_sleep_s=-0.1)
    with pytest.raises(ConfigError):
        BackoffPolicy(retry_sleep_s=math.nan)
