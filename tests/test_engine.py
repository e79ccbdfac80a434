from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import threading
import time

import pytest

from llm_decision.config import EngineConfig
from llm_decision.engine import DecisionEngine, validate_request
from llm_decision.errors import UnresolvedReason, ValidationError
from llm_decision.mock import MockGenerationClient
from llm_decision.models import (
    AttemptStatus,
    DecisionRequest,
    DecisionStatus,
    ParseFailure,
    ParseRejected,
)
from llm_decision.output_types import BooleanOutput, BoundedIntegerOutput, EnumStringOutput
from llm_decision.temperature import LinearTemperature

from tests.helpers.fakes import CapturingLogger, ExplodingLogger, ScriptedClient, SyncScriptedClient

ACTIONS = EnumStringOutput(["buy", "sell"])


def _request(output: object, rounds: int, **overrides: object) -> DecisionRequest:
    return DecisionRequest(
        instructions="Decide based on the context.",
        output=output,  # type: ignore[arg-type]
        voting_rounds=rounds,
        **overrides,  # type: ignore[arg-type]
    )


def test_unanimity_resolves_with_full_confidence() -> None:
    client = MockGenerationClient(["1. Paid on time.\n2. No reminders.\nno"])
    engine = DecisionEngine(client)

    result = engine.decide(_request(BooleanOutput(), 5, context="Invoice #7"))

    assert result.status is DecisionStatus.RESOLVED
    assert result.value is False
    assert result.confidence == 1.0
    assert result.vote_distribution == {False: 5}
    assert result.attempts_used == 5
    assert result.attempts_rejected == 0
    assert result.reasoning_traces == ("1. Paid on time.\n2. No reminders.",) * 3
    assert result.resolved
    assert "Invoice #7" in client.calls[0][0]


def test_majority_arithmetic() -> None:
    client = MockGenerationClient(["yes", "yes", "no", "yes", "no"])
    result = DecisionEngine(client).decide(_request(BooleanOutput(), 5))

    assert result.status is DecisionStatus.RESOLVED
    assert result.value is True
    assert result.confidence == pytest.approx(0.6)
    assert result.reason.startswith("majority quorum=5/5 required=3 voters=5")


@pytest.mark.parametrize("early_stop", [True, False])
def test_quorum_floor_is_unresolved_even_when_voters_agree(early_stop: bool) -> None:
    client = MockGenerationClient(["yes"] * 4 + ["perhaps"] * 6)
    engine = DecisionEngine(client, config=EngineConfig(stop_when_quorum_unreachable=early_stop))

    result = engine.decide(_request(BooleanOutput(), 10))

    assert result.status is DecisionStatus.UNRESOLVED
    assert result.unresolved_reason is UnresolvedReason.QUORUM_NOT_MET
    assert result.value is None
    assert result.attempts_used + result.attempts_rejected == 10
    if not early_stop:
        assert result.attempts_used == 4
        assert result.vote_distribution == {True: 4}


def test_out_of_bounds_answer_is_rejected_not_clamped() -> None:
    client = MockGenerationClient(["Way over.\n150", "42", "42", "42", "40"])
    result = DecisionEngine(client).decide(_request(BoundedIntegerOutput(0, 100), 5))

    assert result.status is DecisionStatus.RESOLVED
    assert result.value == 42
    assert result.confidence == pytest.approx(0.75)
    assert result.attempts_rejected == 1
    rejected = [attempt for attempt in result.attempts if attempt.status is AttemptStatus.PARSE_REJECTED]
    assert len(rejected) == 1
    outcome = rejected[0].outcome
    assert isinstance(outcome, ParseRejected)
    assert outcome.failure is ParseFailure.OUT_OF_BOUNDS
    assert 150 not in result.vote_distribution


def test_oversized_integer_literal_is_rejected_not_fatal() -> None:
    client = MockGenerationClient(["42"] * 4 + ["9" * 5000])
    result = DecisionEngine(client).decide(_request(BoundedIntegerOutput(0, 100), 5))

    assert result.status is DecisionStatus.RESOLVED
    assert result.value == 42
    assert result.attempts_used == 4
    (rejected,) = [a for a in result.attempts if a.status is AttemptStatus.PARSE_REJECTED]
    assert isinstance(rejected.outcome, ParseRejected)
    assert rejected.outcome.failure is ParseFailure.OUT_OF_BOUNDS


def test_median_with_low_confidence_when_an_answer_is_required() -> None:
    client = MockGenerationClient(["10", "12", "14", "100", "11"])
    request = _request(BoundedIntegerOutput(0, 100), 5, allow_unresolved=False)

    result = DecisionEngine(client).decide(request)

    assert result.status is DecisionStatus.LOW_CONFIDENCE_RESOLVED
    assert result.value == 12
    assert result.confidence == pytest.approx(0.2)
    assert result.resolved


def test_low_confidence_is_unresolved_when_allowed() -> None:
    client = MockGenerationClient(["10", "12", "14", "100", "11"])
    result = DecisionEngine(client).decide(_request(BoundedIntegerOutput(0, 100), 5))

    assert result.status is DecisionStatus.UNRESOLVED
    assert result.unresolved_reason is UnresolvedReason.LOW_CONFIDENCE
    assert result.value is None
    assert result.confidence == pytest.approx(0.2)


def test_integer_tolerance_raises_confidence() -> None:
    client = MockGenerationClient(["10", "12", "14", "100", "11"])
    request = _request(BoundedIntegerOutput(0, 100, tolerance=2), 5)

    result = DecisionEngine(client).decide(request)

    assert result.status is DecisionStatus.RESOLVED
    assert result.value == 12
    assert result.confidence == pytest.approx(0.8)


def test_tie_is_unresolved_when_allowed() -> None:
    client = MockGenerationClient(["buy", "sell", "buy", "sell"])
    result = DecisionEngine(client).decide(_request(ACTIONS, 4))

    assert result.status is DecisionStatus.UNRESOLVED
    assert result.unresolved_reason is UnresolvedReason.TIE
    assert result.value is None
    assert result.confidence == pytest.approx(0.5)
    assert result.vote_distribution == {"buy": 2, "sell": 2}


def test_tie_break_prefers_lowest_temperature() -> None:
    client = ScriptedClient(lambda prompt, temperature: "buy" if temperature < 0.5 else "sell")
    request = _request(
        ACTIONS,
        4,
        allow_unresolved=False,
        temperature_schedule=LinearTemperature(0.2, 1.0),
    )

    result = DecisionEngine(client).decide(request)

    assert result.status is DecisionStatus.RESOLVED
    assert result.value == "buy"
    assert "tie_breaker=lowest_temperature(t=0.2, attempt=0)" in result.reason


def test_all_unknown_is_unresolved() -> None:
    client = MockGenerationClient(["The ledger is missing.\nCANNOT_DETERMINE"])
    result = DecisionEngine(client).decide(_request(BooleanOutput(), 3))

    assert result.status is DecisionStatus.UNRESOLVED
    assert result.unresolved_reason is UnresolvedReason.ALL_UNKNOWN
    assert result.attempts_used == 0
    assert result.attempts_rejected == 3


@pytest.mark.parametrize("early_stop", [True, False])
def test_one_vote_among_unknowns_and_garbage_is_unresolved(early_stop: bool) -> None:
    client = MockGenerationClient(["yes"] + ["CANNOT_DETERMINE"] * 5 + ["perhaps"] * 4)
    engine = DecisionEngine(client, config=EngineConfig(stop_when_quorum_unreachable=early_stop))

    result = engine.decide(_request(BooleanOutput(), 10))

    assert result.status is DecisionStatus.UNRESOLVED
    assert result.unresolved_reason is UnresolvedReason.QUORUM_NOT_MET
    assert result.value is None
    assert result.confidence == 0.0
    if not early_stop:
        assert result.attempts_used == 1
        assert result.attempts_rejected == 9
        assert "quorum=1/10 required=5 voters=1" in result.reason


def test_decoded_majority_resolves_alongside_unknowns() -> None:
    client = MockGenerationClient(["yes", "CANNOT_DETERMINE", "yes", "CANNOT_DETERMINE", "no"])
    engine = DecisionEngine(client, config=EngineConfig(stop_when_quorum_unreachable=False))

    result = engine.decide(_request(BooleanOutput(), 5))

    assert result.status is DecisionStatus.RESOLVED
    assert result.value is True
    assert result.vote_distribution == {True: 2, False: 1}
    assert result.attempts_used == 3
    assert result.attempts_rejected == 2


def test_invalid_request_fails_without_dispatch() -> None:
    client = MockGenerationClient(["50"])
    logger = CapturingLogger()
    result = DecisionEngine(client, event_logger=logger).decide(
        _request(BoundedIntegerOutput(100, 0), 3)
    )

    assert result.status is DecisionStatus.FAILED
    assert result.error is not None
    assert "inverted" in result.error
    assert client.calls == []
    assert [(event["from_state"], event["to_state"]) for event in logger.of_type("state")] == [
        ("pending", "failed")
    ]


@pytest.mark.parametrize(
    "overrides",
    [
        {"voting_rounds": 0},
        {"confidence_threshold": 1.5},
        {"time_budget_s": 0},
        {"instructions": "   "},
        {"temperature_schedule": LinearTemperature(-1.0, 1.0)},
    ],
)
def test_validate_request_rejects_broken_invariants(overrides: dict[str, object]) -> None:
    base: dict[str, object] = {
        "instructions": "Decide.",
        "output": BooleanOutput(),
        "voting_rounds": 3,
    }
    base.update(overrides)
    with pytest.raises(ValidationError):
        validate_request(DecisionRequest(**base))  # type: ignore[arg-type]


def test_schedule_errors_become_validation_errors() -> None:
    def broken(index: int, rounds: int) -> float:
        raise KeyError(index)

    request = _request(BooleanOutput(), 2, temperature_schedule=broken)
    with pytest.raises(ValidationError):
        validate_request(request)


def test_all_transport_failures_fail_the_decision() -> None:
    client = MockGenerationClient(["[TIMEOUT]"])
    engine = DecisionEngine(client, config=EngineConfig(max_retries=0))

    result = engine.decide(_request(BooleanOutput(), 3))

    assert result.status is DecisionStatus.FAILED
    assert result.error is not None
    assert result.error.startswith("all attempts failed")
    assert result.attempts_rejected == 3
    assert len(client.calls) == 3


def test_timeout_uses_partial_results() -> None:
    client = ScriptedClient(["yes"], delays=[0.0] * 7 + [5.0] * 3)
    engine = DecisionEngine(client, config=EngineConfig(max_concurrency=10))

    result = engine.decide(_request(BooleanOutput(), 10, time_budget_s=0.5))

    assert result.status is DecisionStatus.RESOLVED
    assert result.value is True
    assert result.timed_out is True
    assert result.attempts_used == 7
    assert result.attempts_rejected == 3
    assert result.reason.endswith("timed_out")
    assert [attempt.status for attempt in result.attempts].count(AttemptStatus.CANCELLED) == 3


def test_timeout_without_any_completion_fails() -> None:
    client = ScriptedClient(["yes"], delay=5.0)
    result = DecisionEngine(client).decide(_request(BooleanOutput(), 3, time_budget_s=0.05))

    assert result.status is DecisionStatus.FAILED
    assert result.timed_out is True


def test_events_trace_the_state_machine() -> None:
    logger = CapturingLogger()
    engine = DecisionEngine(MockGenerationClient(["yes"]), event_logger=logger)

    result = engine.decide(_request(BooleanOutput(), 3))

    transitions = [(event["from_state"], event["to_state"]) for event in logger.of_type("state")]
    assert transitions == [
        ("pending", "dispatching"),
        ("dispatching", "collecting"),
        ("collecting", "aggregating"),
        ("aggregating", "resolved"),
    ]
    assert len(logger.of_type("attempt")) == 3
    (decision,) = logger.of_type("decision")
    assert decision["status"] == result.status.value
    assert decision["votes"] == {"True": 3}
    assert len({event["decision_id"] for event in logger.of_type("state")}) == 1


def test_failing_event_sink_does_not_affect_decisions() -> None:
    engine = DecisionEngine(MockGenerationClient(["yes"]), event_logger=ExplodingLogger())
    result = engine.decide(_request(BooleanOutput(), 3))
    assert result.status is DecisionStatus.RESOLVED


def test_sync_clients_are_supported() -> None:
    client = SyncScriptedClient(["sell"])
    result = DecisionEngine(client).decide(_request(ACTIONS, 3))
    assert result.value == "sell"
    assert client.calls == 3


def test_blocking_sync_client_honours_time_budget() -> None:
    gate = threading.Event()
    client = SyncScriptedClient(["yes"], gate=gate)
    request = _request(BooleanOutput(), 2, time_budget_s=0.2)

    started = time.monotonic()
    try:
        result = DecisionEngine(client).decide(request)
    finally:
        elapsed = time.monotonic() - started
        gate.set()

    assert elapsed < 2.0
    assert result.status is DecisionStatus.FAILED
    assert result.timed_out is True
    assert [attempt.status for attempt in result.attempts] == [AttemptStatus.CANCELLED] * 2


def test_decide_is_safe_across_threads() -> None:
    engine = DecisionEngine(MockGenerationClient(["buy"]))
    request = _request(ACTIONS, 3)

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda _: engine.decide(request), range(8)))

    assert all(result.status is DecisionStatus.RESOLVED for result in results)
    assert all(result.value == "buy" for result in results)


def test_max_traces_limits_explanations() -> None:
    engine = DecisionEngine(
        MockGenerationClient(["why A\nyes", "why B\nyes", "why C\nno"]),
        config=EngineConfig(max_traces=2),
    )
    result = engine.decide(_request(BooleanOutput(), 3))
    assert len(result.reasoning_traces) == 2
    assert "why C" not in result.reasoning_traces


@pytest.mark.asyncio
async def test_decide_inside_running_loop_is_rejected() -> None:
    engine = DecisionEngine(MockGenerationClient(["yes"]))
    request = _request(BooleanOutput(), 1)

    with pytest.raises(RuntimeError):
        engine.decide(request)

    result = await engine.decide_async(request)
    assert result.status is DecisionStatus.RESOLVED
