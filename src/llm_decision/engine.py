"""Decision engine orchestrating composition, dispatch and aggregation."""
from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging
import math
from typing import Any
import uuid

from .aggregation import Aggregation, Aggregator, quorum_size
from .client import GenerationClient, SyncGenerationClient
from .config import EngineConfig
from .confidence import estimate_confidence
from .decoder import AttemptDecoder
from .errors import (
    StateTransitionError,
    UnresolvedError,
    UnresolvedReason,
    ValidationError,
)
from .models import (
    Cancelled,
    DecisionRequest,
    DecisionResult,
    DecisionState,
    DecisionStatus,
    Decoded,
    ReasoningAttempt,
)
from .observability import DECISION_EVENT, EventLogger, safe_emit, STATE_EVENT
from .output_types import BoundedIntegerOutput, validate_output_spec
from .prompts import PromptComposer
from .runner import CANCEL_DEADLINE, ReasoningRunner
from .temperature import resolve_temperatures

LOGGER = logging.getLogger(__name__)

_TRANSITIONS: dict[DecisionState, frozenset[DecisionState]] = {
    DecisionState.PENDING: frozenset({DecisionState.DISPATCHING, DecisionState.FAILED}),
    DecisionState.DISPATCHING: frozenset({DecisionState.COLLECTING, DecisionState.FAILED}),
    DecisionState.COLLECTING: frozenset({DecisionState.AGGREGATING, DecisionState.FAILED}),
    DecisionState.AGGREGATING: frozenset(
        {
            DecisionState.RESOLVED,
            DecisionState.LOW_CONFIDENCE_RESOLVED,
            DecisionState.UNRESOLVED,
            DecisionState.FAILED,
        }
    ),
}

_STATE_BY_STATUS = {
    DecisionStatus.RESOLVED: DecisionState.RESOLVED,
    DecisionStatus.LOW_CONFIDENCE_RESOLVED: DecisionState.LOW_CONFIDENCE_RESOLVED,
    DecisionStatus.UNRESOLVED: DecisionState.UNRESOLVED,
    DecisionStatus.FAILED: DecisionState.FAILED,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_request(request: DecisionRequest) -> None:
    """Raise :class:`ValidationError` when ``request`` breaks an invariant."""

    if not isinstance(request, DecisionRequest):
        raise ValidationError("request must be a DecisionRequest")
    if not isinstance(request.instructions, str) or not request.instructions.strip():
        raise ValidationError("instructions must be a non-empty string")
    validate_output_spec(request.output)
    rounds = request.voting_rounds
    if isinstance(rounds, bool) or not isinstance(rounds, int) or rounds < 1:
        raise ValidationError(f"voting_rounds must be an integer >= 1, got {rounds!r}")
    threshold = request.confidence_threshold
    if not _is_number(threshold) or not 0.0 <= threshold <= 1.0:
        raise ValidationError(
            f"confidence_threshold must be within [0, 1], got {threshold!r}"
        )
    budget = request.time_budget_s
    if budget is not None and (
        not _is_number(budget) or not math.isfinite(budget) or budget <= 0
    ):
        raise ValidationError(f"time_budget_s must be a positive number, got {budget!r}")
    if not isinstance(request.allow_unresolved, bool):
        raise ValidationError("allow_unresolved must be a bool")
    if request.context is not None and not isinstance(request.context, str):
        raise ValidationError("context must be a string when provided")
    if not callable(request.temperature_schedule):
        raise ValidationError("temperature_schedule must be callable")
    try:
        resolve_temperatures(request.temperature_schedule, rounds)
    except ValidationError:
        raise
    except Exception as exc:  # noqa: BLE001 - user schedules may raise anything
        raise ValidationError(f"temperature_schedule failed: {exc}") from exc


class _DecisionRun:
    """State holder for one ``decide()`` call."""

    def __init__(self, event_logger: EventLogger | None) -> None:
        self.decision_id = uuid.uuid4().hex
        self.state = DecisionState.PENDING
        self._event_logger = event_logger

    def transition(self, target: DecisionState) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if target not in allowed:
            raise StateTransitionError(self.state, target)
        LOGGER.debug("decision %s: %s -> %s", self.decision_id, self.state.value, target.value)
        safe_emit(
            self._event_logger,
            STATE_EVENT,
            {
                "decision_id": self.decision_id,
                "from_state": self.state.value,
                "to_state": target.value,
            },
        )
        self.state = target


class DecisionEngine:
    """Ask the same question several times and vote on the typed answers.

    ``decide`` is safe to call from several threads at once: every call runs
    its own event loop and keeps its state local to the call.
    """

    def __init__(
        self,
        client: GenerationClient | SyncGenerationClient,
        *,
        config: EngineConfig | None = None,
        composer: PromptComposer | None = None,
        decoder: AttemptDecoder | None = None,
        aggregator: Aggregator | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._composer = composer or PromptComposer()
        self._aggregator = aggregator or Aggregator()
        self._event_logger = event_logger
        self._runner = ReasoningRunner(
            client,
            config=self._config,
            decoder=decoder,
            event_logger=event_logger,
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    def decide(self, request: DecisionRequest) -> DecisionResult:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            raise RuntimeError(
                "DecisionEngine.decide() cannot run inside an event loop; "
                "await decide_async() instead"
            )
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(self.decide_async(request))
        finally:
            try:
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                # close() does not join the default executor, so a blocked
                # sync client cannot hold the call past its time budget.
                loop.close()

    async def decide_async(self, request: DecisionRequest) -> DecisionResult:
        run = _DecisionRun(self._event_logger)
        try:
            validate_request(request)
        except ValidationError as exc:
            LOGGER.debug("decision %s rejected: %s", run.decision_id, exc)
            return self._finish(run, DecisionResult(status=DecisionStatus.FAILED, error=str(exc)))

        run.transition(DecisionState.DISPATCHING)
        try:
            prompts = self._composer.compose_all(request)
        except Exception as exc:  # noqa: BLE001 - composition errors end the decision
            LOGGER.error("decision %s: prompt composition failed", run.decision_id, exc_info=True)
            return self._finish(
                run,
                DecisionResult(
                    status=DecisionStatus.FAILED,
                    error=f"prompt composition failed: {type(exc).__name__}: {exc}",
                ),
            )

        run.transition(DecisionState.COLLECTING)
        try:
            attempts = await self._runner.run(request, prompts)
        except Exception as exc:  # noqa: BLE001 - non attempt-level errors end the decision
            LOGGER.error("decision %s: attempt batch failed", run.decision_id, exc_info=True)
            return self._finish(
                run,
                DecisionResult(
                    status=DecisionStatus.FAILED,
                    error=f"attempt batch failed: {type(exc).__name__}: {exc}",
                ),
            )

        run.transition(DecisionState.AGGREGATING)
        try:
            result = self._conclude(request, attempts)
        except Exception as exc:  # noqa: BLE001 - aggregation bugs end the decision
            LOGGER.error("decision %s: aggregation failed", run.decision_id, exc_info=True)
            result = DecisionResult(
                status=DecisionStatus.FAILED,
                error=f"aggregation failed: {type(exc).__name__}: {exc}",
                attempts=tuple(attempts),
            )
        return self._finish(run, result)

    def _conclude(
        self, request: DecisionRequest, attempts: Sequence[ReasoningAttempt]
    ) -> DecisionResult:
        ordered = tuple(sorted(attempts, key=lambda attempt: attempt.index))
        voters = [attempt for attempt in ordered if isinstance(attempt.outcome, Decoded)]
        eligible = len(voters)
        timed_out = any(
            isinstance(attempt.outcome, Cancelled) and attempt.outcome.reason == CANCEL_DEADLINE
            for attempt in ordered
        )
        base: dict[str, Any] = {
            "attempts": ordered,
            "attempts_used": len(voters),
            "attempts_rejected": len(ordered) - len(voters),
            "timed_out": timed_out,
        }

        if not any(attempt.produced_text for attempt in ordered):
            summary = "; ".join(
                f"attempt {attempt.index}: {attempt.describe()}" for attempt in ordered
            )
            return DecisionResult(
                status=DecisionStatus.FAILED,
                error=f"all attempts failed: {summary}",
                **base,
            )
        if timed_out and not any(attempt.answered for attempt in ordered):
            return DecisionResult(
                status=DecisionStatus.FAILED,
                error="time budget expired before any usable attempt completed",
                **base,
            )

        try:
            aggregation = self._aggregator.aggregate(
                ordered,
                request.output,
                voting_rounds=request.voting_rounds,
                allow_unresolved=request.allow_unresolved,
            )
        except UnresolvedError as exc:
            confidence = 0.0
            if exc.reason is UnresolvedReason.TIE and exc.distribution.total:
                confidence = exc.distribution.ranked()[0][1] / exc.distribution.total
            return DecisionResult(
                status=DecisionStatus.UNRESOLVED,
                confidence=confidence,
                vote_distribution=exc.distribution,
                reasoning_traces=self._sample_traces(voters, None),
                unresolved_reason=exc.reason,
                reason=self._describe(request, eligible, len(voters), timed_out, str(exc)),
                **base,
            )

        tolerance = request.output.tolerance if isinstance(request.output, BoundedIntegerOutput) else 0
        confidence = estimate_confidence(
            aggregation.distribution,
            aggregation.value,
            aggregation.voters,
            tolerance=tolerance,
        )
        reason = self._describe(
            request, eligible, aggregation.voters, timed_out, self._method_detail(aggregation)
        )
        traces = self._sample_traces(voters, aggregation.value)
        if confidence >= request.confidence_threshold:
            status = DecisionStatus.RESOLVED
        elif not request.allow_unresolved:
            status = DecisionStatus.LOW_CONFIDENCE_RESOLVED
        else:
            return DecisionResult(
                status=DecisionStatus.UNRESOLVED,
                confidence=confidence,
                vote_distribution=aggregation.distribution,
                reasoning_traces=traces,
                unresolved_reason=UnresolvedReason.LOW_CONFIDENCE,
                reason=f"{reason} confidence={confidence:.3f}<{request.confidence_threshold:g}",
                **base,
            )
        return DecisionResult(
            status=status,
            value=aggregation.value,
            confidence=confidence,
            vote_distribution=aggregation.distribution,
            reasoning_traces=traces,
            reason=reason,
            **base,
        )

    @staticmethod
    def _method_detail(aggregation: Aggregation) -> str:
        detail = aggregation.method
        if aggregation.tie_break_applied and aggregation.tie_break_reason:
            detail = f"{detail} tie_breaker={aggregation.tie_break_reason}"
        return detail

    @staticmethod
    def _describe(
        request: DecisionRequest, eligible: int, voters: int, timed_out: bool, detail: str
    ) -> str:
        parts = [
            detail,
            f"quorum={eligible}/{request.voting_rounds}",
            f"required={quorum_size(request.voting_rounds)}",
            f"voters={voters}",
        ]
        if timed_out:
            parts.append("timed_out")
        return " ".join(parts)

    def _sample_traces(
        self, voters: Sequence[ReasoningAttempt], winner: Any
    ) -> tuple[str, ...]:
        limit = self._config.max_traces
        if limit <= 0:
            return ()

        def _supports(attempt: ReasoningAttempt) -> bool:
            outcome = attempt.outcome
            return isinstance(outcome, Decoded) and winner is not None and outcome.value == winner

        ranked = sorted(voters, key=lambda attempt: (not _supports(attempt), attempt.index))
        traces: list[str] = []
        for attempt in ranked:
            outcome = attempt.outcome
            if isinstance(outcome, Decoded) and outcome.reasoning_trace:
                traces.append(outcome.reasoning_trace)
            if len(traces) >= limit:
                break
        return tuple(traces)

    def _finish(self, run: _DecisionRun, result: DecisionResult) -> DecisionResult:
        run.transition(_STATE_BY_STATUS[result.status])
        safe_emit(
            self._event_logger,
            DECISION_EVENT,
            {
                "decision_id": run.decision_id,
                "status": result.status.value,
                "value": result.value,
                "confidence": result.confidence,
                "votes": {str(value): count for value, count in result.vote_distribution.ranked()},
                "attempts_used": result.attempts_used,
                "attempts_rejected": result.attempts_rejected,
                "unresolved_reason": (
                    result.unresolved_reason.value if result.unresolved_reason else None
                ),
                "timed_out": result.timed_out,
                "error": result.error,
                "reason": result.reason,
            },
        )
        return result


__all__ = ["DecisionEngine", "validate_request"]
