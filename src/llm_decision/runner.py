"""Concurrent dispatch of reasoning attempts against a generation client."""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
import logging
import time
from typing import Any

from .client import ensure_async_client, GenerationClient, SyncGenerationClient
from .config import EngineConfig
from .decoder import AttemptDecoder
from .errors import describe_error, FatalError, RateLimitError, TimeoutError, TransportError
from .models import (
    Cancelled,
    DecisionRequest,
    Decoded,
    ParseRejected,
    ReasoningAttempt,
    TransportFailed,
)
from .observability import ATTEMPT_EVENT, EventLogger, RETRY_EVENT, safe_emit
from .prompts import ComposedPrompt

LOGGER = logging.getLogger(__name__)

CANCEL_DEADLINE = "deadline"
CANCEL_QUORUM_UNREACHABLE = "quorum_unreachable"


@dataclass(slots=True)
class _AttemptProgress:
    tries: int = 0
    started_at: float | None = None


def _elapsed_ms(started_at: float | None) -> int | None:
    if started_at is None:
        return None
    return max(0, int((time.monotonic() - started_at) * 1000))


class ReasoningRunner:
    """Fan ``voting_rounds`` prompts out over a bounded pool of workers.

    Transport failures are retried up to ``EngineConfig.max_retries`` times;
    parse rejections are final. The request's ``time_budget_s`` bounds the
    whole batch and attempts still running at the deadline become
    ``Cancelled``. Errors that are not attempt-level propagate.
    """

    def __init__(
        self,
        client: GenerationClient | SyncGenerationClient,
        *,
        config: EngineConfig | None = None,
        decoder: AttemptDecoder | None = None,
        event_logger: EventLogger | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._client = ensure_async_client(client)
        self._config = config or EngineConfig()
        self._decoder = decoder or AttemptDecoder()
        self._event_logger = event_logger
        self._sleep = sleep or asyncio.sleep

    @property
    def config(self) -> EngineConfig:
        return self._config

    async def run(
        self, request: DecisionRequest, prompts: Sequence[ComposedPrompt]
    ) -> list[ReasoningAttempt]:
        if len(prompts) != request.voting_rounds:
            raise ValueError(
                f"expected {request.voting_rounds} prompts, got {len(prompts)}"
            )
        limit = max(min(self._config.max_concurrency, len(prompts)), 1)
        semaphore = asyncio.Semaphore(limit)
        progress = {prompt.attempt_index: _AttemptProgress() for prompt in prompts}
        tasks: dict[asyncio.Task[ReasoningAttempt], ComposedPrompt] = {
            asyncio.create_task(
                self._run_attempt(
                    prompt, request, semaphore, progress[prompt.attempt_index]
                )
            ): prompt
            for prompt in prompts
        }

        loop = asyncio.get_running_loop()
        deadline = None
        if request.time_budget_s is not None:
            deadline = loop.time() + float(request.time_budget_s)

        settled: dict[int, ReasoningAttempt] = {}
        pending: set[asyncio.Task[ReasoningAttempt]] = set(tasks)
        cancel_reason = CANCEL_DEADLINE
        try:
            while pending:
                timeout = None if deadline is None else max(0.0, deadline - loop.time())
                done, pending = await asyncio.wait(
                    pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
                if not done:
                    LOGGER.debug(
                        "time budget of %.3fs expired with %d attempts outstanding",
                        request.time_budget_s,
                        len(pending),
                    )
                    break
                for task in done:
                    attempt = task.result()
                    settled[attempt.index] = attempt
                    self._emit_attempt(attempt)
                if pending and self._quorum_unreachable(request, settled.values()):
                    cancel_reason = CANCEL_QUORUM_UNREACHABLE
                    LOGGER.debug(
                        "quorum of %d unreachable; cancelling %d attempts",
                        request.quorum,
                        len(pending),
                    )
                    break
        except BaseException:
            await _cancel_all(pending)
            raise

        if pending:
            await _cancel_all(pending)
            for task in pending:
                prompt = tasks[task]
                state = progress[prompt.attempt_index]
                attempt = ReasoningAttempt(
                    index=prompt.attempt_index,
                    temperature=prompt.temperature,
                    outcome=Cancelled(cancel_reason),
                    tries=state.tries,
                    latency_ms=_elapsed_ms(state.started_at),
                )
                settled[attempt.index] = attempt
                self._emit_attempt(attempt)

        return [settled[index] for index in sorted(settled)]

    def _quorum_unreachable(
        self, request: DecisionRequest, settled: Iterable[ReasoningAttempt]
    ) -> bool:
        if not self._config.stop_when_quorum_unreachable:
            return False
        rejected = sum(1 for attempt in settled if not attempt.voted)
        return request.voting_rounds - rejected < request.quorum

    async def _run_attempt(
        self,
        prompt: ComposedPrompt,
        request: DecisionRequest,
        semaphore: asyncio.Semaphore,
        progress: _AttemptProgress,
    ) -> ReasoningAttempt:
        max_tries = self._config.max_tries
        last_error: BaseException = TransportError("generation was not attempted")
        for try_number in range(1, max_tries + 1):
            try:
                async with semaphore:
                    if progress.started_at is None:
                        progress.started_at = time.monotonic()
                    progress.tries = try_number
                    text = await self._generate(prompt)
            except asyncio.CancelledError:
                raise
            except FatalError as exc:
                last_error = exc
                break
            except Exception as exc:  # noqa: BLE001 - any client failure is attempt-level
                last_error = exc
                if try_number < max_tries:
                    await self._backoff(prompt, try_number, exc)
                continue
            outcome = self._decoder.decode(text, request.output)
            return ReasoningAttempt(
                index=prompt.attempt_index,
                temperature=prompt.temperature,
                outcome=outcome,
                raw_text=text,
                tries=progress.tries,
                latency_ms=_elapsed_ms(progress.started_at),
            )

        return ReasoningAttempt(
            index=prompt.attempt_index,
            temperature=prompt.temperature,
            outcome=TransportFailed(
                f"{type(last_error).__name__}: {last_error}",
                error_type=type(last_error).__name__,
            ),
            tries=progress.tries,
            latency_ms=_elapsed_ms(progress.started_at),
        )

    async def _generate(self, prompt: ComposedPrompt) -> str:
        call = self._client.generate(prompt.text, prompt.temperature)
        timeout = self._config.call_timeout_s
        if timeout is None:
            text = await call
        else:
            try:
                text = await asyncio.wait_for(call, timeout)
            except asyncio.TimeoutError as exc:
                raise TimeoutError(f"generation exceeded {timeout}s") from exc
        if not isinstance(text, str):
            raise TransportError(f"client returned {type(text).__name__} instead of text")
        return text

    async def _backoff(self, prompt: ComposedPrompt, try_number: int, error: Exception) -> None:
        backoff = self._config.backoff
        if isinstance(error, RateLimitError):
            delay = backoff.rate_limit_sleep_s
        else:
            delay = backoff.retry_sleep_s
        LOGGER.debug(
            "attempt %d try %d failed (%s); retrying in %.3fs",
            prompt.attempt_index,
            try_number,
            type(error).__name__,
            delay,
        )
        safe_emit(
            self._event_logger,
            RETRY_EVENT,
            {
                "attempt_index": prompt.attempt_index,
                "temperature": prompt.temperature,
                "try": try_number,
                "next_try": try_number + 1,
                "delay_seconds": delay,
                **describe_error(error),
            },
        )
        if delay > 0:
            await self._sleep(delay)

    def _emit_attempt(self, attempt: ReasoningAttempt) -> None:
        record: dict[str, Any] = {
            "attempt_index": attempt.index,
            "temperature": attempt.temperature,
            "status": attempt.status.value,
            "detail": attempt.describe(),
            "tries": attempt.tries,
            "latency_ms": attempt.latency_ms,
        }
        outcome = attempt.outcome
        if isinstance(outcome, Decoded):
            record["value"] = outcome.value
        elif isinstance(outcome, ParseRejected):
            record["parse_failure"] = outcome.failure.value
        elif isinstance(outcome, TransportFailed):
            record["error_type"] = outcome.error_type
        safe_emit(self._event_logger, ATTEMPT_EVENT, record)


async def _cancel_all(tasks: set[asyncio.Task[ReasoningAttempt]]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


__all__ = [
    "CANCEL_DEADLINE",
    "CANCEL_QUORUM_UNREACHABLE",
    "ReasoningRunner",
]
