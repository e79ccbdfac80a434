"""Mock generation client that can deterministically trigger failure modes."""
from __future__ import annotations

import asyncio
from collections.abc import Iterable
import threading

from .errors import AuthError, DecisionError, RateLimitError, TimeoutError

ErrorSpec = tuple[type[DecisionError], str]
_ERROR_BY_MARKER: dict[str, ErrorSpec] = {
    "[TIMEOUT]": (TimeoutError, "simulated timeout"),
    "[RATELIMIT]": (RateLimitError, "simulated rate limit"),
    "[AUTH]": (AuthError, "simulated credential rejection"),
}


class MockGenerationClient:
    """Cycle through canned replies; marker replies raise transport errors.

    A reply equal to ``[TIMEOUT]``, ``[RATELIMIT]`` or ``[AUTH]`` raises the
    matching error instead of returning text.
    """

    def __init__(self, replies: Iterable[str], *, latency_s: float = 0.0) -> None:
        self._replies = list(replies)
        if not self._replies:
            raise ValueError("MockGenerationClient requires at least one reply")
        self._latency_s = latency_s
        self._lock = threading.Lock()
        self._cursor = 0
        self.calls: list[tuple[str, float]] = []

    def _next_reply(self, prompt: str, temperature: float) -> str:
        with self._lock:
            reply = self._replies[self._cursor % len(self._replies)]
            self._cursor += 1
            self.calls.append((prompt, temperature))
        return reply

    async def generate(self, prompt: str, temperature: float) -> str:
        reply = self._next_reply(prompt, temperature)
        if self._latency_s > 0:
            await asyncio.sleep(self._latency_s)
        marker = reply.strip()
        if marker in _ERROR_BY_MARKER:
            exc_cls, message = _ERROR_BY_MARKER[marker]
            raise exc_cls(message)
        return reply


__all__ = ["MockGenerationClient"]
