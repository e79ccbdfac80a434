"""Boundary protocol for the external text-generation collaborator."""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import inspect
from typing import cast, Protocol, runtime_checkable


@runtime_checkable
class GenerationClient(Protocol):
    """Async text generation capability.

    Implementations raise :class:`~llm_decision.errors.TransportError`
    subclasses for failed calls and :class:`~llm_decision.errors.AuthError`
    when retrying cannot help.
    """

    async def generate(self, prompt: str, temperature: float) -> str: ...


class SyncGenerationClient(Protocol):
    def generate(self, prompt: str, temperature: float) -> str: ...


class _AsyncClientAdapter(GenerationClient):
    def __init__(
        self,
        client: SyncGenerationClient | GenerationClient,
        async_generate: Callable[[str, float], Awaitable[str]],
    ) -> None:
        self._client = client
        self._async_generate = async_generate

    @property
    def wrapped(self) -> SyncGenerationClient | GenerationClient:
        return self._client

    async def generate(self, prompt: str, temperature: float) -> str:
        return await self._async_generate(prompt, temperature)


def ensure_async_client(client: SyncGenerationClient | GenerationClient) -> GenerationClient:
    """Return ``client`` as an async :class:`GenerationClient`.

    Blocking ``generate`` implementations run in a worker thread.
    """

    generate = getattr(client, "generate", None)
    if not callable(generate):
        raise TypeError("client does not expose a generate() method")
    if inspect.iscoroutinefunction(generate):
        return cast(GenerationClient, client)

    async def _generate(prompt: str, temperature: float) -> str:
        return cast(str, await asyncio.to_thread(generate, prompt, temperature))

    return _AsyncClientAdapter(client, _generate)


__all__ = ["GenerationClient", "SyncGenerationClient", "ensure_async_client"]
