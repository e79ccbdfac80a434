"""Prompt composition for independent reasoning attempts.

Every prompt ends with the answer contract the decoder relies on: the reply
reasons first and finishes with a final line carrying only the answer, or
only ``CANNOT_DETERMINE`` when the question cannot be answered from the given
information.
"""
from __future__ import annotations

from dataclasses import dataclass

from .models import DecisionRequest
from .output_types import (
    BooleanOutput,
    BoundedIntegerOutput,
    EnumStringOutput,
    OutputSpec,
    UNKNOWN_SENTINEL,
)
from .temperature import resolve_temperatures


@dataclass(frozen=True, slots=True)
class PromptConfig:
    reasoning_steps: int = 3
    conclusion_sentences: int = 1

    def __post_init__(self) -> None:
        for name in ("reasoning_steps", "conclusion_sentences"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"{name} must be an int")
            if value < 0:
                raise ValueError(f"{name} must be non-negative")


@dataclass(frozen=True, slots=True)
class ComposedPrompt:
    attempt_index: int
    temperature: float
    text: str


def format_constraint(spec: OutputSpec) -> str:
    """Describe the final-line format expected for ``spec``."""

    if isinstance(spec, BooleanOutput):
        return "The final line must contain only `yes` or `no`."
    if isinstance(spec, BoundedIntegerOutput):
        return (
            "The final line must contain only a whole number between "
            f"{spec.low} and {spec.high} inclusive, written with digits."
        )
    if isinstance(spec, EnumStringOutput):
        options = ", ".join(f"`{value}`" for value in spec.allowed_values)
        casing = " (exact casing)" if spec.case_sensitive else ""
        return f"The final line must contain only one of: {options}{casing}."
    raise TypeError(f"unsupported output spec: {type(spec).__name__}")


class PromptComposer:
    """Build one deterministic reasoning prompt per attempt."""

    def __init__(self, config: PromptConfig | None = None) -> None:
        self._config = config or PromptConfig()

    @property
    def config(self) -> PromptConfig:
        return self._config

    def compose(
        self, request: DecisionRequest, temperature: float, attempt_index: int
    ) -> ComposedPrompt:
        sections = [request.instructions.strip()]
        context = (request.context or "").strip()
        if context:
            sections.append(f"Context:\n{context}")
        sections.append(self._reasoning_hint())
        sections.append(
            "\n".join(
                (
                    "Answer format:",
                    format_constraint(request.output),
                    "Do not add anything after the final line.",
                    "If the answer cannot be determined from the information given, "
                    f"make the final line exactly `{UNKNOWN_SENTINEL}` instead.",
                )
            )
        )
        return ComposedPrompt(
            attempt_index=attempt_index,
            temperature=float(temperature),
            text="\n\n".join(sections),
        )

    def compose_all(self, request: DecisionRequest) -> list[ComposedPrompt]:
        temperatures = resolve_temperatures(request.temperature_schedule, request.voting_rounds)
        return [
            self.compose(request, temperature, index)
            for index, temperature in enumerate(temperatures)
        ]

    def _reasoning_hint(self) -> str:
        steps = self._config.reasoning_steps
        sentences = self._config.conclusion_sentences
        parts = []
        if steps:
            noun = "step" if steps == 1 else "steps"
            parts.append(f"Think it through in {steps} numbered {noun} before answering.")
        else:
            parts.append("Think it through before answering.")
        if sentences:
            noun = "sentence" if sentences == 1 else "sentences"
            parts.append(f"Then state your conclusion in {sentences} {noun}.")
        return " ".join(parts)


__all__ = [
    "ComposedPrompt",
    "PromptComposer",
    "PromptConfig",
    "UNKNOWN_SENTINEL",
    "format_constraint",
]
