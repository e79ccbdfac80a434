from __future__ import annotations

import pytest

from llm_decision.models import DecisionRequest
from llm_decision.output_types import BooleanOutput, BoundedIntegerOutput, EnumStringOutput
from llm_decision.prompts import (
    ComposedPrompt,
    format_constraint,
    PromptComposer,
    PromptConfig,
    UNKNOWN_SENTINEL,
)
from llm_decision.temperature import LinearTemperature


def _request(**overrides: object) -> DecisionRequest:
    base: dict[str, object] = {
        "instructions": "Is the invoice overdue?",
        "output": BooleanOutput(),
        "voting_rounds": 3,
    }
    base.update(overrides)
    return DecisionRequest(**base)  # type: ignore[arg-type]


def test_compose_includes_instructions_context_and_contract() -> None:
    composer = PromptComposer()
    prompt = composer.compose(_request(context="Due date: 2024-03-01."), 0.4, 2)

    assert prompt.attempt_index == 2
    assert prompt.temperature == 0.4
    assert prompt.text.startswith("Is the invoice overdue?")
    assert "Context:\nDue date: 2024-03-01." in prompt.text
    assert "3 numbered steps" in prompt.text
    assert "`yes` or `no`" in prompt.text
    assert UNKNOWN_SENTINEL in prompt.text


def test_compose_skips_blank_context() -> None:
    prompt = PromptComposer().compose(_request(context="   "), 0.7, 0)
    assert "Context:" not in prompt.text


def test_compose_all_follows_schedule() -> None:
    request = _request(voting_rounds=3, temperature_schedule=LinearTemperature(0.0, 1.0))
    prompts = PromptComposer().compose_all(request)

    assert [prompt.attempt_index for prompt in prompts] == [0, 1, 2]
    assert [prompt.temperature for prompt in prompts] == pytest.approx([0.0, 0.5, 1.0])
    assert len({prompt.text for prompt in prompts}) == 1


def test_composition_is_deterministic() -> None:
    request = _request()
    composer = PromptComposer()
    assert composer.compose_all(request) == composer.compose_all(request)
    assert isinstance(composer.compose_all(request)[0], ComposedPrompt)


def test_reasoning_hint_follows_config() -> None:
    composer = PromptComposer(PromptConfig(reasoning_steps=1, conclusion_sentences=2))
    text = composer.compose(_request(), 0.7, 0).text
    assert "1 numbered step before" in text
    assert "2 sentences" in text

    bare = PromptComposer(PromptConfig(reasoning_steps=0, conclusion_sentences=0))
    bare_text = bare.compose(_request(), 0.7, 0).text
    assert "Think it through before answering." in bare_text
    assert "conclusion" not in bare_text


@pytest.mark.parametrize(
    "kwargs, error",
    [({"reasoning_steps": -1}, ValueError), ({"conclusion_sentences": 1.5}, TypeError)],
)
def test_prompt_config_validation(kwargs: dict[str, object], error: type[Exception]) -> None:
    with pytest.raises(error):
        PromptConfig(**kwargs)  # type: ignore[arg-type]


def test_format_constraint_per_kind() -> None:
    assert "between 0 and 100" in format_constraint(BoundedIntegerOutput(0, 100))
    enum_text = format_constraint(EnumStringOutput(["buy", "sell"], case_sensitive=True))
    assert "`buy`, `sell`" in enum_text
    assert "exact casing" in enum_text
    with pytest.raises(TypeError):
        format_constraint(object())  # type: ignore[arg-type]
