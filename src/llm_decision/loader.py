"""YAML configuration loading for engines and decision requests."""
from __future__ import annotations

from collections.abc import MutableMapping
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError
import yaml

from .config import BackoffPolicy, EngineConfig
from .engine import validate_request
from .errors import ConfigError, ValidationError
from .models import DecisionRequest
from .output_types import BooleanOutput, BoundedIntegerOutput, EnumStringOutput, OutputSpec
from .prompts import PromptConfig
from .schema import (
    BooleanOutputModel,
    BoundedIntegerOutputModel,
    DecisionConfigModel,
    RequestConfigModel,
    TemperatureConfigModel,
)
from .temperature import FixedTemperature, LinearTemperature, TemperatureSchedule

LOGGER = logging.getLogger(__name__)

__all__ = [
    "load_config_file",
    "load_decision_request",
    "load_engine_config",
    "load_prompt_config",
]


def _format_validation_error(path: Path, exc: PydanticValidationError) -> str:
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part is not None)
        message = error.get("msg", "unknown error")
        if location:
            details.append(f"{location}: {message}")
        else:
            details.append(message)
    summary = "; ".join(details)
    return f"invalid decision config ({path}): {summary}"


def _load_yaml(path: Path) -> MutableMapping[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse YAML ({path}): {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, MutableMapping):
        raise ConfigError(f"config root must be a mapping: {path}")
    return data


def load_config_file(path: str | Path) -> DecisionConfigModel:
    """Read and validate a decision configuration file."""

    config_path = Path(path)
    data = _load_yaml(config_path)
    try:
        model = DecisionConfigModel.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError(_format_validation_error(config_path, exc)) from exc
    LOGGER.debug("loaded decision config %s (schema_version=%d)", config_path, model.schema_version)
    return model


def load_engine_config(path: str | Path) -> EngineConfig:
    engine = load_config_file(path).engine
    return EngineConfig(
        max_concurrency=engine.max_concurrency,
        max_retries=engine.max_retries,
        backoff=BackoffPolicy(
            rate_limit_sleep_s=engine.backoff.rate_limit_sleep_s,
            retry_sleep_s=engine.backoff.retry_sleep_s,
        ),
        call_timeout_s=engine.call_timeout_s,
        max_traces=engine.max_traces,
        stop_when_quorum_unreachable=engine.stop_when_quorum_unreachable,
    )


def load_prompt_config(path: str | Path) -> PromptConfig:
    prompt = load_config_file(path).prompt
    return PromptConfig(
        reasoning_steps=prompt.reasoning_steps,
        conclusion_sentences=prompt.conclusion_sentences,
    )


def _build_output(request: RequestConfigModel) -> OutputSpec:
    output = request.output
    if isinstance(output, BooleanOutputModel):
        return BooleanOutput()
    if isinstance(output, BoundedIntegerOutputModel):
        return BoundedIntegerOutput(output.low, output.high, output.tolerance)
    return EnumStringOutput(output.allowed_values, case_sensitive=output.case_sensitive)


def _build_schedule(temperature: TemperatureConfigModel) -> TemperatureSchedule:
    if temperature.schedule == "linear":
        return LinearTemperature(temperature.low, temperature.high)
    return FixedTemperature(temperature.value)


def load_decision_request(
    path: str | Path,
    *,
    instructions: str | None = None,
    context: str | None = None,
) -> DecisionRequest:
    """Build a :class:`DecisionRequest` from the ``request`` section of ``path``.

    ``instructions`` and ``context`` override the file's values.
    """

    config_path = Path(path)
    request_model = load_config_file(config_path).request
    if request_model is None:
        raise ConfigError(f"config has no 'request' section: {config_path}")
    resolved_instructions = instructions if instructions is not None else request_model.instructions
    if not resolved_instructions:
        raise ConfigError(f"request instructions are missing: {config_path}")
    request = DecisionRequest(
        instructions=resolved_instructions,
        output=_build_output(request_model),
        voting_rounds=request_model.voting_rounds,
        temperature_schedule=_build_schedule(request_model.temperature),
        confidence_threshold=request_model.confidence_threshold,
        time_budget_s=request_model.time_budget_s,
        allow_unresolved=request_model.allow_unresolved,
        context=context if context is not None else request_model.context,
    )
    try:
        validate_request(request)
    except ValidationError as exc:
        raise ConfigError(f"invalid decision request ({config_path}): {exc}") from exc
    return request
