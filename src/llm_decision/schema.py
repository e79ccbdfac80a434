"""Pydantic models validating decision configuration files."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "BackoffConfigModel",
    "BooleanOutputModel",
    "BoundedIntegerOutputModel",
    "DecisionConfigModel",
    "EngineConfigModel",
    "EnumStringOutputModel",
    "PromptConfigModel",
    "RequestConfigModel",
    "TemperatureConfigModel",
]


class BackoffConfigModel(BaseModel):
    """Sleep between retries of a failed generation call."""

    model_config = ConfigDict(extra="forbid")

    rate_limit_sleep_s: float = Field(default=0.05, ge=0.0)
    retry_sleep_s: float = Field(default=0.0, ge=0.0)


class EngineConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_concurrency: int = Field(default=4, ge=1)
    max_retries: int = Field(default=1, ge=0)
    call_timeout_s: float | None = Field(default=None, gt=0.0)
    max_traces: int = Field(default=3, ge=0)
    stop_when_quorum_unreachable: bool = True
    backoff: BackoffConfigModel = Field(default_factory=BackoffConfigModel)


class PromptConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reasoning_steps: int = Field(default=3, ge=0)
    conclusion_sentences: int = Field(default=1, ge=0)


class BooleanOutputModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["boolean"]


class BoundedIntegerOutputModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["bounded_integer"]
    low: int
    high: int
    tolerance: int = Field(default=0, ge=0)


class EnumStringOutputModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["enum_string"]
    allowed_values: list[str] = Field(min_length=1)
    case_sensitive: bool = False


OutputModel = Annotated[
    BooleanOutputModel | BoundedIntegerOutputModel | EnumStringOutputModel,
    Field(discriminator="type"),
]


class TemperatureConfigModel(BaseModel):
    """``fixed`` uses ``value``; ``linear`` spreads ``low``..``high``."""

    model_config = ConfigDict(extra="forbid")

    schedule: Literal["fixed", "linear"] = "fixed"
    value: float = Field(default=0.7, ge=0.0)
    low: float = Field(default=0.2, ge=0.0)
    high: float = Field(default=1.0, ge=0.0)


class RequestConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    instructions: str | None = None
    context: str | None = None
    output: OutputModel
    voting_rounds: int = Field(default=5, ge=1)
    temperature: TemperatureConfigModel = Field(default_factory=TemperatureConfigModel)
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    time_budget_s: float | None = Field(default=None, gt=0.0)
    allow_unresolved: bool = True


class DecisionConfigModel(BaseModel):
    """Root of a decision configuration file; every section is optional."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int = 1
    engine: EngineConfigModel = Field(default_factory=EngineConfigModel)
    prompt: PromptConfigModel = Field(default_factory=PromptConfigModel)
    request: RequestConfigModel | None = None
