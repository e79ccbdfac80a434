from .aggregation import Aggregation as Aggregation, Aggregator as Aggregator
from .client import GenerationClient as GenerationClient
from .config import BackoffPolicy as BackoffPolicy, EngineConfig as EngineConfig
from .decoder import AttemptDecoder as AttemptDecoder
from .engine import DecisionEngine as DecisionEngine
from .errors import (
    AuthError as AuthError,
    ConfigError as ConfigError,
    DecisionError as DecisionError,
    FatalError as FatalError,
    RateLimitError as RateLimitError,
    RetryableError as RetryableError,
    TimeoutError as TimeoutError,
    TransportError as TransportError,
    UnresolvedReason as UnresolvedReason,
    ValidationError as ValidationError,
)
from .loader import (
    load_decision_request as load_decision_request,
    load_engine_config as load_engine_config,
)
from .mock import MockGenerationClient as MockGenerationClient
from .models import (
    DecisionRequest as DecisionRequest,
    DecisionResult as DecisionResult,
    DecisionState as DecisionState,
    DecisionStatus as DecisionStatus,
    ReasoningAttempt as ReasoningAttempt,
    VoteDistribution as VoteDistribution,
)
from .output_types import (
    BooleanOutput as BooleanOutput,
    BoundedIntegerOutput as BoundedIntegerOutput,
    EnumStringOutput as EnumStringOutput,
    UNKNOWN_SENTINEL as UNKNOWN_SENTINEL,
)
from .prompts import PromptComposer as PromptComposer, PromptConfig as PromptConfig
from .temperature import (
    FixedTemperature as FixedTemperature,
    LinearTemperature as LinearTemperature,
)

__version__ = "0.1.0"
