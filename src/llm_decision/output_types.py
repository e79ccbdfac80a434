"""Closed set of typed output shapes a decision can produce."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, TypeAlias

from .errors import ValidationError

# Reply line that marks an attempt as "cannot be determined".
UNKNOWN_SENTINEL = "CANNOT_DETERMINE"


class OutputKind(str, Enum):
    BOOLEAN = "boolean"
    BOUNDED_INTEGER = "bounded_integer"
    ENUM_STRING = "enum_string"


@dataclass(frozen=True, slots=True)
class BooleanOutput:
    kind: ClassVar[OutputKind] = OutputKind.BOOLEAN


@dataclass(frozen=True, slots=True)
class BoundedIntegerOutput:
    low: int
    high: int
    tolerance: int = 0

    kind: ClassVar[OutputKind] = OutputKind.BOUNDED_INTEGER

    def contains(self, value: int) -> bool:
        return self.low <= value <= self.high


@dataclass(frozen=True, slots=True, init=False)
class EnumStringOutput:
    allowed_values: tuple[str, ...]
    case_sensitive: bool = False
    _lookup: dict[str, str] = field(init=False, repr=False, compare=False, hash=False)

    kind: ClassVar[OutputKind] = OutputKind.ENUM_STRING

    def __init__(self, allowed_values: Iterable[str], case_sensitive: bool = False) -> None:
        if isinstance(allowed_values, str):
            values: tuple[str, ...] = (allowed_values,)
        elif isinstance(allowed_values, (set, frozenset)):
            values = tuple(sorted(allowed_values))
        else:
            values = tuple(allowed_values)
        object.__setattr__(self, "allowed_values", values)
        object.__setattr__(self, "case_sensitive", bool(case_sensitive))
        lookup: dict[str, str] = {}
        for value in values:
            if isinstance(value, str):
                lookup.setdefault(self.normalize_text(value), value)
        object.__setattr__(self, "_lookup", lookup)

    def normalize_text(self, text: str) -> str:
        stripped = text.strip()
        return stripped if self.case_sensitive else stripped.casefold()

    def match(self, text: str) -> str | None:
        """Return the allowed value ``text`` names exactly, if any."""

        return self._lookup.get(self.normalize_text(text))


OutputSpec: TypeAlias = BooleanOutput | BoundedIntegerOutput | EnumStringOutput


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_output_spec(spec: Any) -> OutputSpec:
    """Check the invariants of ``spec`` and return it unchanged."""

    if isinstance(spec, BooleanOutput):
        return spec
    if isinstance(spec, BoundedIntegerOutput):
        if not _is_int(spec.low) or not _is_int(spec.high):
            raise ValidationError("integer bounds must be integers")
        if spec.low > spec.high:
            raise ValidationError(
                f"integer bounds are inverted: low={spec.low} > high={spec.high}"
            )
        if not _is_int(spec.tolerance) or spec.tolerance < 0:
            raise ValidationError("integer tolerance must be a non-negative integer")
        return spec
    if isinstance(spec, EnumStringOutput):
        if not spec.allowed_values:
            raise ValidationError("allowed_values must not be empty")
        seen: set[str] = set()
        for value in spec.allowed_values:
            if not isinstance(value, str) or not value.strip():
                raise ValidationError("allowed_values entries must be non-empty strings")
            normalized = spec.normalize_text(value)
            if normalized in seen:
                raise ValidationError(f"allowed value {value!r} is duplicated after normalization")
            seen.add(normalized)
            if value.strip().casefold() == UNKNOWN_SENTINEL.casefold():
                raise ValidationError(
                    f"allowed value {value!r} collides with the {UNKNOWN_SENTINEL} sentinel"
                )
        return spec
    raise ValidationError(f"unsupported output spec: {type(spec).__name__}")


def value_sort_key(value: Any) -> tuple[int, Any]:
    """Stable ordering key for decoded values of any supported kind."""

    if isinstance(value, bool):
        return 0, int(value)
    if isinstance(value, int):
        return 1, value
    return 2, str(value)


__all__ = [
    "BooleanOutput",
    "BoundedIntegerOutput",
    "EnumStringOutput",
    "OutputKind",
    "OutputSpec",
    "UNKNOWN_SENTINEL",
    "validate_output_spec",
    "value_sort_key",
]
