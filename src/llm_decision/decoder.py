"""Decode raw generated text into typed values.

Grammar shared with :mod:`llm_decision.prompts`:

* the *final line* is the last non-blank line of the reply; everything before
  it is kept as the reasoning trace;
* a final line equal to ``CANNOT_DETERMINE`` (case-insensitive) means the
  model declined to answer and decodes to :class:`~llm_decision.models.Unknown`;
* booleans are read from the final line, integers from the last standalone
  integer literal anywhere in the reply, enum strings from the final line
  as a whole.
"""
from __future__ import annotations

import re
from typing import Any

from .errors import ParseError
from .models import Decoded, DecodeOutcome, ParseFailure, ParseRejected, Unknown
from .output_types import (
    BooleanOutput,
    BoundedIntegerOutput,
    EnumStringOutput,
    OutputSpec,
    UNKNOWN_SENTINEL,
)

_AFFIRMATIVE_RE = re.compile(r"\b(?:yes|true)\b", re.IGNORECASE)
_NEGATIVE_RE = re.compile(r"\b(?:no|false)\b", re.IGNORECASE)
_INTEGER_RE = re.compile(r"(?<![\w.])([-+]?\d+)(?!\w|\.\d)")


def split_final_line(text: str) -> tuple[str, str]:
    """Return ``(reasoning_trace, final_line)`` for ``text``."""

    lines = text.splitlines()
    for position in range(len(lines) - 1, -1, -1):
        line = lines[position].strip()
        if line:
            return "\n".join(lines[:position]).strip(), line
    return "", ""


class AttemptDecoder:
    """Parse one reply against an :data:`~llm_decision.output_types.OutputSpec`."""

    def decode(self, raw_text: str, spec: OutputSpec) -> DecodeOutcome:
        """Return the decoded outcome; grammar violations become ``ParseRejected``."""

        try:
            return self.parse(raw_text, spec)
        except ParseError as exc:
            return ParseRejected(exc.failure, exc.detail)

    def parse(self, raw_text: str, spec: OutputSpec) -> Decoded | Unknown:
        trace, final_line = split_final_line(raw_text or "")
        if not final_line:
            raise ParseError(ParseFailure.EMPTY_RESPONSE, "reply is empty")
        if final_line.casefold() == UNKNOWN_SENTINEL.casefold():
            return Unknown(trace)

        value: Any
        if isinstance(spec, BooleanOutput):
            value = self._parse_boolean(final_line)
        elif isinstance(spec, BoundedIntegerOutput):
            value = self._parse_integer(raw_text, spec)
        elif isinstance(spec, EnumStringOutput):
            value = self._parse_enum(final_line, spec)
        else:
            raise TypeError(f"unsupported output spec: {type(spec).__name__}")
        return Decoded(value, trace)

    def _parse_boolean(self, final_line: str) -> bool:
        affirmative = _AFFIRMATIVE_RE.search(final_line) is not None
        negative = _NEGATIVE_RE.search(final_line) is not None
        if affirmative and not negative:
            return True
        if negative and not affirmative:
            return False
        signal = "both" if affirmative else "neither"
        raise ParseError(
            ParseFailure.AMBIGUOUS_BOOLEAN,
            f"{signal} affirmative and negative signals in {final_line!r}",
        )

    def _parse_integer(self, raw_text: str, spec: BoundedIntegerOutput) -> int:
        matches = _INTEGER_RE.findall(raw_text)
        if not matches:
            raise ParseError(ParseFailure.NO_INTEGER_FOUND, "no standalone integer literal")
        literal = matches[-1]
        try:
            value = int(literal)
        except ValueError as exc:
            # int() refuses literals past sys.get_int_max_str_digits()
            raise ParseError(
                ParseFailure.OUT_OF_BOUNDS,
                f"integer literal of {len(literal.lstrip('+-'))} digits outside "
                f"[{spec.low}, {spec.high}]",
            ) from exc
        if not spec.contains(value):
            raise ParseError(
                ParseFailure.OUT_OF_BOUNDS,
                f"{value} outside [{spec.low}, {spec.high}]",
            )
        return value

    def _parse_enum(self, final_line: str, spec: EnumStringOutput) -> str:
        matched = spec.match(final_line)
        if matched is None:
            raise ParseError(
                ParseFailure.NOT_IN_ALLOWED_SET,
                f"{final_line!r} is not one of {list(spec.allowed_values)!r}",
            )
        return matched


def decode(raw_text: str, spec: OutputSpec) -> DecodeOutcome:
    return AttemptDecoder().decode(raw_text, spec)


__all__ = ["AttemptDecoder", "decode", "split_final_line"]
