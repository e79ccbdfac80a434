"""Structured decision events and the sinks that record them.

A decision emits four kinds of event, each a flat JSON-serialisable mapping:

``state``
    ``decision_id``, ``from_state``, ``to_state`` for every lifecycle step.
``attempt``
    one per settled attempt: ``attempt_index``, ``temperature``, ``status``,
    ``detail``, ``tries``, ``latency_ms`` and the decoded ``value``, the
    ``parse_failure`` or the ``error_type`` where one applies.
``retry``
    a transport failure about to be retried, with the backoff delay.
``decision``
    the final status, value, confidence and vote counts.

Sinks never influence a decision: :func:`safe_emit` logs their failures.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
import json
import logging
from pathlib import Path
import sys
from threading import Lock
from typing import Any, Protocol, TextIO

PathLike = str | Path

LOGGER = logging.getLogger(__name__)

STATE_EVENT = "state"
ATTEMPT_EVENT = "attempt"
RETRY_EVENT = "retry"
DECISION_EVENT = "decision"
EVENT_TYPES = (STATE_EVENT, ATTEMPT_EVENT, RETRY_EVENT, DECISION_EVENT)

_RESOLVED_STATUSES = frozenset({"resolved", "low_confidence_resolved"})


class EventLogger(Protocol):
    """Anything that accepts decision events."""

    def emit(self, event_type: str, record: Mapping[str, Any]) -> None:
        """Record one event of ``event_type``."""


def _encode(event_type: str, record: Mapping[str, Any]) -> str:
    # "event" is always the first key.
    payload = {"event": event_type, **record}
    return json.dumps(payload, ensure_ascii=False, default=str)


def _check_events(events: Iterable[str] | None) -> frozenset[str] | None:
    if events is None:
        return None
    selected = frozenset(events)
    unknown = selected.difference(EVENT_TYPES)
    if unknown:
        raise ValueError(f"unknown event types: {sorted(unknown)!r}")
    return selected


class JsonlEventSink:
    """Append each event as one JSON line to ``path``."""

    def __init__(self, path: PathLike) -> None:
        self._path = Path(path)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, event_type: str, record: Mapping[str, Any]) -> None:
        line = _encode(event_type, record)
        parent = self._path.parent
        if parent != Path(""):
            parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")


class StreamEventSink:
    """Write JSON lines to a text stream, optionally only some event types.

    ``StreamEventSink(events=["decision"])`` prints one line per decision
    and drops the per-attempt chatter.
    """

    def __init__(
        self, stream: TextIO | None = None, *, events: Iterable[str] | None = None
    ) -> None:
        self._stream = stream or sys.stdout
        self._events = _check_events(events)
        self._lock = Lock()

    def emit(self, event_type: str, record: Mapping[str, Any]) -> None:
        if self._events is not None and event_type not in self._events:
            return
        line = _encode(event_type, record)
        with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()


class LoggingEventSink:
    """Forward events to a :mod:`logging` logger.

    Decisions that did not resolve are logged at WARNING, other decisions at
    INFO, and the per-attempt events at DEBUG.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("llm_decision.events")

    def emit(self, event_type: str, record: Mapping[str, Any]) -> None:
        level = logging.DEBUG
        if event_type == DECISION_EVENT:
            status = record.get("status")
            level = logging.INFO if status in _RESOLVED_STATUSES else logging.WARNING
        if self._logger.isEnabledFor(level):
            self._logger.log(level, "%s %s", event_type, _encode(event_type, record))


class FanOutEventSink:
    """Send every event to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: Iterable[EventLogger] | None = None) -> None:
        self._sinks: list[EventLogger] = list(sinks or ())
        self._lock = Lock()

    def add(self, sink: EventLogger) -> None:
        with self._lock:
            self._sinks.append(sink)

    def emit(self, event_type: str, record: Mapping[str, Any]) -> None:
        with self._lock:
            sinks = tuple(self._sinks)

        for sink in sinks:
            safe_emit(sink, event_type, record)


def safe_emit(
    event_logger: EventLogger | None, event_type: str, record: Mapping[str, Any]
) -> None:
    """Emit ``record`` and log, rather than raise, any sink failure."""

    if event_logger is None:
        return
    try:
        event_logger.emit(event_type, record)
    except Exception:  # noqa: BLE001 - sinks never affect decisions
        LOGGER.warning("event sink %r failed for %s", event_logger, event_type, exc_info=True)


__all__ = [
    "ATTEMPT_EVENT",
    "DECISION_EVENT",
    "EVENT_TYPES",
    "EventLogger",
    "FanOutEventSink",
    "JsonlEventSink",
    "LoggingEventSink",
    "RETRY_EVENT",
    "STATE_EVENT",
    "StreamEventSink",
    "safe_emit",
]
