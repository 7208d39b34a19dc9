"""Structured event helpers shared across the queue, worker and storage layers.

Every event is a single log record whose message reads
``[TYPE] message (key=value, ...)`` and whose ``extra`` carries the same data
as fields, so both humans and log shippers can consume it.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("vidlearn.events")

_MAX_VALUE_LENGTH = 200


class EventType(str, Enum):
    API = "API"
    DB_QUERY = "DB_QUERY"
    FILE_OP = "FILE_OP"
    PROCESS = "PROCESS"
    TASK_STATE = "TASK_STATE"


def _truncate(text: str) -> Optional[str]:
    text = text.strip()
    if not text:
        return None
    if len(text) <= _MAX_VALUE_LENGTH:
        return text
    return text[:_MAX_VALUE_LENGTH] + "…"


def sanitize_context_value(value: Any) -> Any:
    """Return a JSON-serialisable representation for *value*."""

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Enum):
        return sanitize_context_value(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return _truncate(str(value))
    if isinstance(value, dict):
        return normalize_context(value)
    if isinstance(value, (list, tuple, set)):
        return _truncate(" ".join(str(item) for item in value))
    return _truncate(str(value))


def normalize_context(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Sanitise *values*, dropping empty keys and values."""

    normalised: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        if not key:
            continue
        value = sanitize_context_value(raw_value)
        if value is None or value == "" or value == {}:
            continue
        normalised[str(key)] = value
    return normalised


def emit_structured_event(
    event_type: EventType | str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log one structured event of *event_type*."""

    label = event_type.value if isinstance(event_type, EventType) else str(event_type or "")
    text = str(message).strip()
    context_fields = normalize_context(context)
    payload_fields = normalize_context(payload)

    rendered = f"[{label}] {text}" if label else text
    details = {**context_fields, **payload_fields}
    if details:
        rendered += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"

    extra: Dict[str, Any] = {"event": text, "event_type": label}
    if context_fields:
        extra["event_context"] = context_fields
    if payload_fields:
        extra["event_payload"] = payload_fields
    if duration_ms is not None:
        extra["event_duration_ms"] = float(duration_ms)
    logger.log(level, rendered, extra=extra)


emit_db_event = functools.partial(emit_structured_event, EventType.DB_QUERY, level=logging.DEBUG)

emit_file_event = functools.partial(emit_structured_event, EventType.FILE_OP)

emit_process_event = functools.partial(emit_structured_event, EventType.PROCESS)


def emit_task_event(
    phase: str,
    message: str,
    *,
    context: Optional[Dict[str, Any]] = None,
    **kwargs: Any,
) -> None:
    """Emit a ``TASK_STATE`` event for a job entering *phase*."""

    merged_context = {"phase": phase, **(context or {})}
    emit_structured_event(EventType.TASK_STATE, message or phase, context=merged_context, **kwargs)


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "EventType",
    "emit_db_event",
    "emit_file_event",
    "emit_process_event",
    "emit_structured_event",
    "emit_task_event",
    "normalize_context",
    "sanitize_context_value",
]
