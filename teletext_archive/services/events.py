"""Structured log events for archive and thumbnail activity.

Every event renders as ``[KIND] message (key=value, ...)`` and carries the
same details as ``debug_*`` record attributes, so file handlers and tests can
read them without parsing the message.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict, Mapping, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("teletext_archive.events")

FILE_EVENT = "FILE_OP"
THUMBNAIL_EVENT = "THUMBNAIL"
TASK_EVENT = "TASK_STATE"

_VALUE_LIMIT = 200


def _clip(text: str) -> Optional[str]:
    text = text.strip()
    if not text:
        return None
    if len(text) > _VALUE_LIMIT:
        return text[:_VALUE_LIMIT] + "…"
    return text


def sanitize_context_value(value: Any) -> Any:
    """Reduce *value* to a scalar, a short string or a nested mapping.

    Paths are logged in POSIX form and enums (batch modes, states) by value.
    Collections are joined into one line; long text is clipped.
    """

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, PurePath):
        return value.as_posix()
    if isinstance(value, Enum):
        return sanitize_context_value(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return normalize_context(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return _clip(", ".join(str(sanitize_context_value(item)) for item in value))
    return _clip(str(value))


def normalize_context(values: Optional[Mapping[Any, Any]]) -> Dict[str, Any]:
    """Sanitise every entry of *values*, dropping blank keys and empty values."""

    cleaned: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        if key is None or key == "":
            continue
        value = sanitize_context_value(raw_value)
        if value is None or (isinstance(value, (str, dict)) and not value):
            continue
        cleaned[str(key)] = value
    return cleaned


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    correlation: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log one event; correlation ids come first in the rendered details."""

    text = str(message).strip()
    sections = {
        "correlation": normalize_context(correlation),
        "context": normalize_context(context),
        "payload": normalize_context(payload),
    }
    details: Dict[str, Any] = {}
    for values in sections.values():
        details.update(values)
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 1)

    line = f"[{event_type}] {text}" if event_type else text
    if details:
        line += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"

    extra: Dict[str, Any] = {"debug_event": text, "debug_event_type": event_type or ""}
    extra.update({f"debug_{name}": values for name, values in sections.items() if values})
    if duration_ms is not None:
        extra["debug_duration_ms"] = float(duration_ms)
    logger.log(level, line, extra=extra)


def emit_file_event(operation: str, **options: Any) -> None:
    """File manager change such as ``FOLDER_CREATED`` or ``ITEM_MOVED``."""

    emit_structured_event(FILE_EVENT, operation, **options)


def emit_thumbnail_event(outcome: str, **options: Any) -> None:
    """Per-page outcome: ``THUMBNAIL_GENERATED`` or ``THUMBNAIL_ERROR``."""

    emit_structured_event(THUMBNAIL_EVENT, outcome, **options)


def emit_task_event(phase: str, message: str, *, payload: Optional[Dict[str, Any]] = None, **options: Any) -> None:
    """Batch lifecycle change; *phase* leads the payload."""

    emit_structured_event(TASK_EVENT, message or phase, payload={"phase": phase, **(payload or {})}, **options)


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "FILE_EVENT",
    "TASK_EVENT",
    "THUMBNAIL_EVENT",
    "emit_file_event",
    "emit_structured_event",
    "emit_task_event",
    "emit_thumbnail_event",
    "normalize_context",
    "sanitize_context_value",
]
