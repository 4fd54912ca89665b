"""Build and run events: schema, error codes and the project sink.

A ``Session`` points the sink at its project with ``set_project_dir`` and
reports each phase through ``emit``.  Timestamps are UTC ISO-8601 with a
``Z`` suffix.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Tree construction
    build_started = "build_started"
    build_completed = "build_completed"
    build_failed = "build_failed"

    # Evaluation
    eval_started = "eval_started"
    eval_completed = "eval_completed"
    eval_failed = "eval_failed"

    # Timings
    eval_timing = "eval_timing"


# ---------------------------------------------------------------------------
# Error codes (mirrors ``CalcTreeError.error_code``)
# ---------------------------------------------------------------------------

INVALID_NODE_KIND = "invalid_node_kind"
NODE_NOT_FOUND = "node_not_found"
INVALID_LITERAL = "invalid_literal"
FORMULA_PARSE_ERROR = "formula_parse_error"
CYCLE_DETECTED = "cycle_detected"
UNBOUND_VARIABLE = "unbound_variable"
INVALID_BINDING = "invalid_binding"
FORMULA_EVAL_ERROR = "formula_eval_error"
UNSUPPORTED_OPERATION = "unsupported_operation"
EMPTY_OUTPUT = "empty_output"


def error_code_for(exc: BaseException) -> str | None:
    """Return the event error code for an exception, if it carries one."""
    return getattr(exc, "error_code", None)


# ---------------------------------------------------------------------------
# Context truncation
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 256


def truncate_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* with long strings truncated.

    Formula text and error messages can be arbitrarily long; values over
    256 characters are cut and marked ``...[truncated]``.
    """
    out: dict[str, Any] = {}
    for k, v in context.items():
        out[k] = _truncate_value(v)
    return out


def _truncate_value(v: Any) -> Any:
    if isinstance(v, dict):
        return truncate_context(v)
    if isinstance(v, list):
        return [_truncate_value(item) for item in v]
    if isinstance(v, str) and len(v) > _MAX_VALUE_LEN:
        return v[:_MAX_VALUE_LEN] + "...[truncated]"
    return v


# ---------------------------------------------------------------------------
# Helper constructors for consistent attribution
# ---------------------------------------------------------------------------


def make_run_event(
    event_type: EventType,
    level: EventLevel,
    message: str,
    *,
    run_id: str | None = None,
    root_id: int | None = None,
    error_code: str | None = None,
    extra: dict[str, Any] | None = None,
) -> CalcTreeEvent:
    """Build an event with run attribution context."""
    ctx: dict[str, Any] = {}
    if run_id is not None:
        ctx["run_id"] = run_id
    if root_id is not None:
        ctx["root_id"] = root_id
    if extra:
        ctx.update(extra)
    return CalcTreeEvent(
        level=level,
        event_type=event_type,
        message=message,
        context=ctx,
        error_code=error_code,
    )


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class CalcTreeEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Project sink
# ---------------------------------------------------------------------------

# Set by ``set_project_dir``; events are discarded while it is None.
_sink: Any = None
_warned = False


def set_project_dir(project_dir: Path) -> None:
    """Send events to *project_dir*'s logs, honouring its logging config."""
    global _sink
    from calctree.logging.sink import EventSink
    from calctree.project import load_project_config

    try:
        cfg = load_project_config(project_dir)
    except (OSError, ValueError):
        cfg = {}
    _sink = EventSink(
        project_dir,
        fsync=bool(cfg.get("logging_fsync", False)),
        tail_bytes=cfg.get("logging_tail_bytes"),
    )


def reset_sink() -> None:
    """Stop writing events."""
    global _sink
    _sink = None


def emit(event: CalcTreeEvent, *, run_id: str | None = None) -> None:
    """Write *event* with truncated context.

    **Never raises.**  A failing write is reported once on stderr so a
    broken log directory cannot fail an evaluation.
    """
    global _warned
    if _sink is None:
        return
    try:
        _sink.write(
            event.model_copy(update={"context": truncate_context(event.context)}),
            run_id=run_id,
        )
    except Exception as exc:
        if not _warned:
            _warned = True
            print(f"[calctree] event logging failed: {exc}", file=sys.stderr)
