"""Structured build and run events, written as NDJSON under ``logs/``."""

from calctree.logging.events import (
    CalcTreeEvent,
    EventLevel,
    EventType,
    emit,
    error_code_for,
    make_run_event,
    reset_sink,
    set_project_dir,
    truncate_context,
)
from calctree.logging.sink import EventSink

__all__ = [
    "CalcTreeEvent",
    "EventLevel",
    "EventSink",
    "EventType",
    "emit",
    "error_code_for",
    "make_run_event",
    "reset_sink",
    "set_project_dir",
    "truncate_context",
]
