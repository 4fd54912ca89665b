"""Tests for the calctree structured event logging system."""

from __future__ import annotations

import json
from pathlib import Path

import pytest


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create a minimal project directory."""
    (tmp_path / "logs").mkdir()
    return tmp_path


@pytest.fixture
def sink(project_dir: Path):
    from calctree.logging.sink import EventSink

    return EventSink(project_dir)


@pytest.fixture(autouse=True)
def _detach_sink():
    yield
    from calctree.logging.events import reset_sink

    reset_sink()


# ---------------------------------------------------------------------------
# A) Event schema
# ---------------------------------------------------------------------------


class TestCalcTreeEvent:
    def test_event_defaults(self):
        from calctree.logging.events import CalcTreeEvent, EventLevel, EventType

        evt = CalcTreeEvent(
            level=EventLevel.info,
            event_type=EventType.build_started,
            message="hello",
        )
        assert evt.schema_version == 1
        assert evt.ts.endswith("Z")
        assert evt.level == "info"
        assert evt.event_type == "build_started"
        assert evt.context == {}
        assert evt.error_code is None

    def test_all_event_types_exist(self):
        from calctree.logging.events import EventType

        expected = {
            "build_started", "build_completed", "build_failed",
            "eval_started", "eval_completed", "eval_failed", "eval_timing",
        }
        assert {e.value for e in EventType} == expected

    def test_error_codes_match_exceptions(self):
        from calctree import errors
        from calctree.logging import events

        pairs = [
            (events.INVALID_NODE_KIND, errors.InvalidNodeKindError),
            (events.NODE_NOT_FOUND, errors.NodeNotFoundError),
            (events.INVALID_LITERAL, errors.InvalidLiteralError),
            (events.FORMULA_PARSE_ERROR, errors.FormulaDefinitionError),
            (events.CYCLE_DETECTED, errors.CycleError),
            (events.UNBOUND_VARIABLE, errors.UnboundVariableError),
            (events.INVALID_BINDING, errors.InvalidBindingError),
            (events.FORMULA_EVAL_ERROR, errors.FormulaEvaluationError),
            (events.UNSUPPORTED_OPERATION, errors.UnsupportedOperationError),
            (events.EMPTY_OUTPUT, errors.EmptyOutputError),
        ]
        for code, exc_type in pairs:
            assert exc_type.error_code == code

    def test_error_code_for(self):
        from calctree.errors import UnboundVariableError
        from calctree.logging.events import error_code_for

        assert error_code_for(UnboundVariableError(3, "x")) == "unbound_variable"
        assert error_code_for(RuntimeError("x")) is None

    def test_make_run_event(self):
        from calctree.logging.events import EventLevel, EventType, make_run_event

        evt = make_run_event(
            EventType.eval_failed, EventLevel.error, "boom",
            run_id="r1", root_id=4, error_code="empty_output", extra={"node_id": 2},
        )
        assert evt.context == {"run_id": "r1", "root_id": 4, "node_id": 2}
        assert evt.error_code == "empty_output"


# ---------------------------------------------------------------------------
# B) Truncation
# ---------------------------------------------------------------------------


class TestTruncation:
    def test_long_strings_truncated(self):
        from calctree.logging.events import truncate_context

        out = truncate_context({"formula": "x" * 300, "nested": {"err": "y" * 300}, "n": 5})
        assert out["formula"].endswith("...[truncated]")
        assert len(out["formula"]) == 256 + len("...[truncated]")
        assert out["nested"]["err"].endswith("...[truncated]")
        assert out["n"] == 5

    def test_short_strings_untouched(self):
        from calctree.logging.events import truncate_context

        assert truncate_context({"a": "short", "l": ["x"]}) == {"a": "short", "l": ["x"]}


# ---------------------------------------------------------------------------
# C) Filesystem NDJSON sink
# ---------------------------------------------------------------------------


class TestEventSink:
    def test_write_creates_global_log(self, sink, project_dir):
        from calctree.logging.events import CalcTreeEvent, EventLevel, EventType

        sink.write(CalcTreeEvent(level=EventLevel.info, event_type=EventType.eval_started, message="go"))

        lines = (project_dir / "logs" / "events.ndjson").read_text().strip().splitlines()
        assert len(lines) == 1
        parsed = json.loads(lines[0])
        assert parsed["event_type"] == "eval_started"
        assert parsed["message"] == "go"

    def test_run_log(self, sink, project_dir):
        from calctree.logging.events import CalcTreeEvent, EventLevel, EventType

        evt = CalcTreeEvent(level=EventLevel.info, event_type=EventType.eval_completed)
        sink.write(evt, run_id="abc123")
        assert len(sink.read_run_log("abc123")) == 1

    def test_unsafe_run_id_ignored(self, sink, project_dir):
        from calctree.logging.events import CalcTreeEvent, EventLevel, EventType

        sink.write(CalcTreeEvent(level=EventLevel.info, event_type=EventType.eval_completed), run_id="../x")
        assert list((project_dir / "logs" / "runs").iterdir()) == []
        assert sink.read_run_log("../x") == []

    def test_read_global_filters_and_order(self, sink):
        from calctree.logging.events import EventLevel, EventType, make_run_event

        sink.write(make_run_event(EventType.eval_started, EventLevel.info, "1", run_id="a"))
        sink.write(make_run_event(EventType.eval_failed, EventLevel.error, "2", run_id="a"))
        sink.write(make_run_event(EventType.eval_started, EventLevel.info, "3", run_id="b"))

        assert [e["message"] for e in sink.read_global()] == ["3", "2", "1"]
        assert [e["message"] for e in sink.read_global(level="error")] == ["2"]
        assert [e["message"] for e in sink.read_global(run_id="a")] == ["2", "1"]
        assert [e["message"] for e in sink.read_global(event_type="eval_started", limit=1)] == ["3"]

    def test_corrupt_lines_skipped(self, sink, project_dir):
        log = project_dir / "logs" / "events.ndjson"
        log.write_text('{"message": "ok"}\nnot json\n\n')
        assert sink.read_global() == [{"message": "ok"}]

    def test_tail_read_drops_partial_line(self, project_dir):
        from calctree.logging.sink import EventSink

        log = project_dir / "logs" / "events.ndjson"
        log.write_text("".join(json.dumps({"i": i}) + "\n" for i in range(100)))
        small = EventSink(project_dir, tail_bytes=50)
        events = small.read_global(limit=2000)
        assert events
        assert events[0] == {"i": 99}
        assert len(events) < 100


# ---------------------------------------------------------------------------
# D) Module-level emit
# ---------------------------------------------------------------------------


class TestEmit:
    def test_emit_without_sink_is_noop(self, project_dir):
        from calctree.logging.events import EventLevel, EventType, emit, make_run_event

        emit(make_run_event(EventType.eval_started, EventLevel.info, "nobody listening"))
        assert not (project_dir / "logs" / "events.ndjson").exists()

    def test_emit_after_set_project_dir(self, project_dir):
        from calctree.logging.events import EventLevel, EventType, emit, make_run_event, set_project_dir

        set_project_dir(project_dir)
        emit(make_run_event(EventType.eval_started, EventLevel.info, "started", run_id="r", root_id=1), run_id="r")
        emit(
            make_run_event(
                EventType.eval_failed, EventLevel.error, "failed",
                error_code="formula_eval_error", extra={"formula": "z" * 400},
            ),
        )

        lines = (project_dir / "logs" / "events.ndjson").read_text().splitlines()
        assert len(lines) == 2
        second = json.loads(lines[1])
        assert second["level"] == "error"
        assert second["error_code"] == "formula_eval_error"
        assert second["context"]["formula"].endswith("...[truncated]")
        assert len((project_dir / "logs" / "runs" / "r.ndjson").read_text().splitlines()) == 1

    def test_emit_never_raises(self, project_dir, monkeypatch, capsys):
        from calctree.logging import events

        class _Broken:
            def write(self, *a, **kw):
                raise OSError("disk full")

        monkeypatch.setattr(events, "_sink", _Broken())
        monkeypatch.setattr(events, "_warned", False)
        evt = events.make_run_event(events.EventType.eval_started, events.EventLevel.info, "x")
        events.emit(evt)
        events.emit(evt)
        assert capsys.readouterr().err.count("disk full") == 1
