"""NDJSON event files for a project.

Every event goes to ``logs/events.ndjson``; events that belong to a run
are also written to ``logs/runs/<run_id>.ndjson``.  Appends take an
exclusive ``flock`` and reads a shared one, so concurrent sessions on one
project never interleave partial lines.
"""

from __future__ import annotations

import json
import os
import re
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Iterator

from calctree.logging.events import CalcTreeEvent

try:
    import fcntl
except ImportError:  # Windows: no advisory locks
    fcntl = None  # type: ignore[assignment]

_RUN_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

_DEFAULT_TAIL_BYTES = 2 * 1024 * 1024
_MAX_LIMIT = 2000


@contextmanager
def _locked(f: IO[bytes], exclusive: bool) -> Iterator[None]:
    if fcntl is None:
        yield
        return
    fcntl.flock(f.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
    try:
        yield
    finally:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


class EventSink:
    """Appends events to a project's logs and reads them back for ``calctree logs``."""

    def __init__(self, project_dir: Path, *, fsync: bool = False, tail_bytes: int | None = None) -> None:
        self.logs_dir = project_dir / "logs"
        self.runs_dir = self.logs_dir / "runs"
        self._fsync = fsync
        self._tail_bytes = tail_bytes or _DEFAULT_TAIL_BYTES
        self.runs_dir.mkdir(parents=True, exist_ok=True)

    def write(self, event: CalcTreeEvent, *, run_id: str | None = None) -> None:
        line = (json.dumps(event.model_dump(mode="json"), sort_keys=True, default=str) + "\n").encode("utf-8")
        self._append(self.logs_dir / "events.ndjson", line)
        # Ids that could name a path outside runs/ only reach the global log
        if run_id and _RUN_ID_RE.match(run_id):
            self._append(self.runs_dir / f"{run_id}.ndjson", line)

    def read_global(
        self,
        *,
        level: str | None = None,
        event_type: str | None = None,
        run_id: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        """Most recent events first, optionally filtered."""
        events = [
            e for e in self._read(self.logs_dir / "events.ndjson")
            if (level is None or e.get("level") == level)
            and (event_type is None or e.get("event_type") == event_type)
            and (run_id is None or e.get("context", {}).get("run_id") == run_id)
        ]
        events.reverse()
        return events[:min(limit, _MAX_LIMIT)]

    def read_run_log(self, run_id: str) -> list[dict[str, Any]]:
        """All events of one run, oldest first."""
        if not _RUN_ID_RE.match(run_id):
            return []
        return self._read(self.runs_dir / f"{run_id}.ndjson")

    def _append(self, path: Path, line: bytes) -> None:
        with open(path, "ab") as f, _locked(f, exclusive=True):
            f.write(line)
            if self._fsync:
                f.flush()
                os.fsync(f.fileno())

    def _read(self, path: Path) -> list[dict[str, Any]]:
        """Parse the last ``tail_bytes`` of *path*, skipping bad lines."""
        if not path.exists():
            return []
        with open(path, "rb") as f, _locked(f, exclusive=False):
            size = f.seek(0, os.SEEK_END)
            start = max(0, size - self._tail_bytes)
            f.seek(start)
            data = f.read()
        if start:
            # The first line is probably cut
            data = data[data.find(b"\n") + 1:]

        events: list[dict[str, Any]] = []
        for raw in data.decode("utf-8", errors="replace").splitlines():
            if not raw.strip():
                continue
            try:
                events.append(json.loads(raw))
            except json.JSONDecodeError:
                continue
        return events
