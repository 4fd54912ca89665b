"""Session: load definitions for a root, build the tree, evaluate it.

A session is bound to a project directory (``calctree.yaml`` plus the
definitions database) and emits structured events for each run.
"""

from __future__ import annotations

import time
import uuid
from pathlib import Path
from typing import Any, Mapping

from calctree.evaluator import evaluate
from calctree.formulas.engine import ExpressionEngine
from calctree.nodes import NodeOutput
from calctree.project import database_path, load_project_config
from calctree.store import DefinitionStore
from calctree.tree import Tree, build_tree


class SessionResult:
    """Container for the outcome of one run.

    Attributes:
        run_id: Identifier used in the event log.
        root_id: The evaluated node.
        output: The root's output.
        node_count: Nodes in the built tree.
        timings_ms: Phase durations in milliseconds.
    """

    def __init__(
        self,
        run_id: str,
        root_id: int,
        output: NodeOutput,
        node_count: int,
        timings_ms: dict[str, float],
    ) -> None:
        self.run_id = run_id
        self.root_id = root_id
        self.output = output
        self.node_count = node_count
        self.timings_ms = timings_ms


class Session:
    """Evaluates roots stored in a project's definitions database.

    Usage::

        session = Session(Path("my_project"))
        result = session.run(3, variables={"a": 2.0})
        print(result.output.value)
    """

    def __init__(self, project_dir: Path, engine: ExpressionEngine | None = None) -> None:
        """Initialize a Session.

        Args:
            project_dir: Project root containing ``calctree.yaml``.
            engine: Expression engine override (defaults to the lark engine).

        Raises:
            FileNotFoundError: If the definitions database does not exist.
        """
        self.project_dir = project_dir.resolve()
        self.config = load_project_config(self.project_dir)
        self.db_path = database_path(self.project_dir, self.config)
        if not self.db_path.exists():
            raise FileNotFoundError(f"No definitions database at {self.db_path}")
        self.engine = engine

    def load_tree(self, root_id: int) -> Tree:
        """Fetch the ancestor subgraph of *root_id* and build it."""
        with DefinitionStore(self.db_path) as store:
            nodes, edges = store.definitions_for(root_id)
        return build_tree(
            nodes,
            edges,
            engine=self.engine,
            check_cycles=bool(self.config.get("check_cycles", True)),
        )

    def run(
        self,
        root_id: int,
        bindings: Mapping[int, Any] | None = None,
        variables: Mapping[str, Any] | None = None,
    ) -> SessionResult:
        """Build and evaluate the tree rooted at *root_id*.

        Args:
            root_id: Node to evaluate.
            bindings: Variable values keyed by node id.
            variables: Variable values keyed by variable name; merged over
                *bindings*.

        Returns:
            A SessionResult with the root's output.
        """
        from calctree.logging.events import (
            EventLevel,
            EventType,
            emit,
            error_code_for,
            make_run_event,
            set_project_dir,
        )

        set_project_dir(self.project_dir)

        run_id = uuid.uuid4().hex[:16]
        timings_ms: dict[str, float] = {}

        emit(
            make_run_event(EventType.build_started, EventLevel.info, "Tree build started",
                           run_id=run_id, root_id=root_id),
            run_id=run_id,
        )
        t0 = time.monotonic()
        try:
            tree = self.load_tree(root_id)
        except Exception as exc:
            emit(
                make_run_event(
                    EventType.build_failed,
                    EventLevel.error,
                    f"Tree build failed: {exc}",
                    run_id=run_id,
                    root_id=root_id,
                    error_code=error_code_for(exc),
                    extra={"error": str(exc)},
                ),
                run_id=run_id,
            )
            raise
        timings_ms["build"] = round((time.monotonic() - t0) * 1000, 2)

        emit(
            make_run_event(
                EventType.build_completed,
                EventLevel.info,
                f"Tree built with {len(tree)} nodes",
                run_id=run_id,
                root_id=root_id,
                extra={"node_count": len(tree), "duplicate_ids": list(tree.duplicate_ids)},
            ),
            run_id=run_id,
        )

        emit(
            make_run_event(EventType.eval_started, EventLevel.info, "Evaluation started",
                           run_id=run_id, root_id=root_id),
            run_id=run_id,
        )
        t0 = time.monotonic()
        try:
            merged: dict[int, Any] = dict(bindings or {})
            if variables:
                merged.update(tree.bindings_by_name(variables))
            output = evaluate(
                tree,
                root_id,
                merged,
                engine=self.engine,
                memoize=bool(self.config.get("memoize", True)),
            )
        except Exception as exc:
            emit(
                make_run_event(
                    EventType.eval_failed,
                    EventLevel.error,
                    f"Evaluation failed: {exc}",
                    run_id=run_id,
                    root_id=root_id,
                    error_code=error_code_for(exc),
                    extra={"error": str(exc), "node_id": getattr(exc, "node_id", None)},
                ),
                run_id=run_id,
            )
            raise
        timings_ms["evaluate"] = round((time.monotonic() - t0) * 1000, 2)

        emit(
            make_run_event(
                EventType.eval_timing,
                EventLevel.info,
                f"Run timings: {timings_ms}",
                run_id=run_id,
                root_id=root_id,
                extra={"timings_ms": timings_ms},
            ),
            run_id=run_id,
        )
        emit(
            make_run_event(
                EventType.eval_completed,
                EventLevel.info,
                f"Evaluation completed: {len(output)} value(s)",
                run_id=run_id,
                root_id=root_id,
                extra={"output": output.as_list()},
            ),
            run_id=run_id,
        )

        return SessionResult(
            run_id=run_id,
            root_id=root_id,
            output=output,
            node_count=len(tree),
            timings_ms=timings_ms,
        )
