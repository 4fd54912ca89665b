"""Depth-first evaluator with ragged broadcasting.

Each node's inputs are evaluated first and normalized to sequences.  A
formula node is then evaluated once per position up to the longest
input; shorter inputs hold their last value for the remaining positions.

Results are memoized per evaluation call so a node feeding several
consumers is computed once.  The tree itself is never modified.
"""

from __future__ import annotations

import math
from numbers import Real
from typing import Any, Iterable, Mapping, Sequence

from calctree.errors import (
    CycleError,
    EmptyOutputError,
    FormulaEvaluationError,
    InputIndexError,
    InvalidBindingError,
    UnboundVariableError,
    UnsupportedOperationError,
)
from calctree.formulas.engine import ExpressionEngine, default_engine
from calctree.formulas.errors import FormulaError
from calctree.nodes import (
    Constant,
    ConstantSequence,
    ExternalQuery,
    Formula,
    Node,
    NodeOutput,
    Variable,
)
from calctree.tree import Tree


def broadcast_length(lengths: Iterable[int]) -> int:
    """Number of output positions for inputs of the given lengths (0 if none)."""
    return max(lengths, default=0)


def ragged_value(values: Sequence[float], position: int) -> float:
    """Value of *values* at *position*, holding the last element past the end."""
    if not values:
        raise InputIndexError("Input produced an empty value sequence")
    return values[min(position, len(values) - 1)]


class Evaluator:
    """Evaluates nodes of one tree against one set of variable bindings.

    Usage::

        ev = Evaluator(tree, {0: 3.0})
        out = ev.evaluate(2)

    Parameters
    ----------
    tree : Tree
        The built tree.  Only read.
    bindings : Mapping[int, Any] | None
        Values for Variable nodes keyed by node id.  A value is a number or
        a sequence of numbers.
    engine : ExpressionEngine | None
        Engine that evaluates parsed formula expressions.  Must be the
        engine that parsed them.
    memoize : bool
        Cache each node's output for the lifetime of this evaluator.
    """

    def __init__(
        self,
        tree: Tree,
        bindings: Mapping[int, Any] | None = None,
        engine: ExpressionEngine | None = None,
        memoize: bool = True,
    ) -> None:
        self._tree = tree
        self._bindings = bindings or {}
        self._engine = engine or default_engine()
        self._memoize = memoize
        self._cache: dict[int, NodeOutput] = {}
        self._in_progress: set[int] = set()
        self._eval_stack: list[int] = []

    def evaluate(self, node_id: int) -> NodeOutput:
        """Evaluate a node and everything it depends on.

        Inputs are walked post-order on an explicit stack, so chain depth
        is not limited by the interpreter's recursion limit.

        Raises:
            NodeNotFoundError: If *node_id* is not in the tree.
            UnboundVariableError: A reachable Variable node has no binding.
            InvalidBindingError: A binding is not numeric.
            FormulaEvaluationError: The engine failed on a formula node.
            UnsupportedOperationError: An external query node was reached.
            EmptyOutputError: A node produced no values.
            CycleError: The tree was built without cycle checking and
                contains a cycle.
        """
        if node_id in self._cache:
            return self._cache[node_id]

        # One frame per node on the current path: the node and the outputs
        # of its inputs evaluated so far
        frames: list[tuple[Node, list[NodeOutput]]] = []
        base = len(self._eval_stack)
        try:
            self._push(node_id, frames)
            while True:
                node, done = frames[-1]
                # Only formulas read their inputs
                if isinstance(node.kind, Formula) and len(done) < len(node.inputs):
                    input_id = node.inputs[len(done)]
                    if input_id in self._cache:
                        done.append(self._cache[input_id])
                    else:
                        self._push(input_id, frames)
                    continue

                result = self._compute(node, done)
                frames.pop()
                self._in_progress.discard(node.id)
                self._eval_stack.pop()
                if self._memoize:
                    self._cache[node.id] = result
                if not frames:
                    return result
                frames[-1][1].append(result)
        finally:
            for pending in self._eval_stack[base:]:
                self._in_progress.discard(pending)
            del self._eval_stack[base:]

    def _push(self, node_id: int, frames: list[tuple[Node, list[NodeOutput]]]) -> None:
        if node_id in self._in_progress:
            cycle_start = self._eval_stack.index(node_id)
            raise CycleError(self._eval_stack[cycle_start:] + [node_id])
        node = self._tree[node_id]
        self._in_progress.add(node_id)
        self._eval_stack.append(node_id)
        frames.append((node, []))

    def _compute(self, node: Node, inputs: list[NodeOutput]) -> NodeOutput:
        kind = node.kind

        if isinstance(kind, Variable):
            if node.id not in self._bindings:
                raise UnboundVariableError(node.id, kind.name)
            return NodeOutput.collect(
                normalize_binding(node.id, self._bindings[node.id]), node.id
            )

        if isinstance(kind, ExternalQuery):
            raise UnsupportedOperationError(node.id, "external query")

        if isinstance(kind, Constant):
            return NodeOutput.scalar(kind.value)

        if isinstance(kind, ConstantSequence):
            return NodeOutput.collect(kind.values, node.id)

        if isinstance(kind, Formula):
            return self._compute_formula(node, kind, inputs)

        raise TypeError(f"Unhandled node kind: {type(kind).__name__}")

    def _compute_formula(
        self, node: Node, formula: Formula, inputs: list[NodeOutput]
    ) -> NodeOutput:
        if len(inputs) != len(node.inputs):
            raise InputIndexError(
                f"Node {node.id} has {len(node.inputs)} inputs but {len(inputs)} outputs",
                node.id,
            )

        # Declared variable names, and the distinct nodes claiming each
        owners: dict[str, set[int]] = {}
        for input_id in node.inputs:
            input_kind = self._tree[input_id].kind
            if isinstance(input_kind, Variable):
                owners.setdefault(input_kind.name, set()).add(input_id)
        synthetic = {self._tree[input_id].identifier for input_id in node.inputs}

        names: list[list[str]] = []
        for input_id in node.inputs:
            input_node = self._tree[input_id]
            aliases = [input_node.identifier]
            if isinstance(input_node.kind, Variable):
                alias = input_node.kind.name
                # Never shadow a synthetic identifier; drop names shared by
                # several variables
                if alias not in synthetic and len(owners[alias]) == 1:
                    aliases.append(alias)
            names.append(aliases)

        input_vals = [output.values for output in inputs]
        length = broadcast_length(len(vals) for vals in input_vals)

        output_vals: list[float] = []
        for position in range(length):
            context: dict[str, float] = {}
            for aliases, vals in zip(names, input_vals):
                value = ragged_value(vals, position)
                for alias in aliases:
                    context[alias] = value
            try:
                output_vals.append(self._engine.evaluate(formula.expression, context))
            except FormulaError as exc:
                raise FormulaEvaluationError(node.id, formula.text, exc) from exc

        if not output_vals:
            raise EmptyOutputError(node.id)
        return NodeOutput.collect(output_vals, node.id)


def evaluate(
    tree: Tree,
    node_id: int,
    bindings: Mapping[int, Any] | None = None,
    *,
    engine: ExpressionEngine | None = None,
    memoize: bool = True,
) -> NodeOutput:
    """Evaluate *node_id* in *tree* with the given variable bindings.

    Each call uses a fresh memo, so one built tree can be evaluated
    repeatedly (and concurrently) with different bindings.
    """
    return Evaluator(tree, bindings, engine=engine, memoize=memoize).evaluate(node_id)


def normalize_binding(node_id: int, value: Any) -> list[float]:
    """Normalize a bound value (number, sequence or NodeOutput) to floats.

    Raises:
        InvalidBindingError: For strings, booleans, non-finite numbers or
            anything else that is not numeric.
    """
    if isinstance(value, NodeOutput):
        return list(value.values)
    if isinstance(value, (str, bytes)) or isinstance(value, bool):
        raise InvalidBindingError(node_id, value)
    if isinstance(value, Real):
        items: Iterable[Any] = [value]
    elif isinstance(value, Iterable):
        items = value
    else:
        raise InvalidBindingError(node_id, value)

    out: list[float] = []
    for item in items:
        if isinstance(item, bool) or not isinstance(item, Real):
            raise InvalidBindingError(node_id, value)
        number = float(item)
        if not math.isfinite(number):
            raise InvalidBindingError(node_id, value)
        out.append(number)
    return out
