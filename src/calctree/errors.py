"""Error types for tree construction and evaluation.

Construction errors are raised by ``build_tree()``; evaluation errors by
``evaluate()``.  Each carries the id of the node it concerns (when there
is one) and an ``error_code`` used in structured event logs.
"""

from __future__ import annotations

from typing import Any


class CalcTreeError(Exception):
    """Base class for all calctree errors."""

    error_code = "calctree_error"

    def __init__(self, message: str, node_id: int | None = None) -> None:
        self.node_id = node_id
        super().__init__(message)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class ConstructionError(CalcTreeError):
    """A node or edge definition could not be turned into a tree."""


class InvalidNodeKindError(ConstructionError):
    """Unknown kind discriminator on a node definition."""

    error_code = "invalid_node_kind"

    def __init__(self, node_id: int, kind: Any) -> None:
        self.kind = kind
        super().__init__(f"Invalid node kind {kind!r} for node {node_id}", node_id)


class NodeNotFoundError(ConstructionError):
    """An edge (or a lookup) names a node id absent from the tree.

    Attributes:
        endpoint: ``"node"`` or ``"input"`` for edge endpoints, ``None``
            for plain lookups.
    """

    error_code = "node_not_found"

    def __init__(self, node_id: int, endpoint: str | None = None) -> None:
        self.endpoint = endpoint
        if endpoint == "input":
            msg = f"Input node not found: {node_id}"
        else:
            msg = f"Node not found: {node_id}"
        super().__init__(msg, node_id)


class InvalidLiteralError(ConstructionError):
    """A constant, sequence or variable value could not be decoded."""

    error_code = "invalid_literal"

    def __init__(self, node_id: int, value: str, reason: str) -> None:
        self.value = value
        super().__init__(f"Invalid value {value!r} for node {node_id}: {reason}", node_id)


class FormulaDefinitionError(ConstructionError):
    """Formula text on a node definition failed to parse."""

    error_code = "formula_parse_error"

    def __init__(self, node_id: int, text: str, cause: Exception) -> None:
        self.text = text
        self.cause = cause
        super().__init__(f"Node {node_id}: cannot parse formula {text!r}: {cause}", node_id)


class CycleError(ConstructionError):
    """The edges form a cycle.

    Attributes:
        cycle_path: Node ids along the cycle, first id repeated at the end.
    """

    error_code = "cycle_detected"

    def __init__(self, cycle_path: list[int]) -> None:
        self.cycle_path = cycle_path
        parts = " -> ".join(str(n) for n in cycle_path)
        super().__init__(f"Circular node reference: {parts}", cycle_path[0] if cycle_path else None)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class EvaluationError(CalcTreeError):
    """A node could not be evaluated."""


class UnboundVariableError(EvaluationError):
    """A Variable node has no entry in the supplied bindings."""

    error_code = "unbound_variable"

    def __init__(self, node_id: int, name: str) -> None:
        self.name = name
        super().__init__(f"Unbound variable {name!r} (node {node_id})", node_id)


class InvalidBindingError(EvaluationError):
    """A supplied binding value is not a number or sequence of numbers."""

    error_code = "invalid_binding"

    def __init__(self, node_id: int, value: Any) -> None:
        self.value = value
        super().__init__(f"Invalid binding for node {node_id}: {value!r}", node_id)


class FormulaEvaluationError(EvaluationError):
    """The expression engine failed on a formula node."""

    error_code = "formula_eval_error"

    def __init__(self, node_id: int, text: str, cause: Exception) -> None:
        self.text = text
        self.cause = cause
        super().__init__(f"Formula evaluation failed for node {node_id} ({text!r}): {cause}", node_id)


class UnsupportedOperationError(EvaluationError):
    """The node kind has no evaluation (external queries)."""

    error_code = "unsupported_operation"

    def __init__(self, node_id: int, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Operation not supported for node {node_id}: {operation}", node_id)


class EmptyOutputError(EvaluationError):
    """A computation produced no values."""

    error_code = "empty_output"

    def __init__(self, node_id: int | None = None) -> None:
        where = f" (node {node_id})" if node_id is not None else ""
        super().__init__(f"The computation resulted in no output{where}", node_id)


class InputIndexError(EvaluationError):
    """Internal inconsistency while assembling a formula's bindings."""

    error_code = "input_index_error"
