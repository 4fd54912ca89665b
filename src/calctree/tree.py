"""Graph builder: turn flat node/edge definitions into an immutable ``Tree``.

Nodes are created first, then edges are applied in list order, so every
edge endpoint can be checked against the complete node set in a single
pass.  The resulting tree is an arena keyed by node id; nodes refer to
their inputs by id.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Iterable, Iterator, Mapping

from calctree.errors import (
    CycleError,
    FormulaDefinitionError,
    InvalidLiteralError,
    InvalidNodeKindError,
    NodeNotFoundError,
)
from calctree.formulas.engine import ExpressionEngine, default_engine
from calctree.formulas.errors import FormulaError
from calctree.nodes import (
    Constant,
    ConstantSequence,
    EdgeDefinition,
    ExternalQuery,
    Formula,
    Node,
    NodeDefinition,
    NodeKind,
    NodeKindCode,
    Variable,
)

_SEQ_SPLIT_RE = re.compile(r"[,\s]+")


class Tree:
    """Immutable collection of nodes keyed by id.

    Usage::

        tree = build_tree(node_defs, edge_defs)
        output = evaluate(tree, root_id, bindings)
    """

    def __init__(self, nodes: Mapping[int, Node], duplicate_ids: Iterable[int] = ()) -> None:
        self._nodes: dict[int, Node] = dict(nodes)
        self.duplicate_ids: tuple[int, ...] = tuple(duplicate_ids)

    def __getitem__(self, node_id: int) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[int]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> dict[int, Node]:
        return dict(self._nodes)

    def variables(self) -> list[int]:
        """Ids of all Variable nodes, in insertion order."""
        return [nid for nid, node in self._nodes.items() if isinstance(node.kind, Variable)]

    def variable_ids(self, name: str) -> list[int]:
        """Ids of the Variable nodes declared with *name*."""
        return [
            nid for nid, node in self._nodes.items()
            if isinstance(node.kind, Variable) and node.kind.name == name
        ]

    def consumers(self, node_id: int) -> list[int]:
        """Ids of nodes that take *node_id* as an input."""
        return [nid for nid, node in self._nodes.items() if node_id in node.inputs]

    def reachable(self, root_id: int) -> list[int]:
        """Ids reachable from *root_id* through inputs, root first.

        Raises:
            NodeNotFoundError: If *root_id* is not in the tree.
        """
        self[root_id]
        seen: list[int] = []
        stack = [root_id]
        visited: set[int] = set()
        while stack:
            nid = stack.pop()
            if nid in visited:
                continue
            visited.add(nid)
            seen.append(nid)
            stack.extend(reversed(self._nodes[nid].inputs))
        return seen

    def bindings_by_name(self, values: Mapping[str, Any]) -> dict[int, Any]:
        """Translate ``{variable_name: value}`` into ``{node_id: value}``.

        Every Variable node declared with a given name receives the value.

        Raises:
            KeyError: If a name matches no Variable node.
        """
        bindings: dict[int, Any] = {}
        for name, value in values.items():
            ids = self.variable_ids(name)
            if not ids:
                known = sorted({self._nodes[n].kind.name for n in self.variables()})
                raise KeyError(f"No variable named {name!r}. Available: {known}")
            for nid in ids:
                bindings[nid] = value
        return bindings


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def build_tree(
    node_definitions: Iterable[NodeDefinition | Mapping[str, Any]],
    edge_definitions: Iterable[EdgeDefinition | Mapping[str, Any]],
    *,
    engine: ExpressionEngine | None = None,
    check_cycles: bool = True,
) -> Tree:
    """Build a validated tree from node and edge definitions.

    Args:
        node_definitions: Node definitions; later duplicates of an id are
            ignored.
        edge_definitions: Edge definitions, applied in order.
        engine: Expression engine used to parse formula text.
        check_cycles: Reject edge sets that form a cycle.

    Returns:
        The built ``Tree``.

    Raises:
        InvalidNodeKindError: Unknown kind discriminator.
        InvalidLiteralError: Undecodable constant/sequence/variable value.
        FormulaDefinitionError: Formula text failed to parse.
        NodeNotFoundError: An edge endpoint is missing.
        CycleError: The edges form a cycle (when *check_cycles*).
    """
    engine = engine or default_engine()

    kinds: dict[int, NodeKind] = {}
    duplicates: list[int] = []
    for raw in node_definitions:
        node_def = _as_node_definition(raw)
        if node_def.node_id in kinds:
            duplicates.append(node_def.node_id)
            continue
        kinds[node_def.node_id] = _build_kind(node_def, engine)

    inputs: dict[int, list[int]] = {nid: [] for nid in kinds}
    for raw in edge_definitions:
        edge = _as_edge_definition(raw)
        if edge.node_id not in kinds:
            raise NodeNotFoundError(edge.node_id, endpoint="node")
        if edge.input_id not in kinds:
            raise NodeNotFoundError(edge.input_id, endpoint="input")
        inputs[edge.node_id].append(edge.input_id)

    nodes = {
        nid: Node(id=nid, kind=kind, inputs=tuple(inputs[nid]))
        for nid, kind in kinds.items()
    }

    if check_cycles:
        cycle = find_cycle(nodes)
        if cycle:
            raise CycleError(cycle)

    return Tree(nodes, duplicate_ids=duplicates)


def _as_node_definition(raw: NodeDefinition | Mapping[str, Any]) -> NodeDefinition:
    if isinstance(raw, NodeDefinition):
        return raw
    return NodeDefinition.model_validate(raw)


def _as_edge_definition(raw: EdgeDefinition | Mapping[str, Any]) -> EdgeDefinition:
    if isinstance(raw, EdgeDefinition):
        return raw
    return EdgeDefinition.model_validate(raw)


def _build_kind(node_def: NodeDefinition, engine: ExpressionEngine) -> NodeKind:
    """Construct the kind payload for one definition."""
    try:
        code = NodeKindCode(node_def.kind)
    except ValueError:
        raise InvalidNodeKindError(node_def.node_id, node_def.kind) from None

    value = node_def.value
    if code is NodeKindCode.formula:
        try:
            expression = engine.parse(value)
        except FormulaError as exc:
            raise FormulaDefinitionError(node_def.node_id, value, exc) from exc
        return Formula(text=value, expression=expression)
    if code is NodeKindCode.constant:
        return Constant(parse_scalar_literal(node_def.node_id, value))
    if code is NodeKindCode.constant_sequence:
        return ConstantSequence(parse_sequence_literal(node_def.node_id, value))
    if code is NodeKindCode.variable:
        name = value.strip()
        if not name:
            raise InvalidLiteralError(node_def.node_id, value, "variable name is empty")
        return Variable(name)
    return ExternalQuery(value)


def parse_scalar_literal(node_id: int, text: str) -> float:
    """Decode a constant's value text as a finite float."""
    try:
        value = float(text.strip())
    except ValueError:
        raise InvalidLiteralError(node_id, text, "not a number") from None
    if not math.isfinite(value):
        raise InvalidLiteralError(node_id, text, "not a finite number")
    return value


def parse_sequence_literal(node_id: int, text: str) -> tuple[float, ...]:
    """Decode a constant sequence: a JSON array or a comma/space separated list."""
    stripped = text.strip()
    if stripped.startswith("["):
        try:
            items = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise InvalidLiteralError(node_id, text, f"bad JSON array: {exc.msg}") from None
        if not isinstance(items, list):
            raise InvalidLiteralError(node_id, text, "expected a JSON array")
    else:
        items = [part for part in _SEQ_SPLIT_RE.split(stripped) if part]

    values: list[float] = []
    for item in items:
        if isinstance(item, bool):
            raise InvalidLiteralError(node_id, text, f"non-numeric element {item!r}")
        try:
            number = float(item)
        except (TypeError, ValueError):
            raise InvalidLiteralError(node_id, text, f"non-numeric element {item!r}") from None
        if not math.isfinite(number):
            raise InvalidLiteralError(node_id, text, f"non-finite element {item!r}")
        values.append(number)
    return tuple(values)


def find_cycle(nodes: Mapping[int, Node]) -> list[int] | None:
    """Return one cycle as a path of ids (first id repeated last), or None."""
    # 0 = unvisited, 1 = on the current path, 2 = finished
    state: dict[int, int] = {}
    for start in nodes:
        if state.get(start):
            continue
        path: list[int] = [start]
        iters = [iter(nodes[start].inputs)]
        state[start] = 1
        while iters:
            nxt = next(iters[-1], None)
            if nxt is None:
                state[path.pop()] = 2
                iters.pop()
                continue
            if state.get(nxt) == 1:
                return path[path.index(nxt):] + [nxt]
            if not state.get(nxt):
                state[nxt] = 1
                path.append(nxt)
                iters.append(iter(nodes[nxt].inputs))
    return None
