"""Node data model: kinds, nodes, outputs and transport definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterable, Union

from pydantic import BaseModel, ConfigDict

from calctree.errors import EmptyOutputError


class NodeKindCode(IntEnum):
    """Kind discriminators used by stored node definitions."""

    variable = 0
    formula = 1
    constant = 2
    constant_sequence = 3
    external_query = 4


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Constant:
    value: float


@dataclass(frozen=True)
class ConstantSequence:
    values: tuple[float, ...]


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Formula:
    """A parsed expression plus its source text (kept for diagnostics)."""

    text: str
    expression: Any = field(compare=False, repr=False)


@dataclass(frozen=True)
class ExternalQuery:
    query: str


NodeKind = Union[Constant, ConstantSequence, Variable, Formula, ExternalQuery]


def synthetic_identifier(node_id: int) -> str:
    """Name under which a node's output is visible to consuming formulas."""
    return f"id{node_id}"


@dataclass(frozen=True)
class Node:
    """A single computation unit.

    ``inputs`` holds the ids of the nodes whose outputs feed this one, in
    the order the edges were processed.
    """

    id: int
    kind: NodeKind
    inputs: tuple[int, ...] = ()

    @property
    def identifier(self) -> str:
        return synthetic_identifier(self.id)

    @property
    def kind_code(self) -> NodeKindCode:
        return _KIND_CODES[type(self.kind)]


_KIND_CODES: dict[type, NodeKindCode] = {
    Variable: NodeKindCode.variable,
    Formula: NodeKindCode.formula,
    Constant: NodeKindCode.constant,
    ConstantSequence: NodeKindCode.constant_sequence,
    ExternalQuery: NodeKindCode.external_query,
}


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NodeOutput:
    """Result of evaluating a node: one float or an ordered run of floats.

    A length-1 output is a scalar; use ``collect()`` to build one so the
    empty case is rejected.
    """

    values: tuple[float, ...]

    @classmethod
    def collect(cls, values: Iterable[float], node_id: int | None = None) -> NodeOutput:
        """Collapse produced values into an output.

        Raises:
            EmptyOutputError: If *values* is empty.
        """
        vals = tuple(float(v) for v in values)
        if not vals:
            raise EmptyOutputError(node_id)
        return cls(vals)

    @classmethod
    def scalar(cls, value: float) -> NodeOutput:
        return cls((float(value),))

    @property
    def is_scalar(self) -> bool:
        return len(self.values) == 1

    @property
    def value(self) -> float | list[float]:
        """The scalar, or a list for sequence outputs."""
        if self.is_scalar:
            return self.values[0]
        return list(self.values)

    def as_float(self) -> float:
        if not self.is_scalar:
            raise TypeError("Unable to convert sequence output to a number")
        return self.values[0]

    def as_list(self) -> list[float]:
        return list(self.values)

    def __len__(self) -> int:
        return len(self.values)


# ---------------------------------------------------------------------------
# Transport definitions
# ---------------------------------------------------------------------------


class NodeDefinition(BaseModel):
    """One stored node: kind discriminator plus its value text.

    ``kind`` is kept as a plain int so unknown discriminators reach the
    builder and fail there with ``InvalidNodeKindError``.
    """

    model_config = ConfigDict(frozen=True)

    node_id: int
    kind: int
    value: str


class EdgeDefinition(BaseModel):
    """``input_id``'s output is appended to ``node_id``'s inputs."""

    model_config = ConfigDict(frozen=True)

    node_id: int
    input_id: int
