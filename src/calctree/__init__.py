"""calctree: evaluate DAGs of formulas with ragged vector broadcasting.

Public API::

    from calctree import build_tree, evaluate

    tree = build_tree(node_definitions, edge_definitions)
    output = evaluate(tree, root_id, {variable_node_id: 3.0})
"""

__version__ = "0.3.0"

from calctree.errors import (
    CalcTreeError,
    ConstructionError,
    CycleError,
    EmptyOutputError,
    EvaluationError,
    FormulaDefinitionError,
    FormulaEvaluationError,
    InputIndexError,
    InvalidBindingError,
    InvalidLiteralError,
    InvalidNodeKindError,
    NodeNotFoundError,
    UnboundVariableError,
    UnsupportedOperationError,
)
from calctree.evaluator import Evaluator, broadcast_length, evaluate, ragged_value
from calctree.nodes import (
    Constant,
    ConstantSequence,
    EdgeDefinition,
    ExternalQuery,
    Formula,
    Node,
    NodeDefinition,
    NodeKindCode,
    NodeOutput,
    Variable,
    synthetic_identifier,
)
from calctree.tree import Tree, build_tree

__all__ = [
    "CalcTreeError",
    "Constant",
    "ConstantSequence",
    "ConstructionError",
    "CycleError",
    "EdgeDefinition",
    "EmptyOutputError",
    "EvaluationError",
    "Evaluator",
    "ExternalQuery",
    "Formula",
    "FormulaDefinitionError",
    "FormulaEvaluationError",
    "InputIndexError",
    "InvalidBindingError",
    "InvalidLiteralError",
    "InvalidNodeKindError",
    "Node",
    "NodeDefinition",
    "NodeKindCode",
    "NodeNotFoundError",
    "NodeOutput",
    "Tree",
    "UnboundVariableError",
    "UnsupportedOperationError",
    "Variable",
    "broadcast_length",
    "build_tree",
    "evaluate",
    "ragged_value",
    "synthetic_identifier",
]
