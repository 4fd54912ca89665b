"""Tree-walking evaluator for parsed formula expressions.

All arithmetic is floating point.  References resolve against a flat
context mapping identifiers to floats.
"""

from __future__ import annotations

import math
from typing import Any, Callable

from lark import Token, Tree

from calctree.formulas.errors import (
    FormulaError,
    FormulaFunctionError,
    FormulaRefError,
    FormulaValueError,
)
from calctree.formulas.parser import index_ref_name


def evaluate_formula(tree: Tree, context: dict[str, float]) -> float:
    """Evaluate a parsed formula tree against a context of named floats.

    Args:
        tree: Parse tree from ``parse_formula()``.
        context: Mapping of identifiers to their values.

    Returns:
        The computed value as a float.

    Raises:
        FormulaRefError: If the formula references an unknown identifier.
        FormulaFunctionError: For unknown functions or bad arity.
        FormulaValueError: On arithmetic failure or a non-numeric result.
    """
    try:
        result = _eval(tree, context)
    except ZeroDivisionError as exc:
        raise FormulaValueError("Division by zero in formula") from exc
    except OverflowError as exc:
        raise FormulaValueError(f"Numeric overflow: {exc}") from exc
    except (ValueError, TypeError) as exc:
        raise FormulaValueError(str(exc)) from exc
    return _as_float(result)


def _as_float(result: Any) -> float:
    """Coerce a top-level result to a finite float."""
    if isinstance(result, bool):
        raise FormulaValueError("Formula produced a boolean, expected a number")
    if isinstance(result, complex):
        raise FormulaValueError(f"Formula produced a complex number: {result}")
    if not isinstance(result, (int, float)):
        raise FormulaValueError(f"Formula produced a non-numeric value: {result!r}")
    if not math.isfinite(result):
        raise FormulaValueError(f"Formula produced a non-finite value: {result}")
    return float(result)


def _eval(node: Tree | Token, ctx: dict[str, float]) -> Any:
    """Recursively evaluate a tree node."""
    if isinstance(node, Token):
        if node.type == "NUMBER":
            return float(node)
        raise FormulaError(f"Unexpected token: {node!r}")

    rule = node.data

    if rule == "start":
        return _eval(node.children[0], ctx)

    # Arithmetic
    if rule == "add":
        return _eval(node.children[0], ctx) + _eval(node.children[1], ctx)
    if rule == "sub":
        return _eval(node.children[0], ctx) - _eval(node.children[1], ctx)
    if rule == "mul":
        return _eval(node.children[0], ctx) * _eval(node.children[1], ctx)
    if rule == "div":
        left = _eval(node.children[0], ctx)
        right = _eval(node.children[1], ctx)
        if right == 0:
            raise ZeroDivisionError("Division by zero in formula")
        return left / right
    if rule == "neg":
        return -_eval(node.children[0], ctx)
    if rule == "pos":
        return _eval(node.children[0], ctx)
    if rule == "pow":
        base = _eval(node.children[0], ctx)
        exp = _eval(node.children[1], ctx)
        result = base ** exp
        if isinstance(result, complex):
            raise FormulaValueError(f"Power produced a complex number: {base} ^ {exp}")
        return result
    if rule == "percent":
        return _eval(node.children[0], ctx) / 100

    # Comparison
    if rule == "gt":
        return _eval(node.children[0], ctx) > _eval(node.children[1], ctx)
    if rule == "lt":
        return _eval(node.children[0], ctx) < _eval(node.children[1], ctx)
    if rule == "gte":
        return _eval(node.children[0], ctx) >= _eval(node.children[1], ctx)
    if rule == "lte":
        return _eval(node.children[0], ctx) <= _eval(node.children[1], ctx)
    if rule == "eq":
        return _eval(node.children[0], ctx) == _eval(node.children[1], ctx)
    if rule == "neq":
        return _eval(node.children[0], ctx) != _eval(node.children[1], ctx)

    if rule == "number":
        return float(node.children[0])

    # References
    if rule == "ref_index":
        return _lookup(index_ref_name(node.children[0]), ctx)
    if rule in ("ref_bare", "ref_dollar"):
        return _lookup(str(node.children[0]), ctx)

    if rule == "func_call":
        return _eval_func(node, ctx)

    raise FormulaError(f"Unknown node type: {rule}")


def _lookup(name: str, ctx: dict[str, float]) -> float:
    if name in ctx:
        return ctx[name]
    raise FormulaRefError(name, available=sorted(ctx.keys()))


# ---------- Function dispatch ----------

_LAZY_FUNCTIONS = {"IF"}


def _eval_func(node: Tree, ctx: dict[str, float]) -> Any:
    """Evaluate a function call node."""
    func_name = str(node.children[0]).upper()
    args_node = node.children[1]
    raw_args = args_node.children if args_node.children else []

    # Lazy functions receive unevaluated AST nodes
    if func_name in _LAZY_FUNCTIONS:
        return _fn_if(raw_args, ctx)

    if func_name not in _FUNC_TABLE:
        raise FormulaFunctionError(func_name)

    evaluated_args = [_eval(arg, ctx) for arg in raw_args]
    return _FUNC_TABLE[func_name](evaluated_args)


def _fn_if(raw_args: list, ctx: dict[str, float]) -> Any:
    """IF(condition, then_value [, else_value]) with lazy branches."""
    if len(raw_args) < 2 or len(raw_args) > 3:
        raise FormulaFunctionError("IF", "IF requires 2-3 arguments")
    if _eval(raw_args[0], ctx):
        return _eval(raw_args[1], ctx)
    if len(raw_args) == 3:
        return _eval(raw_args[2], ctx)
    return 0.0


def _fn_sum(args: list) -> float:
    if len(args) < 1:
        raise FormulaFunctionError("SUM", "SUM requires at least 1 argument")
    return sum(args)


def _fn_average(args: list) -> float:
    if len(args) < 1:
        raise FormulaFunctionError("AVERAGE", "AVERAGE requires at least 1 argument")
    return sum(args) / len(args)


def _fn_min(args: list) -> float:
    if len(args) < 1:
        raise FormulaFunctionError("MIN", "MIN requires at least 1 argument")
    return min(args)


def _fn_max(args: list) -> float:
    if len(args) < 1:
        raise FormulaFunctionError("MAX", "MAX requires at least 1 argument")
    return max(args)


def _fn_round(args: list) -> float:
    if len(args) < 1 or len(args) > 2:
        raise FormulaFunctionError("ROUND", "ROUND requires 1-2 arguments")
    digits = int(args[1]) if len(args) == 2 else 0
    return round(args[0], digits)


def _unary(name: str, fn: Callable[[float], float]) -> Callable[[list], float]:
    def apply(args: list) -> float:
        if len(args) != 1:
            raise FormulaFunctionError(name, f"{name} requires exactly 1 argument")
        return fn(args[0])

    return apply


_FUNC_TABLE: dict[str, Callable[[list], Any]] = {
    "SUM": _fn_sum,
    "AVERAGE": _fn_average,
    "MIN": _fn_min,
    "MAX": _fn_max,
    "ROUND": _fn_round,
    "ABS": _unary("ABS", abs),
    "SQRT": _unary("SQRT", math.sqrt),
    "EXP": _unary("EXP", math.exp),
    "LN": _unary("LN", math.log),
    "LOG10": _unary("LOG10", math.log10),
}
