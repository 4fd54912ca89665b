"""Infix formula parsing and evaluation.

Public API::

    from calctree.formulas import parse_formula, extract_refs, evaluate_formula
"""

from calctree.formulas.engine import ExpressionEngine, LarkEngine, default_engine
from calctree.formulas.errors import (
    FormulaError,
    FormulaFunctionError,
    FormulaParseError,
    FormulaRefError,
    FormulaValueError,
)
from calctree.formulas.evaluator import evaluate_formula
from calctree.formulas.parser import extract_refs, parse_formula

__all__ = [
    "ExpressionEngine",
    "FormulaError",
    "FormulaFunctionError",
    "FormulaParseError",
    "FormulaRefError",
    "FormulaValueError",
    "LarkEngine",
    "default_engine",
    "evaluate_formula",
    "extract_refs",
    "parse_formula",
]
