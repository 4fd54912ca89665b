"""Expression engines: the parse/evaluate capability used by formula nodes.

The graph builder and evaluator only see the ``ExpressionEngine``
protocol, so any object with matching ``parse``/``evaluate`` methods can
stand in for the default lark-backed engine.
"""

from __future__ import annotations

from typing import Any, Protocol

from calctree.formulas.evaluator import evaluate_formula
from calctree.formulas.parser import extract_refs, parse_formula


class ExpressionEngine(Protocol):
    """Protocol for parsing and evaluating formula text."""

    def parse(self, text: str) -> Any:
        """Parse formula text into an opaque expression object.

        Raises ``FormulaParseError`` on invalid syntax.
        """
        ...

    def evaluate(self, expression: Any, context: dict[str, float]) -> float:
        """Evaluate a parsed expression against named float values.

        Raises ``FormulaError`` (or a subclass) on failure.
        """
        ...


class LarkEngine:
    """Default engine built on the lark grammar in ``calctree.formulas.parser``."""

    def parse(self, text: str) -> Any:
        return parse_formula(text)

    def evaluate(self, expression: Any, context: dict[str, float]) -> float:
        return evaluate_formula(expression, context)

    def references(self, expression: Any) -> set[str]:
        """Identifiers referenced by a parsed expression."""
        return extract_refs(expression)


_default_engine = LarkEngine()


def default_engine() -> LarkEngine:
    """Return the shared default engine instance."""
    return _default_engine
