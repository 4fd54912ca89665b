"""Lark-based parser for node formulas.

Supports:
- Synthetic input references: ``id3`` or ``$3`` (both name node 3)
- Named references: ``rate`` or ``$rate``
- Standard arithmetic, comparisons, functions, postfix percent (%)
"""

from __future__ import annotations

from lark import Lark, Token, Tree, Visitor

from calctree.formulas.errors import FormulaParseError

# LALR(1) grammar for node formulas.
# Operator precedence (lowest to highest):
#   1. Comparison: > < >= <= = <>
#   2. Addition/subtraction: + -
#   3. Multiplication/division: * /
#   4. Unary plus/minus: + -
#   5. Exponentiation: ^ (right-associative)
#   6. Postfix percent: %  (3% = 0.03)
#   7. Atoms: number, function call, reference, parenthesized expr
GRAMMAR = r"""
start: expr

?expr: comparison

?comparison: addition
    | comparison ">" addition   -> gt
    | comparison "<" addition   -> lt
    | comparison ">=" addition  -> gte
    | comparison "<=" addition  -> lte
    | comparison "=" addition   -> eq
    | comparison "<>" addition  -> neq

?addition: multiplication
    | addition "+" multiplication  -> add
    | addition "-" multiplication  -> sub

?multiplication: unary
    | multiplication "*" unary  -> mul
    | multiplication "/" unary  -> div

?unary: exponentiation
    | "-" unary  -> neg
    | "+" unary  -> pos

?exponentiation: postfix
    | postfix "^" unary  -> pow

?postfix: atom
    | postfix "%"  -> percent

?atom: NUMBER                   -> number
    | NAME "(" args ")"         -> func_call
    | INDEX_REF                 -> ref_index
    | "$" NAME                  -> ref_dollar
    | NAME                      -> ref_bare
    | "(" expr ")"

args: expr ("," expr)*
    |

// Positional node reference: $3 is the same input as id3
INDEX_REF.2: /\$[0-9]+/

NAME.1: /[A-Za-z_][A-Za-z0-9_]*/

%import common.NUMBER
%import common.WS
%ignore WS
"""

_parser = Lark(GRAMMAR, parser="lalr", start="start")


def parse_formula(text: str) -> Tree:
    """Parse formula text into a Lark Tree.

    Args:
        text: The formula text, e.g. ``"(id1 - id0) / 2"``.

    Returns:
        A Lark parse tree.

    Raises:
        FormulaParseError: If the formula is empty or has invalid syntax.
    """
    text = text.strip()
    if not text:
        raise FormulaParseError("Formula is empty", position=0)
    try:
        return _parser.parse(text)
    except Exception as exc:
        pos = getattr(exc, "column", None)
        raise FormulaParseError(str(exc), position=pos) from exc


def index_ref_name(token: Token | str) -> str:
    """Map a ``$<N>`` token to the synthetic identifier ``id<N>``."""
    return f"id{int(str(token)[1:])}"


class _RefCollector(Visitor):
    """Visitor that collects all references from a parse tree."""

    def __init__(self) -> None:
        self.refs: set[str] = set()

    def ref_bare(self, tree: Tree) -> None:
        self.refs.add(str(tree.children[0]))

    def ref_dollar(self, tree: Tree) -> None:
        self.refs.add(str(tree.children[0]))

    def ref_index(self, tree: Tree) -> None:
        self.refs.add(index_ref_name(tree.children[0]))


def extract_refs(tree: Tree) -> set[str]:
    """Extract all referenced identifiers from a parsed formula tree.

    ``$<N>`` references are reported under their ``id<N>`` spelling and
    ``$name`` without the ``$`` prefix.
    """
    collector = _RefCollector()
    collector.visit(tree)
    return collector.refs
