"""
S-expression reading and writing, and the E expression builder.

Syntax:
    (op arg ...)        - compound; op is resolved in a SymbolTable
    [1 2] [[0 0] [0 0]] - vector / matrix literal
    42  -1.5  true      - literals
    x  foo-bar          - variables

Pattern syntax:
    ?x  or ?x:expr      - match any expression, bind to x
    ?x:const            - match a literal only
    ?x:var              - match a variable only
    ?x:free(v)          - match an expression not containing v
    ?&*  ?&*name        - match a run of zero or more arguments
    ?&+  ?&+name        - match a run of one or more arguments
    ?xs...  ?xs...+     - named runs (zero+ / one+)
    ?xs:const...        - run whose elements are all literals

Skeleton syntax:
    ?x  or :x           - substitute bound value of x
    ?&*  or :xs...      - splice bound run into the enclosing compound
    (! op args ...)     - compute op on the instantiated args via the prelude
"""

import re
from typing import List, Optional, Tuple, Union

from .errors import SexprSyntaxError
from .expr import DEFAULT_SYMBOLS, Compound, Expression, Literal, SymbolTable, Variable, to_expr
from .pattern import ExtractorApp, LVar, SeqVar

_TOKEN = re.compile(r"\?[^\s()\[\]]*:free\([^()\s]*\)|[()\[\]]|[^\s()\[\]]+")
_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


def _parse_number(token: str) -> Optional[Union[int, float]]:
    if not _NUMBER.match(token):
        return None
    try:
        return int(token)
    except ValueError:
        return float(token)


def parse_sexprs(text: str, symbols: Optional[SymbolTable] = None) -> List[Expression]:
    """Parse every top-level form in text."""
    table = symbols if symbols is not None else DEFAULT_SYMBOLS
    tokens = _TOKEN.findall(text)
    forms = []
    pos = 0
    while pos < len(tokens):
        expr, pos = _read(tokens, pos, table)
        forms.append(expr)
    return forms


def parse_sexpr(text: str, symbols: Optional[SymbolTable] = None) -> Optional[Expression]:
    """
    Parse an S-expression string into an Expression.

    Returns None for blank input.

    Examples:
        "(+ x 1)"       -> Compound('+', Variable('x'), Literal(1))
        "(+ 0 ?&*)"     -> Compound('+', Literal(0), SeqVar('&*', min=0))
    """
    forms = parse_sexprs(text, symbols)
    if not forms:
        return None
    if len(forms) > 1:
        raise SexprSyntaxError(f"Expected a single expression, found {len(forms)} in {text.strip()!r}")
    return forms[0]


def _read(tokens: List[str], pos: int, symbols: SymbolTable) -> Tuple[Expression, int]:
    token = tokens[pos]

    if token == "(":
        items = []
        pos += 1
        while True:
            if pos >= len(tokens):
                raise SexprSyntaxError("Unbalanced parentheses: missing ')'")
            if tokens[pos] == ")":
                pos += 1
                break
            item, pos = _read(tokens, pos, symbols)
            items.append(item)
        if not items:
            raise SexprSyntaxError("Empty compound '()' has no operator")
        head = items[0]
        if not isinstance(head, Variable):
            raise SexprSyntaxError(f"Operator must be a symbol, got {format_sexpr(head)}")
        return Compound(head.name, items[1:], symbols.lookup(head.name)), pos

    if token == "[":
        value, pos = _read_matrix(tokens, pos)
        return Literal(value), pos

    if token in (")", "]"):
        raise SexprSyntaxError(f"Unexpected '{token}'")

    return _parse_atom(token), pos + 1


def _read_matrix(tokens: List[str], pos: int) -> Tuple[tuple, int]:
    items = []
    pos += 1
    while True:
        if pos >= len(tokens):
            raise SexprSyntaxError("Unbalanced brackets: missing ']'")
        token = tokens[pos]
        if token == "]":
            return tuple(items), pos + 1
        if token == "[":
            row, pos = _read_matrix(tokens, pos)
            items.append(row)
            continue
        number = _parse_number(token)
        if number is None:
            raise SexprSyntaxError(f"Matrix entries must be numbers, got '{token}'")
        items.append(number)
        pos += 1


def _parse_atom(token: str) -> Expression:
    number = _parse_number(token)
    if number is not None:
        return Literal(number)
    if token in ("true", "false"):
        return Literal(token == "true")
    if token.startswith("?") and len(token) > 1:
        return _parse_pattern_var(token[1:])
    if token.startswith(":") and len(token) > 1:
        return _parse_reference(token[1:])
    return Variable(token)


def _parse_pattern_var(rest: str) -> Expression:
    if rest.startswith("&*"):
        return SeqVar(rest, min=0)
    if rest.startswith("&+"):
        return SeqVar(rest, min=1)
    if rest.startswith("&"):
        raise SexprSyntaxError(f"Run variable ?{rest} needs a length marker: ?&*{rest[1:]} or ?&+{rest[1:]}")

    min_len = None
    if rest.endswith("...+"):
        rest, min_len = rest[:-4], 1
    elif rest.endswith("..."):
        rest, min_len = rest[:-3], 0

    name, _, constraint = rest.partition(":")
    name = name.strip() or "x"

    if min_len is not None:
        if constraint in ("const", "var"):
            return SeqVar(name, min=min_len, kind=constraint)
        if constraint and constraint != "expr":
            raise SexprSyntaxError(f"Unknown constraint ':{constraint}' on ?{name}...")
        return SeqVar(name, min=min_len)

    if not constraint or constraint == "expr":
        return LVar(name)
    if constraint in ("const", "var"):
        return LVar(name, kind=constraint)
    if constraint.startswith("free(") and constraint.endswith(")"):
        return LVar(name, free_of=constraint[5:-1].strip())
    raise SexprSyntaxError(f"Unknown constraint ':{constraint}' on ?{name}")


def _parse_reference(rest: str) -> Expression:
    # Skeleton reference syntax (:x, :xs...)
    if rest.endswith("..."):
        return SeqVar(rest[:-3].strip())
    return LVar(rest.strip())


def _format_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, tuple):
        return "[" + " ".join(_format_value(v) for v in value) + "]"
    return str(value)


def format_sexpr(expr) -> str:
    """
    Format an expression as an S-expression string.

    Examples:
        E.op("+", "x", 1)       -> "(+ x 1)"
        LVar("x", kind="const") -> "?x:const"
        SeqVar("xs")            -> "?xs..."
        Literal([[0, 0], [0, 0]]) -> "[[0 0] [0 0]]"
    """
    if isinstance(expr, Compound):
        return "(" + " ".join([expr.op] + [format_sexpr(c) for c in expr.children]) + ")"
    if isinstance(expr, ExtractorApp):
        return "(" + " ".join([expr.name] + [format_sexpr(a) for a in expr.args]) + ")"
    if isinstance(expr, LVar):
        if expr.free_of is not None:
            return f"?{expr.name}:free({expr.free_of})"
        if expr.kind:
            return f"?{expr.name}:{expr.kind}"
        return f"?{expr.name}"
    if isinstance(expr, SeqVar):
        if expr.name.startswith("&"):
            return f"?{expr.name}"
        suffix = "...+" if expr.min else "..."
        if expr.kind:
            return f"?{expr.name}:{expr.kind}{suffix}"
        return f"?{expr.name}{suffix}"
    if isinstance(expr, Literal):
        return _format_value(expr.value)
    if isinstance(expr, Variable):
        return expr.name
    return str(expr)


# ============================================================
# Expression Builder
# ============================================================

class _ExprBuilder:
    """
    Expression builder for semrew.

    Examples:
        from semrew import E

        # Parse s-expression string
        expr = E("(+ x (* 2 y))")

        # Build programmatically with E.op()
        x, y = E.vars("x", "y")
        expr = E.op("+", x, E.op("*", 2, y))

        # Patterns
        E.op("+", 0, E.seq("&*"))      # (+ 0 ?&*)
    """

    def __init__(self, symbols: Optional[SymbolTable] = None):
        self.symbols = symbols if symbols is not None else DEFAULT_SYMBOLS

    def __call__(self, s: str) -> Expression:
        """Parse an s-expression string."""
        return parse_sexpr(s, self.symbols)

    def op(self, name: str, *args) -> Compound:
        """
        Build a compound expression; plain Python arguments are lifted.

            E.op("+", "x", 1)  ->  (+ x 1)
        """
        return Compound(name, [to_expr(a, self.symbols) for a in args], self.symbols.lookup(name))

    def var(self, name: str) -> Variable:
        return Variable(name)

    def vars(self, *names: str) -> Tuple[Variable, ...]:
        """
        Create multiple variables for unpacking.

            x, y, z = E.vars("x", "y", "z")
        """
        return tuple(Variable(n) for n in names)

    def const(self, value) -> Literal:
        return Literal(value)

    def matrix(self, rows) -> Literal:
        """Matrix or vector literal from nested lists of numbers."""
        return Literal(rows)

    def lvar(self, name: str, kind: Optional[str] = None) -> LVar:
        return LVar(name, kind=kind)

    def seq(self, name: str, min: int = 0) -> SeqVar:
        return SeqVar(name, min=min)

    def with_symbols(self, symbols: SymbolTable) -> '_ExprBuilder':
        """A builder resolving operators in another symbol table."""
        return _ExprBuilder(symbols)

    def __repr__(self) -> str:
        return "E (expression builder)"


# Singleton instance
E = _ExprBuilder()
