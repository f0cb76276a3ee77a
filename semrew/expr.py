"""
Expression model for semrew.

Expressions are immutable trees built from three node kinds:

    Literal(value)               - numeric constant, or a vector/matrix of numbers
    Variable(name)               - symbolic placeholder
    Compound(op, children, props) - operator application

Two compounds are equal when their operators are equal and their children
are pairwise equal, in order. Operator properties (commutativity, identity,
execution handle, matcher class) ride along with each compound; they come
from a SymbolTable and never take part in equality.

Plain Python data converts with to_expr():

    to_expr(["+", "x", 1])  -> Compound('+', Variable('x'), Literal(1))
"""

from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Mapping, NamedTuple, Optional

from .prelude import ARITHMETIC_PRELUDE


class MatcherClass(Enum):
    """How a compound pattern with this operator is matched."""

    FIXED = "fixed"
    COMMUTATIVE = "commutative"
    EXTRACTOR = "extractor"


class OperatorProperties(NamedTuple):
    """Semantic properties of an operator symbol."""

    commutative: bool = False
    associative: bool = False
    identity: Optional["Expression"] = None
    exec_handle: Any = None
    matcher_class: MatcherClass = MatcherClass.FIXED


def operator_properties(
    commutative: bool = False,
    associative: bool = False,
    identity: Any = None,
    exec_handle: Any = None,
) -> OperatorProperties:
    """Build an OperatorProperties record, deriving its matcher class."""
    return OperatorProperties(
        commutative=commutative,
        associative=associative,
        identity=to_expr(identity) if identity is not None else None,
        exec_handle=exec_handle,
        matcher_class=MatcherClass.COMMUTATIVE if commutative else MatcherClass.FIXED,
    )


FIXED_PROPERTIES = OperatorProperties()
EXTRACTOR_PROPERTIES = OperatorProperties(matcher_class=MatcherClass.EXTRACTOR)


class SymbolTable:
    """
    Immutable lookup from operator symbol to its properties.

    Unregistered symbols resolve to plain fixed-arity operators, except
    names ending in '?', which denote extractor applications in patterns.

    Example:
        symbols = DEFAULT_SYMBOLS.extend({
            "max": operator_properties(commutative=True),
        })
    """

    __slots__ = ('_entries',)

    def __init__(self, entries: Optional[Mapping[str, OperatorProperties]] = None):
        self._entries: Dict[str, OperatorProperties] = dict(entries or {})

    def lookup(self, op: str) -> OperatorProperties:
        """Resolve the properties of an operator symbol."""
        props = self._entries.get(op)
        if props is not None:
            return props
        if op.endswith("?"):
            return EXTRACTOR_PROPERTIES
        return FIXED_PROPERTIES

    def extend(self, entries: Mapping[str, OperatorProperties]) -> 'SymbolTable':
        """Return a new table with additional (or overriding) entries."""
        return SymbolTable({**self._entries, **entries})

    def __contains__(self, op: str) -> bool:
        return op in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"SymbolTable({sorted(self._entries)})"


# ============================================================
# Expression nodes
# ============================================================

class Expression:
    """Base class of every expression and pattern node."""

    __slots__ = ()

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __str__(self) -> str:
        from .sexpr import format_sexpr
        return format_sexpr(self)


def _freeze(value: Any) -> Any:
    """Convert nested lists (matrix rows) to nested tuples."""
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _value_key(value: Any) -> Any:
    """Comparison key for literal values: booleans never equal numbers."""
    if isinstance(value, bool):
        return ('bool', value)
    if isinstance(value, tuple):
        return tuple(_value_key(v) for v in value)
    return value


class Literal(Expression):
    """
    An atomic constant: a number, a boolean, or a vector/matrix of numbers.

    Numbers compare by value (1 == 1.0), but true and false are distinct
    from 1 and 0.
    """

    __slots__ = ('value', '_key')

    def __init__(self, value: Any):
        value = _freeze(value)
        object.__setattr__(self, 'value', value)
        object.__setattr__(self, '_key', _value_key(value))

    def __eq__(self, other):
        if isinstance(other, Literal):
            return self._key == other._key
        return NotImplemented

    def __hash__(self) -> int:
        return hash(('lit', self._key))

    def __repr__(self) -> str:
        return f"Literal({self.value!r})"


class Variable(Expression):
    """A named symbolic placeholder that survives into results."""

    __slots__ = ('name',)

    def __init__(self, name: str):
        object.__setattr__(self, 'name', name)

    def __eq__(self, other):
        if isinstance(other, Variable):
            return self.name == other.name
        return NotImplemented

    def __hash__(self) -> int:
        return hash(('var', self.name))

    def __repr__(self) -> str:
        return f"Variable({self.name!r})"


class Compound(Expression):
    """
    An operator applied to an ordered tuple of children.

    When props is omitted the operator is resolved in DEFAULT_SYMBOLS.
    The hash is computed once at construction.
    """

    __slots__ = ('op', 'children', 'props', '_hash')

    def __init__(self, op: str, children: Iterable[Expression] = (),
                 props: Optional[OperatorProperties] = None):
        children = tuple(children)
        object.__setattr__(self, 'op', op)
        object.__setattr__(self, 'children', children)
        object.__setattr__(self, 'props', props if props is not None else DEFAULT_SYMBOLS.lookup(op))
        object.__setattr__(self, '_hash', hash((op, children)))

    def with_children(self, children: Iterable[Expression]) -> 'Compound':
        """Same operator and properties, new children."""
        return Compound(self.op, children, self.props)

    def __eq__(self, other):
        if self is other:
            return True
        if isinstance(other, Compound):
            return (self._hash == other._hash and self.op == other.op
                    and self.children == other.children)
        return NotImplemented

    def __hash__(self) -> int:
        return self._hash

    def __repr__(self) -> str:
        args = ", ".join(repr(c) for c in self.children)
        if args:
            return f"Compound({self.op!r}, {args})"
        return f"Compound({self.op!r})"


# ============================================================
# Predicates
# ============================================================

def is_literal(expr: Any) -> bool:
    return isinstance(expr, Literal)


def is_number(expr: Any) -> bool:
    """True for scalar numeric literals (booleans excluded)."""
    return (isinstance(expr, Literal) and isinstance(expr.value, (int, float))
            and not isinstance(expr.value, bool))


def is_variable(expr: Any) -> bool:
    return isinstance(expr, Variable)


def is_compound(expr: Any) -> bool:
    return isinstance(expr, Compound)


def free_in(name: str, expr: Expression) -> bool:
    """
    Check if a variable appears in an expression.

    Examples:
        free_in("x", E("(+ x 1)"))  # => True
        free_in("y", E("(+ x 1)"))  # => False
    """
    if isinstance(expr, Variable):
        return expr.name == name
    if isinstance(expr, Compound):
        return any(free_in(name, child) for child in expr.children)
    return False


# ============================================================
# Lifting plain Python data
# ============================================================

def to_expr(value: Any, symbols: Optional[SymbolTable] = None) -> Expression:
    """
    Convert plain Python data into an Expression.

    Numbers and booleans become Literals, strings become Variables, and a
    list or tuple whose head is a string becomes a Compound. A list of
    numbers (or of number lists) becomes a vector/matrix Literal.
    Expressions are returned unchanged.
    """
    if isinstance(value, Expression):
        return value
    if isinstance(value, (bool, int, float)):
        return Literal(value)
    if isinstance(value, str):
        return Variable(value)
    if isinstance(value, (list, tuple)):
        if not value:
            raise ValueError("Cannot build an expression from an empty list")
        head = value[0]
        if isinstance(head, str):
            table = symbols if symbols is not None else DEFAULT_SYMBOLS
            return Compound(head, [to_expr(v, symbols) for v in value[1:]], table.lookup(head))
        return Literal(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to an expression")


DEFAULT_SYMBOLS = SymbolTable({
    "+": OperatorProperties(
        commutative=True, associative=True, identity=Literal(0),
        exec_handle=ARITHMETIC_PRELUDE["+"], matcher_class=MatcherClass.COMMUTATIVE,
    ),
    "*": OperatorProperties(
        commutative=True, associative=True, identity=Literal(1),
        exec_handle=ARITHMETIC_PRELUDE["*"], matcher_class=MatcherClass.COMMUTATIVE,
    ),
    "-": OperatorProperties(exec_handle=ARITHMETIC_PRELUDE["-"]),
    "/": OperatorProperties(exec_handle=ARITHMETIC_PRELUDE["/"]),
    "^": OperatorProperties(exec_handle=ARITHMETIC_PRELUDE["^"]),
})
