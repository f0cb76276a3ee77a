"""
Fold handlers and standard preludes.

A prelude maps an operator name to a fold handler. A handler receives the
native values of its arguments (a Literal's value, a Variable's name, a
compound as [op, *args]) and returns a scalar result, or None to leave the
form unevaluated. Preludes are the language of rule guards and of the
``(! op args...)`` compute form in templates; the default symbol table also
carries the arithmetic handlers as opaque execution handles.

Arithmetic only folds scalar numbers. Booleans, symbols, vectors and
unevaluated compounds make a handler decline, so ``(+ x 1)`` stays symbolic
and ``(+ true 1)`` is never 2. Logic operators only accept booleans.

    fold = nary_fold(0, operator.add)
    fold([1, 2, 3])      # => 6
    fold([1, "x"])       # => None
"""

from functools import reduce
from typing import Any, Callable, Dict, List, Optional
import math
import operator

NumericType = Any

FoldHandler = Callable[[List[Any]], Optional[Any]]
FoldFuncsType = Dict[str, FoldHandler]


def is_scalar(x: Any) -> bool:
    """A native int or float; bool is excluded although it subclasses int."""
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def _numeric(handler: FoldHandler) -> FoldHandler:
    def gated(args: List[Any]) -> Optional[Any]:
        if not all(is_scalar(a) for a in args):
            return None
        return handler(args)
    return gated


# ============================================================
# Handler builders
# ============================================================

def nary_fold(
    identity: Optional[NumericType],
    binary_op: Callable[[NumericType, NumericType], NumericType],
    unary: Optional[Callable[[NumericType], NumericType]] = None,
) -> FoldHandler:
    """
    Fold any number of scalars left to right.

    With no arguments the identity is returned (or the form is left alone
    when identity is None); a single argument goes through unary when given.

    Examples:
        nary_fold(0, operator.add)   # (+) = 0, (+ 4) = 4, (+ 1 2 3) = 6
        nary_fold(None, min)         # (min) unevaluated, (min 3 1) = 1
    """
    def handler(args: List[NumericType]) -> Optional[NumericType]:
        if not args:
            return identity
        if len(args) == 1 and unary is not None:
            return unary(args[0])
        return reduce(binary_op, args)
    return _numeric(handler)


def unary_only(f: Callable[[NumericType], NumericType]) -> FoldHandler:
    """Fold exactly one scalar (sqrt, abs, ...)."""
    def handler(args: List[NumericType]) -> Optional[NumericType]:
        if len(args) != 1:
            return None
        return f(args[0])
    return _numeric(handler)


def binary_only(f: Callable[[NumericType, NumericType], NumericType]) -> FoldHandler:
    """Fold exactly two scalars (^, gcd, ...)."""
    def handler(args: List[NumericType]) -> Optional[NumericType]:
        if len(args) != 2:
            return None
        return f(args[0], args[1])
    return _numeric(handler)


def special_minus() -> FoldHandler:
    """(-) = 0, (- x) = -x, (- x y) = x - y; longer forms are left alone."""
    def handler(args: List[NumericType]) -> Optional[NumericType]:
        if len(args) > 2:
            return None
        if len(args) == 2:
            return args[0] - args[1]
        return -args[0] if args else 0
    return _numeric(handler)


def safe_div() -> FoldHandler:
    """(/ x y), declining when y is zero."""
    def handler(args: List[NumericType]) -> Optional[NumericType]:
        if len(args) != 2 or args[1] == 0:
            return None
        return args[0] / args[1]
    return _numeric(handler)


def chained(relation: Callable[[NumericType, NumericType], bool]) -> FoldHandler:
    """
    A comparison over two or more scalars, holding pairwise along the chain.

        chained(operator.lt)([1, 2, 3])   # => True, as in (< 1 2 3)
    """
    def handler(args: List[NumericType]) -> Optional[bool]:
        if len(args) < 2:
            return None
        return all(relation(a, b) for a, b in zip(args, args[1:]))
    return _numeric(handler)


def predicate(test: Callable[[Any], Any]) -> FoldHandler:
    """A one-argument test over any native value; always folds to a bool."""
    def handler(args: List[Any]) -> Optional[bool]:
        if len(args) != 1:
            return None
        return bool(test(args[0]))
    return handler


def _logical(combine: Callable[[List[bool]], bool]) -> FoldHandler:
    def handler(args: List[Any]) -> Optional[bool]:
        if not all(isinstance(a, bool) for a in args):
            return None
        return combine(args)
    return handler


def _same(a: Any, b: Any) -> bool:
    # Mirrors Literal equality: true is not 1
    return (isinstance(a, bool), a) == (isinstance(b, bool), b)


# ============================================================
# Standard preludes
# ============================================================

ARITHMETIC_PRELUDE: FoldFuncsType = {
    "+": nary_fold(0, operator.add),
    "*": nary_fold(1, operator.mul),
    "-": special_minus(),
    "/": safe_div(),
    "^": binary_only(operator.pow),
}

MATH_PRELUDE: FoldFuncsType = {
    **ARITHMETIC_PRELUDE,
    "sqrt": unary_only(math.sqrt),
    "exp": unary_only(math.exp),
    "log": unary_only(math.log),
    "abs": unary_only(abs),
    "min": nary_fold(None, min),
    "max": nary_fold(None, max),
}

# Comparisons, type tests and logic for rule guards
PREDICATE_PRELUDE: FoldFuncsType = {
    ">": chained(operator.gt),
    "<": chained(operator.lt),
    ">=": chained(operator.ge),
    "<=": chained(operator.le),
    "=": lambda args: all(_same(a, b) for a, b in zip(args, args[1:])) if len(args) >= 2 else None,
    "!=": lambda args: not _same(args[0], args[1]) if len(args) == 2 else None,
    "const?": predicate(is_scalar),
    "var?": predicate(lambda x: isinstance(x, str)),
    "compound?": predicate(lambda x: isinstance(x, list)),
    "matrix?": predicate(lambda x: isinstance(x, tuple)),
    "zero?": predicate(lambda x: is_scalar(x) and x == 0),
    "positive?": predicate(lambda x: is_scalar(x) and x > 0),
    "negative?": predicate(lambda x: is_scalar(x) and x < 0),
    "not": _logical(lambda args: not args[0] if len(args) == 1 else None),
    "and": _logical(all),
    "or": _logical(any),
}

FULL_PRELUDE: FoldFuncsType = {
    **ARITHMETIC_PRELUDE,
    **PREDICATE_PRELUDE,
}

NO_PRELUDE: FoldFuncsType = {}
