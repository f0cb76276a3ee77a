"""
Built-in extractors.

An extractor stands in a pattern where syntax alone cannot say what to
match, e.g. "any additive zero, scalar or matrix":

    (+ (zero? ?x) ?&*)  matches  (+ 1 0 3)             with ?x = 0
                        and      (+ a [[0 0] [0 0]] b) with ?x = [[0 0] [0 0]]

Predicate extractors check the candidate and then unify each of their
argument patterns with it, so (zero? ?x) both tests and binds.
"""

from typing import Callable, Iterator, Optional, Tuple

from .expr import Compound, Expression, Literal, Variable, is_number
from .matcher import unify
from .pattern import Extractor, ExtractorRegistry
from .substitution import Substitution


def predicate_extractor(name: str, predicate: Callable[[Expression], bool],
                        description: Optional[str] = None) -> Extractor:
    """
    Build an extractor from a predicate over expressions.

    The resulting relation succeeds when predicate(expr) holds and every
    argument pattern unifies with expr.

    Example:
        even = predicate_extractor("even?", lambda e: is_number(e) and e.value % 2 == 0)
        extractors = DEFAULT_EXTRACTORS.extend([even])
    """
    def relation(args: Tuple[Expression, ...], expr: Expression,
                 sub: Substitution) -> Iterator[Substitution]:
        if not predicate(expr):
            return
        yield from _unify_all(args, expr, sub)

    return Extractor(name, relation, description)


def _unify_all(args: Tuple[Expression, ...], expr: Expression,
               sub: Substitution) -> Iterator[Substitution]:
    if not args:
        yield sub
        return
    for extended in unify(args[0], expr, sub):
        yield from _unify_all(args[1:], expr, extended)


def _is_matrix(expr: Expression) -> bool:
    return isinstance(expr, Literal) and isinstance(expr.value, tuple)


def _cells(value):
    if isinstance(value, tuple):
        for item in value:
            yield from _cells(item)
    else:
        yield value


def is_zero(expr: Expression) -> bool:
    """Scalar zero, or a vector/matrix whose entries are all zero."""
    if is_number(expr):
        return expr.value == 0
    if _is_matrix(expr):
        return all(cell == 0 and not isinstance(cell, bool) for cell in _cells(expr.value))
    return False


def is_one(expr: Expression) -> bool:
    """Scalar one, or a square identity matrix."""
    if is_number(expr):
        return expr.value == 1
    if _is_matrix(expr):
        rows = expr.value
        if not rows or not all(isinstance(r, tuple) and len(r) == len(rows) for r in rows):
            return False
        return all(cell == (1 if i == j else 0)
                   for i, row in enumerate(rows) for j, cell in enumerate(row))
    return False


DEFAULT_EXTRACTORS = ExtractorRegistry([
    predicate_extractor("zero?", is_zero, "additive identity (scalar or matrix)"),
    predicate_extractor("one?", is_one, "multiplicative identity (scalar or matrix)"),
    predicate_extractor("const?", is_number, "numeric literal"),
    predicate_extractor("matrix?", _is_matrix, "vector or matrix literal"),
    predicate_extractor("var?", lambda e: isinstance(e, Variable), "symbolic variable"),
    predicate_extractor("compound?", lambda e: isinstance(e, Compound), "operator application"),
    predicate_extractor("negative?", lambda e: is_number(e) and e.value < 0, "negative number"),
])
