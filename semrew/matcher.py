"""
Semantic matching and unification.

unify(pattern, expr, sub) lazily yields every substitution extending sub
under which pattern matches expr. Compound patterns are matched according
to their operator's properties:

    fixed         - positional, arities must agree
    commutative   - every bijection between pattern and expression children
    commutative + one sequence variable
                  - every subset of children for the fixed elements, the
                    complement bound to the sequence variable
    segmented     - non-commutative with sequence variables: every split of
                    the children into runs, shortest runs first

Alternatives are explored depth-first and nothing is computed until the
consumer pulls, so taking the first result never pays for the rest.

Worst-case cost is combinatorial: n! bijections for a commutative pattern
of n elements, C(m, n-1) subsets with a sequence variable. Rule patterns
are small in practice; no search bound is imposed.
"""

from itertools import combinations
from typing import Iterator, Optional, Sequence, Tuple

from .expr import Compound, Expression
from .pattern import ExtractorApp, ExtractorRegistry, LVar, SeqVar, compile_pattern
from .sexpr import parse_sexpr
from .substitution import EMPTY, Substitution


def unify(pattern: Expression, expr: Expression, sub: Substitution) -> Iterator[Substitution]:
    """
    Lazily yield the substitutions extending sub that make pattern match expr.

    The pattern must already be compiled (see compile_pattern).
    """
    if isinstance(pattern, LVar):
        if pattern.accepts(expr, sub):
            bound = sub.bind_var(pattern.name, expr)
            if bound:
                yield bound
        return

    if isinstance(pattern, SeqVar):
        # Outside a compound a sequence variable can only stand for a single term
        run = (expr,)
        if pattern.accepts_run(run):
            bound = sub.bind_seq(pattern.name, run)
            if bound:
                yield bound
        return

    if isinstance(pattern, ExtractorApp):
        yield from pattern.extractor.relation(pattern.args, expr, sub)
        return

    if isinstance(pattern, Compound):
        if isinstance(expr, Compound) and expr.op == pattern.op:
            yield from match_compound(pattern, expr, sub)
        return

    if pattern == expr:
        yield sub


def match_compound(pattern: Compound, expr: Compound, sub: Substitution) -> Iterator[Substitution]:
    """Dispatch to the matching strategy for the pattern's operator."""
    pats = pattern.children
    exprs = expr.children
    seq_vars = [p for p in pats if isinstance(p, SeqVar)]

    if pattern.props.commutative:
        if not seq_vars:
            if len(pats) == len(exprs):
                yield from match_permutations(pats, exprs, sub)
            return
        rest_var = seq_vars[0]
        fixed = tuple(p for p in pats if p is not rest_var)
        yield from match_commutative_rest(fixed, rest_var, exprs, sub)
        return

    if not seq_vars and len(pats) != len(exprs):
        return
    yield from match_segments(pats, exprs, sub)


def match_permutations(pats: Sequence[Expression], exprs: Sequence[Expression],
                       sub: Substitution) -> Iterator[Substitution]:
    """
    Match pattern elements to expression elements in any order.

    Pattern element i tries each still-unused expression element in turn,
    so substitutions come out in lexicographic order of the bijections.
    """
    if not pats:
        if not exprs:
            yield sub
        return

    first, rest = pats[0], pats[1:]
    for i, candidate in enumerate(exprs):
        remaining = exprs[:i] + exprs[i + 1:]
        for extended in unify(first, candidate, sub):
            yield from match_permutations(rest, remaining, extended)


def match_commutative_rest(fixed: Tuple[Expression, ...], rest_var: SeqVar,
                           exprs: Sequence[Expression], sub: Substitution) -> Iterator[Substitution]:
    """
    Match a commutative pattern holding one sequence variable.

    Each size-k subset of the children (k = number of fixed elements) is
    matched against the fixed elements in any order; the complementary
    children, in their original order, are bound to the sequence variable.
    """
    k = len(fixed)
    if len(exprs) < k + rest_var.min:
        return

    for chosen in combinations(range(len(exprs)), k):
        taken = set(chosen)
        leftover = tuple(e for i, e in enumerate(exprs) if i not in taken)
        if not rest_var.accepts_run(leftover):
            continue
        bound = sub.bind_seq(rest_var.name, leftover, unordered=True)
        if not bound:
            continue
        picked = tuple(exprs[i] for i in chosen)
        yield from match_permutations(fixed, picked, bound)


def match_segments(pats: Sequence[Expression], exprs: Sequence[Expression],
                   sub: Substitution) -> Iterator[Substitution]:
    """
    Match an ordered pattern whose sequence variables absorb contiguous runs.

    Split lengths are chosen left to right, shortest first, reserving
    enough children for the minimum length of the rest of the pattern.
    Without sequence variables this is plain positional matching.
    """
    # reserve[i]: children needed by pats[i:]
    reserve = [0] * (len(pats) + 1)
    for i in range(len(pats) - 1, -1, -1):
        p = pats[i]
        reserve[i] = reserve[i + 1] + (p.min if isinstance(p, SeqVar) else 1)

    def segment(pi: int, ei: int, current: Substitution) -> Iterator[Substitution]:
        if pi == len(pats):
            if ei == len(exprs):
                yield current
            return

        head = pats[pi]
        if isinstance(head, SeqVar):
            longest = len(exprs) - ei - reserve[pi + 1]
            for size in range(head.min, longest + 1):
                run = tuple(exprs[ei:ei + size])
                if not head.accepts_run(run):
                    continue
                bound = current.bind_seq(head.name, run)
                if bound:
                    yield from segment(pi + 1, ei + size, bound)
            return

        if ei >= len(exprs):
            return
        for extended in unify(head, exprs[ei], current):
            yield from segment(pi + 1, ei + 1, extended)

    if reserve[0] > len(exprs):
        return
    yield from segment(0, 0, sub)


def match(pattern: Expression, expr: Expression,
          extractors: Optional[ExtractorRegistry] = None,
          sub: Optional[Substitution] = None) -> Iterator[Substitution]:
    """
    Match a pattern against an expression, lazily yielding substitutions.

    The pattern is compiled against the extractor registry first, so raw
    parsed patterns can be passed directly.

    Strings are parsed as s-expressions.

    Example:
        for sub in match("(+ 0 ?&*)", E("(+ 1 0 3)")):
            print(sub["&*"])   # (Literal(1), Literal(3))
    """
    if isinstance(pattern, str):
        pattern = parse_sexpr(pattern)
    if isinstance(expr, str):
        expr = parse_sexpr(expr)
    if extractors is None:
        from .extractors import DEFAULT_EXTRACTORS
        extractors = DEFAULT_EXTRACTORS
    compiled = compile_pattern(pattern, extractors)
    return unify(compiled, expr, sub if sub is not None else EMPTY)
