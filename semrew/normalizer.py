"""
Bottom-up normalization to a fixpoint.

normalize(rules, expr) rewrites every child of expr to normal form first,
then scans the rules in order at the node itself. The first rule that
rewrites the node fires, the new node is normalized again (children first)
and the scan restarts. A node is in normal form once a full scan fires no
rule; the RuleSet remembers it, so later traversals skip subtrees already
known to be stable. Expressions are immutable and hashed structurally, so a
rewritten node and every ancestor rebuilt around it are new cache keys.

Termination is the caller's concern: a cyclic rule set loops forever unless
max_steps is given.
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Executor
from typing import Callable, Iterable, Iterator, List, Optional, Tuple, Union

from .errors import RewriteLimitExceeded
from .expr import Compound, Expression
from .rewriter import Rule

logger = logging.getLogger(__name__)

# listener(rule, before, after)
Listener = Callable[[Rule, Expression, Expression], None]


DEFAULT_CACHE_LIMIT = 4096


class RuleSet:
    """
    An ordered, immutable sequence of rules owning a normal-form cache.

    The cache records expressions known to be in normal form for exactly
    these rules. It holds at most cache_limit entries, evicting the least
    recently used; cache_limit=None keeps every entry. It is guarded by a
    lock so one RuleSet may be shared by concurrent normalizations.
    """

    __slots__ = ('_rules', '_normal', '_lock', 'cache_limit')

    def __init__(self, rules: Iterable[Rule] = (),
                 cache_limit: Optional[int] = DEFAULT_CACHE_LIMIT):
        if cache_limit is not None and cache_limit < 1:
            raise ValueError(f"cache_limit must be positive, got {cache_limit}")
        self._rules: Tuple[Rule, ...] = tuple(rules)
        self._normal: 'OrderedDict[Expression, None]' = OrderedDict()
        self._lock = threading.Lock()
        self.cache_limit = cache_limit

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rules

    def is_normal(self, expr: Expression) -> bool:
        with self._lock:
            if expr in self._normal:
                self._normal.move_to_end(expr)
                return True
            return False

    def mark_normal(self, expr: Expression) -> None:
        with self._lock:
            self._normal[expr] = None
            self._normal.move_to_end(expr)
            if self.cache_limit is not None:
                while len(self._normal) > self.cache_limit:
                    self._normal.popitem(last=False)

    def clear_cache(self) -> None:
        with self._lock:
            self._normal.clear()

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._normal)

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __getitem__(self, index: int) -> Rule:
        return self._rules[index]

    def __repr__(self) -> str:
        return f"RuleSet({len(self._rules)} rules)"


class _StepBudget:
    """Counts rewrites across workers and enforces max_steps."""

    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        self.used = 0
        self._lock = threading.Lock()

    def spend(self, expr: Expression) -> None:
        with self._lock:
            if self.used >= self.max_steps:
                raise RewriteLimitExceeded(self.max_steps, partial=expr)
            self.used += 1


def _rebuild(expr: Compound, children: List[Expression]) -> Compound:
    if all(new is old for new, old in zip(children, expr.children)):
        return expr
    return expr.with_children(children)


def _first_rewrite(rules: Iterable[Rule], expr: Expression) -> Tuple[Optional[Expression], Optional[Rule]]:
    # A rewrite that reproduces its input does not count as firing
    for rule in rules:
        result = rule.apply(expr)
        if result is not None and result != expr:
            return result, rule
    return None, None


class _Normalizer:

    def __init__(self, ruleset: RuleSet, budget: Optional[_StepBudget],
                 listener: Optional[Listener]):
        self.ruleset = ruleset
        self.budget = budget
        self.listener = listener

    def run(self, expr: Expression) -> Expression:
        ruleset = self.ruleset
        while True:
            if ruleset.is_normal(expr):
                return expr
            if isinstance(expr, Compound) and expr.children:
                expr = _rebuild(expr, [self.run(child) for child in expr.children])
                if ruleset.is_normal(expr):
                    return expr

            result, rule = _first_rewrite(ruleset, expr)
            if rule is None:
                ruleset.mark_normal(expr)
                return expr

            if self.budget is not None:
                self.budget.spend(expr)
            logger.debug("%s: %s -> %s", rule.name or "<anonymous>", expr, result)
            if self.listener is not None:
                self.listener(rule, expr, result)
            expr = result


def normalize(rules: Union[RuleSet, Iterable[Rule]], expr: Expression, *,
              max_steps: Optional[int] = None,
              listener: Optional[Listener] = None,
              executor: Optional[Executor] = None) -> Expression:
    """
    Rewrite expr to normal form with respect to rules.

    Args:
        rules: A RuleSet (its normal-form cache is reused across calls) or
            any ordered iterable of rules (a fresh cache per call).
        expr: Expression to normalize.
        max_steps: Optional bound on the total number of rewrites. When it
            is exhausted RewriteLimitExceeded is raised carrying the subterm
            being rewritten. Unbounded by default.
        listener: Called as listener(rule, before, after) for every rewrite.
            With an executor it may be called from worker threads.
        executor: Optional concurrent.futures.Executor. The children of the
            root compound are normalized on it and joined before the root's
            own rule scan.

    Returns:
        The normal form. An expression already in normal form is returned
        unchanged.

    Example:
        rules = [
            define_rule("(+ 0 ?&*)", "(+ ?&*)"),
            define_rule("(+ ?x)", "?x"),
        ]
        normalize(rules, E("(+ 0 (+ 0 x))"))  # => Variable('x')
    """
    ruleset = rules if isinstance(rules, RuleSet) else RuleSet(rules)
    budget = _StepBudget(max_steps) if max_steps is not None else None
    driver = _Normalizer(ruleset, budget, listener)

    if executor is not None and isinstance(expr, Compound) and expr.children \
            and not ruleset.is_normal(expr):
        children = list(executor.map(driver.run, expr.children))
        expr = _rebuild(expr, children)

    return driver.run(expr)


def rewrite_once(rules: Iterable[Rule], expr: Expression) -> Tuple[Expression, Optional[Rule]]:
    """
    Apply at most one rule anywhere in the tree.

    The root is tried first, then children depth-first, left to right.

    Returns:
        (result, rule) where rule is None when nothing fired.
    """
    rules = tuple(rules)
    result, rule = _first_rewrite(rules, expr)
    if rule is not None:
        return result, rule
    if isinstance(expr, Compound):
        for i, child in enumerate(expr.children):
            new_child, rule = rewrite_once(rules, child)
            if rule is not None:
                children = list(expr.children)
                children[i] = new_child
                return expr.with_children(children), rule
    return expr, None
