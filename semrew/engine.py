"""
RuleEngine: a convenient front end over rules and the normalizer.

Loads rules from DSL text, files or Python data, orders them by priority,
manages rule groups and exposes matching, single-step application and
normalization with optional tracing.

Example:
    from semrew import RuleEngine, E

    engine = RuleEngine.from_dsl('''
        @remove-zero: (+ 0 ?&*) => (+ ?&*)
        @unary-plus:  (+ ?x) => ?x
        @nullary-plus: (+) => 0
    ''')
    engine(E("(+ 0 1 0 2)"))     # => (+ 1 2)
"""

import json
import logging
from concurrent.futures import Executor
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

from .dsl import load_rules_from_dsl, load_rules_from_file
from .expr import DEFAULT_SYMBOLS, Expression, SymbolTable, to_expr
from .extractors import DEFAULT_EXTRACTORS
from .matcher import match as match_pattern
from .normalizer import DEFAULT_CACHE_LIMIT, RuleSet, normalize, rewrite_once
from .pattern import ExtractorRegistry
from .prelude import FULL_PRELUDE, FoldFuncsType
from .rewriter import Rule, RuleMetadata, define_rule
from .sexpr import format_sexpr, parse_sexpr
from .substitution import NoMatch, Substitution

logger = logging.getLogger(__name__)

STRATEGIES = ("normalize", "once")


class RewriteStep:
    """A single step in a rewriting trace."""

    def __init__(self, rule_index: int, rule: Rule,
                 before: Expression, after: Expression):
        self.rule_index = rule_index
        self.rule = rule
        self.before = before
        self.after = after

    @property
    def metadata(self) -> RuleMetadata:
        return self.rule.metadata

    @property
    def name(self) -> str:
        return self.rule.name or f"rule[{self.rule_index}]"

    def __repr__(self) -> str:
        return f"{self.name}: {format_sexpr(self.before)} -> {format_sexpr(self.after)}"

    def to_dict(self) -> Dict:
        """Convert step to dictionary for serialization."""
        return {
            "rule_index": self.rule_index,
            "rule_name": self.rule.name,
            "description": self.metadata.description,
            "before": format_sexpr(self.before),
            "after": format_sexpr(self.after),
        }


class RewriteTrace:
    """
    A trace of all rewriting steps applied.

    Formatting options:
        - repr / format("verbose"): multi-line before/after listing
        - format("compact"): single line showing the rule chain
        - format("rules"): just the rule names applied
        - format("chain"): expression transformations as a chain
        - to_dict(): JSON-serializable dictionary
    """

    def __init__(self, initial: Optional[Expression] = None):
        self.steps: List[RewriteStep] = []
        self.initial = initial
        self.final = initial

    def add_step(self, step: RewriteStep) -> None:
        self.steps.append(step)

    def format(self, style: str = "verbose") -> str:
        if style == "compact":
            return (f"{format_sexpr(self.initial)} --[{', '.join(self.rules_applied())}]--> "
                    f"{format_sexpr(self.final)}")

        if style == "rules":
            names = self.rules_applied()
            return " -> ".join(names) if names else "(no rules applied)"

        if style == "chain":
            parts = [format_sexpr(self.initial)]
            for step in self.steps:
                parts.append(f"  --({step.name})-->")
                parts.append(format_sexpr(step.after))
            return "\n".join(parts)

        if style != "verbose":
            raise ValueError(f"Unknown trace style: {style}. "
                             f"Valid options: verbose, compact, rules, chain")
        return repr(self)

    def __repr__(self) -> str:
        lines = [f"Initial: {format_sexpr(self.initial)}"]
        for i, step in enumerate(self.steps, 1):
            if step.metadata.description:
                lines.append(f"  {i}. {step} ({step.metadata.description})")
            else:
                lines.append(f"  {i}. {step}")
        lines.append(f"Final: {format_sexpr(self.final)}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[RewriteStep]:
        return iter(self.steps)

    def __bool__(self) -> bool:
        """True if any rewriting was done."""
        return len(self.steps) > 0

    def to_dict(self) -> Dict:
        return {
            "initial": format_sexpr(self.initial),
            "final": format_sexpr(self.final),
            "steps": [step.to_dict() for step in self.steps],
            "step_count": len(self.steps),
        }

    def rule_counts(self) -> Dict[str, int]:
        """Count how many times each rule was applied."""
        counts: Dict[str, int] = {}
        for step in self.steps:
            counts[step.name] = counts.get(step.name, 0) + 1
        return counts

    def rules_applied(self) -> List[str]:
        """Rule names in order of application."""
        return [step.name for step in self.steps]

    def summary(self) -> str:
        if not self.steps:
            return "No rewriting performed"
        counts = self.rule_counts()
        most_used = max(counts.items(), key=lambda x: x[1])
        return (f"{len(self.steps)} steps using {len(counts)} unique rules. "
                f"Most used: {most_used[0]} ({most_used[1]}x)")


class RuleEngine:
    """
    A rule engine that loads and applies rewriting rules.

    The prelude supplies the fold handlers used by rule guards and by
    (! op ...) compute forms; it defaults to FULL_PRELUDE. The symbol
    table and extractor registry are used when rules are parsed. The
    normal-form cache kept between simplify calls holds at most cache_limit
    expressions (None for no limit).

    Example:
        engine = RuleEngine.from_dsl('''
            @add-zero "Adding zero has no effect": (+ 0 ?x) => ?x
            @fold: (* ?a:const ?b:const) => (! * :a :b)
        ''')
        result, trace = engine.simplify(E("(+ 0 (* 2 3))"), trace=True)
    """

    def __init__(self, prelude: Optional[FoldFuncsType] = None,
                 symbols: Optional[SymbolTable] = None,
                 extractors: Optional[ExtractorRegistry] = None,
                 cache_limit: Optional[int] = DEFAULT_CACHE_LIMIT):
        self._rules: List[Rule] = []
        self._cache_limit = cache_limit
        self._rule_names: Dict[str, int] = {}
        self._ruleset: Optional[RuleSet] = None
        self._prelude: FoldFuncsType = prelude if prelude is not None else FULL_PRELUDE
        self._symbols = symbols if symbols is not None else DEFAULT_SYMBOLS
        self._extractors = extractors if extractors is not None else DEFAULT_EXTRACTORS
        self._disabled_groups: Set[str] = set()

    @property
    def prelude(self) -> FoldFuncsType:
        return self._prelude

    @property
    def symbols(self) -> SymbolTable:
        return self._symbols

    @property
    def extractors(self) -> ExtractorRegistry:
        return self._extractors

    def _changed(self) -> None:
        """Re-sort by priority and drop the cached rule set."""
        # Stable: equal priorities keep their load order
        self._rules.sort(key=lambda rule: -rule.metadata.priority)
        self._rule_names = {}
        for idx, rule in enumerate(self._rules):
            if rule.name:
                self._rule_names[rule.name] = idx
        self._ruleset = None

    def _extend(self, rules) -> 'RuleEngine':
        self._rules.extend(rules)
        self._changed()
        return self

    def load_dsl(self, text: str) -> 'RuleEngine':
        """Load rules from DSL text."""
        return self._extend(load_rules_from_dsl(
            text, symbols=self._symbols, extractors=self._extractors, prelude=self._prelude))

    def load_file(self, path: Union[str, Path]) -> 'RuleEngine':
        """Load rules from a file (.rules or .json)."""
        return self._extend(load_rules_from_file(
            path, symbols=self._symbols, extractors=self._extractors, prelude=self._prelude))

    def load_rules(self, rules: List[Any]) -> 'RuleEngine':
        """
        Load rules from Python data.

        Each entry is a Rule, or a [pattern, transform] / [pattern, transform, guard]
        list whose parts are anything define_rule accepts.
        """
        built = []
        for entry in rules:
            if isinstance(entry, Rule):
                built.append(entry)
            else:
                built.append(define_rule(*entry, symbols=self._symbols,
                                         extractors=self._extractors, prelude=self._prelude))
        return self._extend(built)

    def with_prelude(self, prelude: FoldFuncsType) -> 'RuleEngine':
        """
        Set the prelude for guards and compute forms, rebinding loaded rules.

            engine = RuleEngine().with_prelude(MATH_PRELUDE).load_dsl(...)
        """
        self._prelude = prelude
        self._rules = [Rule(r.pattern, r.transform, r.guard, r.metadata, prelude, r.symbols)
                       for r in self._rules]
        self._changed()
        return self

    def add_rule(self, pattern: Any, transform: Any, guard: Any = None,
                 name: Optional[str] = None,
                 description: Optional[str] = None,
                 priority: int = 0,
                 tags: Tuple[str, ...] = ()) -> 'RuleEngine':
        """Add a single rule with optional metadata."""
        rule = define_rule(pattern, transform, guard, name=name, description=description,
                           priority=priority, tags=tags, symbols=self._symbols,
                           extractors=self._extractors, prelude=self._prelude)
        return self._extend([rule])

    def get_rule(self, name: str) -> Optional[Rule]:
        """Get a rule by name."""
        if name in self._rule_names:
            return self._rules[self._rule_names[name]]
        return None

    # ============================================================
    # Group Management
    # ============================================================

    def disable_group(self, group: str) -> 'RuleEngine':
        """Disable all rules in a group."""
        self._disabled_groups.add(group)
        self._ruleset = None
        return self

    def enable_group(self, group: str) -> 'RuleEngine':
        """Enable all rules in a group."""
        self._disabled_groups.discard(group)
        self._ruleset = None
        return self

    def groups(self) -> Set[str]:
        """Return all group names used by rules."""
        found: Set[str] = set()
        for rule in self._rules:
            found.update(rule.metadata.tags)
        return found

    def _is_rule_active(self, rule: Rule, groups: Optional[List[str]] = None) -> bool:
        """
        Explicit groups select rules tagged with one of them; otherwise a rule
        is active unless one of its groups is disabled. Untagged rules are
        always active.
        """
        tags = rule.metadata.tags
        if not tags:
            return True
        if groups is not None:
            return any(g in groups for g in tags)
        return not any(g in self._disabled_groups for g in tags)

    def active_rules(self, groups: Optional[List[str]] = None) -> List[Rule]:
        return [rule for rule in self._rules if self._is_rule_active(rule, groups)]

    def ruleset(self, groups: Optional[List[str]] = None) -> RuleSet:
        """
        The RuleSet of active rules.

        Without explicit groups the RuleSet (and its normal-form cache) is
        kept until rules or group settings change.
        """
        if groups is not None:
            return RuleSet(self.active_rules(groups))
        if self._ruleset is None:
            self._ruleset = RuleSet(self.active_rules(), cache_limit=self._cache_limit)
        return self._ruleset

    # ============================================================
    # Matching and application
    # ============================================================

    def _expr(self, expr: Any) -> Expression:
        if isinstance(expr, str):
            return parse_sexpr(expr, self._symbols)
        return to_expr(expr, self._symbols)

    def match_all(self, pattern: Any, expr: Any) -> Iterator[Substitution]:
        """Lazily yield every substitution under which pattern matches expr."""
        return match_pattern(self._expr(pattern), self._expr(expr), self._extractors)

    def match(self, pattern: Any, expr: Any) -> Union[Substitution, type(NoMatch)]:
        """
        Match a pattern against an expression.

        Returns the first Substitution, or NoMatch (falsy).

        Example:
            if sub := engine.match("(+ ?a ?b)", expr):
                print(sub["a"], sub["b"])
        """
        return next(self.match_all(pattern, expr), NoMatch)

    def apply_once(self, expr: Any, groups: Optional[List[str]] = None) -> Tuple[Expression, Optional[Rule]]:
        """
        Apply at most one rule at the root of the expression.

        Returns:
            (result, rule) where rule is None and result is expr when
            nothing applied.
        """
        expr = self._expr(expr)
        for rule in self.active_rules(groups):
            result = rule.apply(expr)
            if result is not None:
                return result, rule
        return expr, None

    def rules_matching(self, expr: Any, check_conditions: bool = True,
                       groups: Optional[List[str]] = None) -> List[Tuple[Rule, Substitution]]:
        """
        Find all rules whose pattern matches at the root of expr.

        Useful for understanding why an expression isn't simplifying.

        Args:
            check_conditions: If True (default), only rules with a
                candidate passing the guard are reported.
        """
        expr = self._expr(expr)
        matching = []
        for rule in self.active_rules(groups):
            if check_conditions:
                sub = rule.match(expr)
            else:
                sub = next(rule.candidates(expr), NoMatch)
            if sub:
                matching.append((rule, sub))
        return matching

    @property
    def rules(self) -> List[Rule]:
        """All loaded rules, in priority order."""
        return self._rules.copy()

    def simplify(
        self,
        expr: Any,
        trace: bool = False,
        strategy: str = "normalize",
        groups: Optional[List[str]] = None,
        max_steps: Optional[int] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Simplify an expression using the active rules.

        Args:
            expr: Expression (or s-expression string) to simplify
            trace: If True, return (result, trace) tuple
            strategy: Rewriting strategy
                - "normalize": bottom-up to normal form (default)
                - "once": apply at most one rule anywhere in the expression
            groups: If given, only rules from these groups (plus untagged
                rules) are used
            max_steps: Optional rewrite bound; RewriteLimitExceeded when hit
            executor: Optional executor for normalizing root children

        Returns:
            Simplified expression, or (expression, trace) if trace=True
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy: {strategy}. "
                             f"Valid options: {', '.join(STRATEGIES)}")
        expr = self._expr(expr)
        trace_obj = RewriteTrace(expr) if trace else None
        index = {id(rule): i for i, rule in enumerate(self._rules)}

        def record(rule: Rule, before: Expression, after: Expression) -> None:
            trace_obj.add_step(RewriteStep(index.get(id(rule), -1), rule, before, after))

        if strategy == "once":
            result, rule = rewrite_once(self.active_rules(groups), expr)
            if trace_obj is not None and rule is not None:
                record(rule, expr, result)
        else:
            logger.debug("Normalizing %s with %d rules", expr, len(self.ruleset(groups)))
            result = normalize(self.ruleset(groups), expr, max_steps=max_steps,
                               listener=record if trace_obj is not None else None,
                               executor=executor)

        if trace_obj is not None:
            trace_obj.final = result
            return result, trace_obj
        return result

    def clear(self) -> 'RuleEngine':
        """Clear all rules."""
        self._rules = []
        self._changed()
        return self

    # ============================================================
    # Export
    # ============================================================

    def list_rules(self) -> List[str]:
        """All rules in DSL form; callable parts are shown as <function>."""
        lines = []
        for rule in self._rules:
            if rule.is_template:
                lines.append(rule.to_dsl())
            else:
                lines.append(repr(rule))
        return lines

    def to_dsl(self, name: Optional[str] = None) -> str:
        """
        Export rules to DSL text, organized by groups.

        Raises:
            ValueError: a rule has a callable transform or guard.
        """
        lines = []
        if name:
            lines.append(f"# {name}")
            lines.append("")

        current_group = None
        for rule in self._rules:
            rule_group = rule.metadata.tags[0] if rule.metadata.tags else None
            if rule_group != current_group:
                if rule_group:
                    if lines and lines[-1] != "":
                        lines.append("")
                    lines.append(f"[{rule_group}]")
                current_group = rule_group
            lines.append(rule.to_dsl())

        return "\n".join(lines)

    def to_dict(self) -> Dict:
        """
        Export rules to a JSON-compatible dictionary.

        Raises:
            ValueError: a rule has a callable transform or guard.
        """
        rules_list = []
        for rule in self._rules:
            if not rule.is_template:
                raise ValueError(f"Rule {rule.metadata!r} has a callable transform or guard")
            meta = rule.metadata
            rule_dict = {
                "pattern": format_sexpr(rule.pattern),
                "skeleton": format_sexpr(rule.transform),
            }
            if meta.name:
                rule_dict["name"] = meta.name
            if meta.description:
                rule_dict["description"] = meta.description
            if meta.priority != 0:
                rule_dict["priority"] = meta.priority
            if rule.guard is not None:
                rule_dict["condition"] = format_sexpr(rule.guard)
            if meta.tags:
                rule_dict["tags"] = list(meta.tags)
            rules_list.append(rule_dict)
        return {"rules": rules_list}

    def to_json(self, name: Optional[str] = None, description: Optional[str] = None,
                indent: Optional[int] = 2) -> str:
        """Export rules as JSON text loadable by load_rules_from_json()."""
        result = self.to_dict()
        if name:
            result["name"] = name
        if description:
            result["description"] = description
        return json.dumps(result, indent=indent)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RuleEngine({len(self._rules)} rules)"

    def __call__(self, expr: Any, **kwargs):
        """engine(expr) is shorthand for engine.simplify(expr)."""
        return self.simplify(expr, **kwargs)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __contains__(self, name: str) -> bool:
        """Check if a named rule exists: 'add-zero' in engine."""
        return name in self._rule_names

    def __getitem__(self, name: str) -> Rule:
        """Get rule by name: engine['add-zero']."""
        if name not in self._rule_names:
            raise KeyError(f"No rule named '{name}'")
        return self._rules[self._rule_names[name]]

    @classmethod
    def from_dsl(cls, text: str, prelude: Optional[FoldFuncsType] = None, **kwargs) -> 'RuleEngine':
        """Create engine from DSL text."""
        return cls(prelude=prelude, **kwargs).load_dsl(text)

    @classmethod
    def from_file(cls, path: Union[str, Path], prelude: Optional[FoldFuncsType] = None,
                  **kwargs) -> 'RuleEngine':
        """Create engine from a rules file."""
        return cls(prelude=prelude, **kwargs).load_file(path)

    @classmethod
    def from_rules(cls, rules: List[Any], prelude: Optional[FoldFuncsType] = None,
                   **kwargs) -> 'RuleEngine':
        """Create engine from Python rule data."""
        return cls(prelude=prelude, **kwargs).load_rules(rules)

    # Combining engines (rule set algebra)
    def copy(self) -> 'RuleEngine':
        new_engine = RuleEngine(prelude=self._prelude, symbols=self._symbols,
                                extractors=self._extractors, cache_limit=self._cache_limit)
        new_engine._rules = self._rules.copy()
        new_engine._disabled_groups = set(self._disabled_groups)
        new_engine._changed()
        return new_engine

    def __or__(self, other: 'RuleEngine') -> 'RuleEngine':
        """Union of two engines: engine1 | engine2."""
        return self.copy()._extend(other.rules)

    def __ior__(self, other: 'RuleEngine') -> 'RuleEngine':
        """In-place union: engine1 |= engine2."""
        return self._extend(other.rules)

    def __rshift__(self, other: 'RuleEngine') -> 'SequencedEngine':
        """
        Sequence two engines: engine1 >> engine2.

        The result runs engine1 to its normal form, then engine2.

        Example:
            expand = RuleEngine.from_dsl("@expand: (square ?x) => (* :x :x)")
            fold = RuleEngine.from_dsl("@fold: (* ?a:const ?b:const) => (! * :a :b)")
            (expand >> fold)(E("(square 3)"))  # => 9
        """
        return SequencedEngine([self, other])


class SequencedEngine:
    """
    An engine that applies several engines in sequence, each to its own
    normal form. Created via the >> operator on RuleEngine.
    """

    def __init__(self, engines: List[RuleEngine]):
        self._engines = list(engines)

    def __call__(self, expr: Any, **kwargs) -> Expression:
        result = expr
        for engine in self._engines:
            result = engine(result, **kwargs)
        return result

    def __rshift__(self, other: Union[RuleEngine, 'SequencedEngine']) -> 'SequencedEngine':
        """Chain another engine: (a >> b) >> c."""
        if isinstance(other, SequencedEngine):
            return SequencedEngine(self._engines + other._engines)
        return SequencedEngine(self._engines + [other])

    def __repr__(self) -> str:
        return f"SequencedEngine({len(self._engines)} phases)"

    def __len__(self) -> int:
        return len(self._engines)

    def __iter__(self) -> Iterator[RuleEngine]:
        return iter(self._engines)
