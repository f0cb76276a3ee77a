"""
Rules: definition, instantiation and single-rule application.

A rule is an immutable (pattern, guard, transform) triple. Applying a rule
pulls candidate substitutions from the matcher in enumeration order; the
first candidate that passes the guard and whose transform succeeds decides
the result ("first success wins"). A rule that does not apply yields None,
never an error.

Templates use the skeleton syntax:

    ?x  :x              - substitute the binding of x
    ?&*  :xs...         - splice a bound run into the enclosing compound
    (! op args...)      - compute op over the instantiated args via a prelude

Guards are either callables over the Substitution or expressions evaluated
with the rule's prelude:

    define_rule("(° ?&*1 ?x ?&*2 ?y ?&*3)", "(° ?&*1 ?y ?&*2 ?x ?&*3)",
                guard="(> ?y ?x)")
"""

from typing import Any, Callable, Iterable, Iterator, Optional, Union

from .errors import RuleConstructionError, SexprSyntaxError
from .expr import DEFAULT_SYMBOLS, Compound, Expression, Literal, OperatorProperties, SymbolTable, Variable, to_expr
from .extractors import DEFAULT_EXTRACTORS
from .matcher import unify
from .pattern import ExtractorRegistry, LVar, SeqVar, check_references, compile_pattern, pattern_variables
from .prelude import FULL_PRELUDE, FoldFuncsType
from .sexpr import format_sexpr, parse_sexpr
from .substitution import EMPTY, NoMatch, Substitution

COMPUTE = "!"

TransformFunc = Callable[[Substitution], Any]
GuardFunc = Callable[[Substitution], Any]


# ============================================================
# Native values for fold handlers
# ============================================================

def to_native(expr: Expression) -> Any:
    """Literal -> value, Variable -> name, Compound -> [op, *args]."""
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, Variable):
        return expr.name
    if isinstance(expr, Compound):
        return [expr.op] + [to_native(c) for c in expr.children]
    return format_sexpr(expr)


def fold(op: str, args, prelude: FoldFuncsType,
         props: Optional[OperatorProperties] = None,
         symbols: Optional[SymbolTable] = None) -> Expression:
    """
    Evaluate op over args with the prelude handler, if any.

    Only scalar results (numbers and booleans) are accepted. A missing
    handler, a None result, or an arithmetic error leaves (op args...)
    unevaluated.
    """
    args = tuple(args)
    handler = prelude.get(op)
    if handler is not None:
        try:
            result = handler([to_native(a) for a in args])
        except (TypeError, ValueError, ZeroDivisionError, OverflowError):
            result = None
        if isinstance(result, (bool, int, float)):
            # Preserve integer type for numeric results
            if isinstance(result, float) and result.is_integer():
                return Literal(int(result))
            return Literal(result)
    if props is None:
        props = (symbols if symbols is not None else DEFAULT_SYMBOLS).lookup(op)
    return Compound(op, args, props)


def evaluate(expr: Expression, prelude: FoldFuncsType,
             symbols: Optional[SymbolTable] = None) -> Expression:
    """Fold, bottom-up, every compound whose operator the prelude knows."""
    if not isinstance(expr, Compound):
        return expr
    if _is_compute(expr):
        op = expr.children[0].name
        args = [evaluate(c, prelude, symbols) for c in expr.children[1:]]
        return fold(op, args, prelude, symbols=symbols)
    args = [evaluate(c, prelude, symbols) for c in expr.children]
    if expr.op in prelude:
        return fold(expr.op, args, prelude, props=expr.props)
    return expr.with_children(args)


def _is_compute(expr: Compound) -> bool:
    return expr.op == COMPUTE and bool(expr.children) and isinstance(expr.children[0], Variable)


# ============================================================
# Instantiation
# ============================================================

def instantiate(template: Expression, sub: Substitution,
                prelude: Optional[FoldFuncsType] = None,
                symbols: Optional[SymbolTable] = None) -> Expression:
    """
    Instantiate a template with a substitution.

    Bound plain variables are substituted, bound runs are spliced into the
    enclosing compound (which keeps the template compound's properties),
    and compute forms are evaluated with the prelude.
    """
    if isinstance(template, LVar):
        return sub[template.name]
    if isinstance(template, SeqVar):
        run = sub[template.name]
        if len(run) != 1:
            raise ValueError(f"Cannot place the {len(run)}-element run '{template.name}' outside a compound")
        return run[0]
    if isinstance(template, Compound):
        children = []
        for child in template.children:
            if isinstance(child, SeqVar):
                children.extend(sub[child.name])
            else:
                children.append(instantiate(child, sub, prelude, symbols))
        if template.op == COMPUTE and children and isinstance(children[0], Variable):
            return fold(children[0].name, children[1:], prelude or {}, symbols=symbols)
        return template.with_children(children)
    return template


# ============================================================
# Rules
# ============================================================

class RuleMetadata:
    """Metadata for a rule: name, description, group tags and priority."""

    __slots__ = ('name', 'description', 'tags', 'priority')

    def __init__(self, name: Optional[str] = None, description: Optional[str] = None,
                 tags: Iterable[str] = (), priority: int = 0):
        self.name = name
        self.description = description
        self.tags = tuple(tags or ())
        self.priority = priority  # Higher priority fires first (default: 0)

    def replace(self, **changes) -> 'RuleMetadata':
        fields = {
            'name': self.name,
            'description': self.description,
            'tags': self.tags,
            'priority': self.priority,
        }
        fields.update(changes)
        return RuleMetadata(**fields)

    def label(self) -> str:
        """The rule header in DSL form, e.g. @add-zero[10] "doc"."""
        if not self.name:
            return ""
        base = f"@{self.name}[{self.priority}]" if self.priority != 0 else f"@{self.name}"
        if self.description:
            base += f" \"{self.description}\""
        return base

    def __eq__(self, other):
        if isinstance(other, RuleMetadata):
            return ((self.name, self.description, self.tags, self.priority)
                    == (other.name, other.description, other.tags, other.priority))
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self.name, self.description, self.tags, self.priority))

    def __repr__(self) -> str:
        return self.label() or "<anonymous>"


class Rule:
    """
    An immutable rewrite rule.

    Build rules with define_rule(), which compiles and validates them.
    """

    __slots__ = ('pattern', 'transform', 'guard', 'metadata', 'prelude', 'symbols')

    def __init__(self, pattern: Expression,
                 transform: Union[Expression, TransformFunc],
                 guard: Union[None, Expression, GuardFunc] = None,
                 metadata: Optional[RuleMetadata] = None,
                 prelude: Optional[FoldFuncsType] = None,
                 symbols: Optional[SymbolTable] = None):
        object.__setattr__(self, 'pattern', pattern)
        object.__setattr__(self, 'transform', transform)
        object.__setattr__(self, 'guard', guard)
        object.__setattr__(self, 'metadata', metadata if metadata is not None else RuleMetadata())
        object.__setattr__(self, 'prelude', prelude if prelude is not None else FULL_PRELUDE)
        object.__setattr__(self, 'symbols', symbols if symbols is not None else DEFAULT_SYMBOLS)

    def __setattr__(self, name, value):
        raise AttributeError("Rule is immutable")

    @property
    def name(self) -> Optional[str]:
        return self.metadata.name

    @property
    def is_template(self) -> bool:
        """True when both transform and guard are expressions (serializable)."""
        return isinstance(self.transform, Expression) and (
            self.guard is None or isinstance(self.guard, Expression))

    def candidates(self, expr: Expression) -> Iterator[Substitution]:
        """Lazily enumerate the pattern's matches, before the guard."""
        return unify(self.pattern, expr, EMPTY)

    def accepts(self, sub: Substitution) -> bool:
        """Evaluate the guard over a candidate substitution."""
        guard = self.guard
        if guard is None:
            return True
        if isinstance(guard, Expression):
            verdict = evaluate(instantiate(guard, sub, self.prelude, self.symbols),
                               self.prelude, self.symbols)
            return isinstance(verdict, Literal) and not isinstance(verdict.value, tuple) and bool(verdict.value)
        result = guard(sub)
        if isinstance(result, Iterator):
            return next(result, _EXHAUSTED) is not _EXHAUSTED
        return bool(result)

    def produce(self, sub: Substitution) -> Optional[Expression]:
        """Run the transform; None means it failed for this substitution."""
        transform = self.transform
        if isinstance(transform, Expression):
            return instantiate(transform, sub, self.prelude, self.symbols)
        result = transform(sub)
        if isinstance(result, Iterator):
            result = next(result, None)
        if result is None:
            return None
        return to_expr(result, self.symbols)

    def match(self, expr: Expression) -> Union[Substitution, type(NoMatch)]:
        """First substitution passing the guard, or NoMatch."""
        for sub in self.candidates(expr):
            if self.accepts(sub):
                return sub
        return NoMatch

    def apply(self, expr: Expression) -> Optional[Expression]:
        """Apply the rule at the root of expr; None when it does not fire."""
        for sub in self.candidates(expr):
            if not self.accepts(sub):
                continue
            result = self.produce(sub)
            if result is not None:
                return result
        return None

    def with_metadata(self, **changes) -> 'Rule':
        """A copy of this rule with updated metadata fields."""
        return Rule(self.pattern, self.transform, self.guard,
                    self.metadata.replace(**changes), self.prelude, self.symbols)

    def to_dsl(self) -> str:
        """Format as a DSL rule line. Raises ValueError for callable parts."""
        if not self.is_template:
            raise ValueError(f"Rule {self.metadata!r} has a callable transform or guard and has no DSL form")
        label = self.metadata.label()
        line = f"{label}: " if label else ""
        line += f"{format_sexpr(self.pattern)} => {format_sexpr(self.transform)}"
        if self.guard is not None:
            line += f" when {format_sexpr(self.guard)}"
        return line

    def __call__(self, expr: Expression) -> Optional[Expression]:
        return self.apply(expr)

    def __repr__(self) -> str:
        transform = format_sexpr(self.transform) if isinstance(self.transform, Expression) else "<function>"
        return f"Rule({self.metadata!r}: {format_sexpr(self.pattern)} => {transform})"


_EXHAUSTED = object()


def _as_expression(spec: Any, symbols: SymbolTable, role: str) -> Expression:
    if isinstance(spec, str):
        try:
            expr = parse_sexpr(spec, symbols)
        except SexprSyntaxError as e:
            raise RuleConstructionError(f"Malformed {role}: {e}") from e
        if expr is None:
            raise RuleConstructionError(f"Empty {role}")
        return expr
    try:
        return to_expr(spec, symbols)
    except (TypeError, ValueError) as e:
        raise RuleConstructionError(f"Malformed {role}: {e}") from e


def define_rule(pattern: Any, transform: Any, guard: Any = None, *,
                name: Optional[str] = None,
                description: Optional[str] = None,
                tags: Iterable[str] = (),
                priority: int = 0,
                symbols: Optional[SymbolTable] = None,
                extractors: Optional[ExtractorRegistry] = None,
                prelude: Optional[FoldFuncsType] = None) -> Rule:
    """
    Define and validate a rule.

    Args:
        pattern: Pattern as an s-expression string, nested list or Expression.
        transform: Template (string, list or Expression), or a callable
            taking the Substitution and returning an Expression, None
            (failure) or an iterator of results.
        guard: None, a guard expression, or a callable over the Substitution.
        name, description, tags, priority: Rule metadata.
        symbols: Operator properties used when parsing (default DEFAULT_SYMBOLS).
        extractors: Extractor registry (default DEFAULT_EXTRACTORS).
        prelude: Fold handlers for guards and compute forms (default FULL_PRELUDE).

    Raises:
        RuleConstructionError: malformed pattern, more than one sequence
            variable in a commutative compound, unknown extractor, or a
            template/guard referring to variables the pattern does not bind.

    Example:
        rule = define_rule("(+ 0 ?x)", "?x", name="add-zero")
        apply_rule(rule, E("(+ 2 0)"))  # => Literal(2)
    """
    symbols = symbols if symbols is not None else DEFAULT_SYMBOLS
    extractors = extractors if extractors is not None else DEFAULT_EXTRACTORS
    prelude = prelude if prelude is not None else FULL_PRELUDE

    compiled = compile_pattern(_as_expression(pattern, symbols, "pattern"), extractors)
    bound = pattern_variables(compiled)

    if not callable(transform):
        transform = _as_expression(transform, symbols, "transform")
        if isinstance(transform, SeqVar):
            raise RuleConstructionError(
                f"Sequence variable '{transform.name}' cannot stand alone as a template; "
                f"wrap it in a compound"
            )
        check_references(transform, bound, "Transform")

    if guard is not None and not callable(guard):
        guard = _as_expression(guard, symbols, "guard")
        check_references(guard, bound, "Guard")

    metadata = RuleMetadata(name=name, description=description, tags=tags, priority=priority)
    return Rule(compiled, transform, guard, metadata, prelude, symbols)


def apply_rule(rule: Rule, expr: Expression) -> Optional[Expression]:
    """
    Apply a rule at the root of expr.

    Returns the rewritten expression, or None when no candidate match
    passes the guard and transforms successfully.
    """
    return rule.apply(expr)
