"""
Pattern nodes and pattern compilation.

Patterns are ordinary expression trees that may also contain:

    LVar("x")                  - binds exactly one expression      (?x)
    LVar("c", kind="const")    - binds a literal only              (?c:const)
    LVar("v", kind="var")      - binds a variable only             (?v:var)
    LVar("f", free_of="x")     - binds an expression without x     (?f:free(x))
    SeqVar("&*")               - binds a run of zero or more       (?&*)
    SeqVar("&+", min=1)        - binds a run of one or more        (?&+)
    ExtractorApp(zero, [?x])   - semantic predicate application    ((zero? ?x))

compile_pattern() resolves extractor applications against an
ExtractorRegistry and checks that no commutative compound holds more than
one sequence variable.
"""

from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .errors import RuleConstructionError
from .expr import Compound, Expression, Literal, MatcherClass, Variable, free_in

VAR = "var"
SEQ = "seq"


class LVar(Expression):
    """A plain pattern variable, optionally constrained."""

    __slots__ = ('name', 'kind', 'free_of')

    def __init__(self, name: str, kind: Optional[str] = None, free_of: Optional[str] = None):
        if kind not in (None, "const", "var"):
            raise RuleConstructionError(f"Unknown variable constraint '{kind}'")
        object.__setattr__(self, 'name', name)
        object.__setattr__(self, 'kind', kind)
        object.__setattr__(self, 'free_of', free_of)

    def accepts(self, expr: Expression, sub) -> bool:
        """Check the variable's constraint against a candidate expression."""
        if self.kind == "const" and not _is_constant(expr):
            return False
        if self.kind == "var" and not isinstance(expr, Variable):
            return False
        if self.free_of is not None:
            # The excluded symbol may itself be a bound pattern variable
            target = sub.get(self.free_of, Variable(self.free_of))
            if not isinstance(target, Variable):
                return False
            return not free_in(target.name, expr)
        return True

    def __eq__(self, other):
        if isinstance(other, LVar):
            return (self.name, self.kind, self.free_of) == (other.name, other.kind, other.free_of)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(('lvar', self.name, self.kind, self.free_of))

    def __repr__(self) -> str:
        return f"LVar({self.name!r})"


class SeqVar(Expression):
    """A sequence pattern variable binding a run of expressions."""

    __slots__ = ('name', 'min', 'kind')

    def __init__(self, name: str, min: int = 0, kind: Optional[str] = None):
        if min not in (0, 1):
            raise RuleConstructionError(f"Sequence variable minimum must be 0 or 1, got {min}")
        object.__setattr__(self, 'name', name)
        object.__setattr__(self, 'min', min)
        object.__setattr__(self, 'kind', kind)

    def accepts_run(self, run: Tuple[Expression, ...]) -> bool:
        if len(run) < self.min:
            return False
        if self.kind == "const":
            return all(_is_constant(e) for e in run)
        if self.kind == "var":
            return all(isinstance(e, Variable) for e in run)
        return True

    def __eq__(self, other):
        if isinstance(other, SeqVar):
            return (self.name, self.min, self.kind) == (other.name, other.min, other.kind)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(('seqvar', self.name, self.min, self.kind))

    def __repr__(self) -> str:
        return f"SeqVar({self.name!r}, min={self.min})"


def _is_constant(expr: Expression) -> bool:
    return isinstance(expr, Literal)


# ============================================================
# Extractors
# ============================================================

# relation(args, expr, sub) -> lazy substitutions
Relation = Callable[[Tuple[Expression, ...], Expression, object], Iterator[object]]


class Extractor:
    """A named semantic predicate with its own matching relation."""

    __slots__ = ('name', 'relation', 'description')

    def __init__(self, name: str, relation: Relation, description: Optional[str] = None):
        self.name = name
        self.relation = relation
        self.description = description

    def __repr__(self) -> str:
        return f"Extractor({self.name!r})"


class ExtractorApp(Expression):
    """An extractor applied to argument patterns inside a pattern."""

    __slots__ = ('extractor', 'args')

    matcher_class = MatcherClass.EXTRACTOR

    def __init__(self, extractor: Extractor, args: Iterable[Expression] = ()):
        object.__setattr__(self, 'extractor', extractor)
        object.__setattr__(self, 'args', tuple(args))

    @property
    def name(self) -> str:
        return self.extractor.name

    def __eq__(self, other):
        if isinstance(other, ExtractorApp):
            return self.name == other.name and self.args == other.args
        return NotImplemented

    def __hash__(self) -> int:
        return hash(('extract', self.name, self.args))

    def __repr__(self) -> str:
        return f"ExtractorApp({self.name!r}, {list(self.args)!r})"


class ExtractorRegistry:
    """Immutable lookup from extractor name to Extractor."""

    __slots__ = ('_extractors',)

    def __init__(self, extractors: Iterable[Extractor] = ()):
        self._extractors: Dict[str, Extractor] = {e.name: e for e in extractors}

    def get(self, name: str) -> Optional[Extractor]:
        return self._extractors.get(name)

    def extend(self, extractors: Iterable[Extractor]) -> 'ExtractorRegistry':
        """Return a new registry with additional (or overriding) extractors."""
        return ExtractorRegistry(list(self._extractors.values()) + list(extractors))

    def names(self) -> List[str]:
        return sorted(self._extractors)

    def __contains__(self, name: str) -> bool:
        return name in self._extractors

    def __len__(self) -> int:
        return len(self._extractors)

    def __repr__(self) -> str:
        return f"ExtractorRegistry({self.names()})"


# ============================================================
# Compilation and validation
# ============================================================

def compile_pattern(pattern: Expression, extractors: ExtractorRegistry) -> Expression:
    """
    Resolve extractor applications and validate sequence variables.

    Raises:
        RuleConstructionError: unknown extractor, or more than one sequence
            variable directly inside a commutative compound.
    """
    if isinstance(pattern, Compound):
        if pattern.props.matcher_class is MatcherClass.EXTRACTOR or pattern.op in extractors:
            extractor = extractors.get(pattern.op)
            if extractor is None:
                raise RuleConstructionError(f"Unknown extractor '{pattern.op}'")
            return ExtractorApp(extractor, [compile_pattern(a, extractors) for a in pattern.children])

        children = [compile_pattern(c, extractors) for c in pattern.children]
        seq_vars = [c for c in children if isinstance(c, SeqVar)]
        if pattern.props.commutative and len(seq_vars) > 1:
            names = ", ".join(v.name for v in seq_vars)
            raise RuleConstructionError(
                f"Commutative pattern ({pattern.op} ...) may hold at most one "
                f"sequence variable, found: {names}"
            )
        return pattern.with_children(children)
    return pattern


def pattern_variables(pattern: Expression) -> Dict[str, str]:
    """Map every variable a pattern can bind to VAR or SEQ."""
    found: Dict[str, str] = {}

    def walk(p):
        if isinstance(p, LVar):
            found.setdefault(p.name, VAR)
        elif isinstance(p, SeqVar):
            found.setdefault(p.name, SEQ)
        elif isinstance(p, ExtractorApp):
            for arg in p.args:
                walk(arg)
        elif isinstance(p, Compound):
            for child in p.children:
                walk(child)

    walk(pattern)
    return found


def template_references(template: Expression) -> List[Tuple[str, str]]:
    """List the (name, VAR|SEQ) references made by a template or guard."""
    refs: List[Tuple[str, str]] = []

    def walk(t):
        if isinstance(t, LVar):
            refs.append((t.name, VAR))
        elif isinstance(t, SeqVar):
            refs.append((t.name, SEQ))
        elif isinstance(t, Compound):
            for child in t.children:
                walk(child)

    walk(template)
    return refs


def check_references(template: Expression, bound: Mapping[str, str], role: str) -> None:
    """
    Ensure a template only refers to variables the pattern binds.

    Raises:
        RuleConstructionError: on an unbound name or a plain/sequence mismatch.
    """
    for name, kind in template_references(template):
        if name not in bound:
            raise RuleConstructionError(f"{role} refers to '{name}', which the pattern does not bind")
        if bound[name] != kind:
            expected = "a sequence" if bound[name] == SEQ else "a plain"
            raise RuleConstructionError(f"{role} uses '{name}' inconsistently: the pattern binds it as {expected} variable")
