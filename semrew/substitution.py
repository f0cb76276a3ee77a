"""
Substitutions: immutable binding environments produced by matching.

A plain pattern variable binds to one Expression; a sequence variable binds
to a tuple of Expressions (a run). Binding never mutates: every successful
bind returns a new Substitution, and a conflicting bind returns NoMatch.

    sub = Substitution.empty().bind_var("x", Literal(1))
    sub["x"]                              # => Literal(1)
    sub.bind_var("x", Literal(2))         # => NoMatch
"""

from collections import Counter
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

from .expr import Expression

Binding = Union[Expression, Tuple[Expression, ...]]


class Substitution:
    """
    Dict-like, immutable mapping from pattern variable names to bindings.

    Substitutions are always truthy (even when empty); failed matches are
    represented by the falsy NoMatch singleton, so the usual idiom works:

        if sub := engine.match("(+ ?a ?b)", expr):
            print(sub["a"], sub["b"])
    """

    __slots__ = ('_dict',)

    def __init__(self, bindings: Optional[Mapping[str, Binding]] = None):
        self._dict: Dict[str, Binding] = dict(bindings or {})

    @classmethod
    def empty(cls) -> 'Substitution':
        """The identity substitution."""
        return EMPTY

    def bind_var(self, name: str, value: Expression) -> Union['Substitution', '_NoMatch']:
        """Bind a plain variable, or check consistency with an existing binding."""
        existing = self._dict.get(name, _UNBOUND)
        if existing is _UNBOUND:
            return Substitution({**self._dict, name: value})
        if isinstance(existing, Expression) and existing == value:
            return self
        return NoMatch

    def bind_seq(self, name: str, run, unordered: bool = False) -> Union['Substitution', '_NoMatch']:
        """
        Bind a sequence variable to a run of expressions.

        With unordered=True (runs taken from a commutative compound) an
        existing binding is consistent when it holds the same elements in
        any order; the existing binding is kept.
        """
        run = tuple(run)
        existing = self._dict.get(name, _UNBOUND)
        if existing is _UNBOUND:
            return Substitution({**self._dict, name: run})
        if not isinstance(existing, tuple):
            return NoMatch
        if existing == run:
            return self
        if unordered and Counter(existing) == Counter(run):
            return self
        return NoMatch

    def is_sequence(self, name: str) -> bool:
        """True if name is bound to a run rather than a single expression."""
        return isinstance(self._dict.get(name), tuple)

    def __bool__(self) -> bool:
        """Substitutions are always truthy (use NoMatch for failed matches)."""
        return True

    def __getitem__(self, key: str) -> Binding:
        return self._dict[key]

    def get(self, key: str, default=None):
        return self._dict.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self._dict

    def keys(self):
        return self._dict.keys()

    def values(self):
        return self._dict.values()

    def items(self):
        return self._dict.items()

    def __iter__(self) -> Iterator[str]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __repr__(self) -> str:
        return f"Substitution({self._dict})"

    def __eq__(self, other):
        if isinstance(other, Substitution):
            return self._dict == other._dict
        return False

    def __hash__(self) -> int:
        return hash(frozenset(self._dict.items()))

    def to_dict(self) -> Dict[str, Binding]:
        """Convert to a plain dictionary."""
        return self._dict.copy()


class _NoMatch:
    """
    Singleton representing a failed match or a rejected binding.

    NoMatch is falsy, allowing natural use in conditionals:

        if sub := engine.match(pattern, expr):
            # matched
        else:
            # NoMatch
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NoMatch"

    def __getitem__(self, key: str):
        raise KeyError(f"NoMatch has no binding for '{key}'")

    def get(self, key: str, default=None):
        return default

    def __contains__(self, key: str) -> bool:
        return False

    def __len__(self) -> int:
        return 0

    def __iter__(self):
        return iter([])


_UNBOUND: Any = object()

NoMatch = _NoMatch()

EMPTY = Substitution()
