"""
semrew - semantic term rewriting

A pattern matching and term rewriting core for symbolic computation:
immutable expression trees, patterns that match up to commutativity,
variadic sequence variables and semantic extractors, guarded rules, and
bottom-up normalization to a fixpoint.

Quick Start:
    from semrew import RuleEngine, E

    engine = RuleEngine.from_dsl('''
        @remove-zero: (+ 0 ?&*) => (+ ?&*)
        @unary-plus: (+ ?x) => ?x
        @nullary-plus: (+) => 0
    ''')

    engine(E("(+ 0 1 0 2 0 3 0 4)"))  # => (+ 1 2 3 4)

Core API:
    rule = define_rule("(+ 0 ?x)", "?x")
    apply_rule(rule, E("(+ 2 0)"))     # => Literal(2), + is commutative
    normalize([rule], E("(+ 0 (+ 0 y))"))
    for sub in match("(+ 0 ?&*)", E("(+ 1 0 3)")): ...

Pattern Syntax:
    ?x or ?x:expr     - match any expression, bind to x
    ?x:const          - match a literal only
    ?x:var            - match a variable only
    ?x:free(v)        - match expression not containing v
    ?&* ?&+ ?xs...    - match a run of arguments (zero+ / one+)
    (zero? ?x)        - extractor: match any zero, scalar or matrix

Template Syntax:
    ?x or :x          - substitute bound value
    ?&* or :xs...     - splice bound run
    (! op args...)    - compute with the rule's prelude

Example Rules File (algebra.rules):
    [algebra]
    @add-zero "x + 0 = x": (+ 0 ?x) => ?x
    @mul-one: (* 1 ?x) => ?x
    @fold[10]: (+ ?a:const ?b:const ?&*) => (+ (! + ?a ?b) ?&*)
    @dd-const: (dd ?c:const ?v:var) => 0
"""

__version__ = "0.1.0"

# Errors
from .errors import (
    SemrewError,
    RuleConstructionError,
    SexprSyntaxError,
    RewriteLimitExceeded,
)

# Expression model and symbol lookup
from .expr import (
    Expression,
    Literal,
    Variable,
    Compound,
    MatcherClass,
    OperatorProperties,
    operator_properties,
    SymbolTable,
    DEFAULT_SYMBOLS,
    to_expr,
    free_in,
    is_number,
)

# Patterns, substitutions and matching
from .pattern import (
    LVar,
    SeqVar,
    Extractor,
    ExtractorApp,
    ExtractorRegistry,
    compile_pattern,
)
from .substitution import Substitution, NoMatch, EMPTY
from .matcher import unify, match
from .extractors import DEFAULT_EXTRACTORS, predicate_extractor

# Fold operation builders and standard preludes
from .prelude import (
    NumericType,
    FoldHandler,
    FoldFuncsType,
    nary_fold,
    unary_only,
    binary_only,
    special_minus,
    safe_div,
    chained,
    predicate,
    is_scalar,
    ARITHMETIC_PRELUDE,
    MATH_PRELUDE,
    PREDICATE_PRELUDE,
    FULL_PRELUDE,
    NO_PRELUDE,
)

# S-expressions
from .sexpr import E, parse_sexpr, parse_sexprs, format_sexpr

# Rules and normalization
from .rewriter import Rule, RuleMetadata, define_rule, apply_rule, instantiate, evaluate
from .normalizer import DEFAULT_CACHE_LIMIT, RuleSet, normalize, rewrite_once

# Rule files and engine
from .dsl import parse_rule_line, load_rules_from_dsl, load_rules_from_file, load_rules_from_json
from .engine import RuleEngine, SequencedEngine, RewriteStep, RewriteTrace

__all__ = [
    "__version__",
    # Errors
    "SemrewError",
    "RuleConstructionError",
    "SexprSyntaxError",
    "RewriteLimitExceeded",
    # Expressions
    "Expression",
    "Literal",
    "Variable",
    "Compound",
    "MatcherClass",
    "OperatorProperties",
    "operator_properties",
    "SymbolTable",
    "DEFAULT_SYMBOLS",
    "to_expr",
    "free_in",
    "is_number",
    # Patterns and matching
    "LVar",
    "SeqVar",
    "Extractor",
    "ExtractorApp",
    "ExtractorRegistry",
    "compile_pattern",
    "Substitution",
    "NoMatch",
    "EMPTY",
    "unify",
    "match",
    "DEFAULT_EXTRACTORS",
    "predicate_extractor",
    # Preludes
    "NumericType",
    "FoldHandler",
    "FoldFuncsType",
    "nary_fold",
    "unary_only",
    "binary_only",
    "special_minus",
    "safe_div",
    "chained",
    "predicate",
    "is_scalar",
    "ARITHMETIC_PRELUDE",
    "MATH_PRELUDE",
    "PREDICATE_PRELUDE",
    "FULL_PRELUDE",
    "NO_PRELUDE",
    # S-expressions
    "E",
    "parse_sexpr",
    "parse_sexprs",
    "format_sexpr",
    # Rules
    "Rule",
    "RuleMetadata",
    "define_rule",
    "apply_rule",
    "instantiate",
    "evaluate",
    "RuleSet",
    "DEFAULT_CACHE_LIMIT",
    "normalize",
    "rewrite_once",
    # Rule files and engine
    "parse_rule_line",
    "load_rules_from_dsl",
    "load_rules_from_file",
    "load_rules_from_json",
    "RuleEngine",
    "SequencedEngine",
    "RewriteStep",
    "RewriteTrace",
]
