#!/usr/bin/env python3
"""
semrew Feature Demonstration

Walks through matching, rules, normalization and the rule engine.
"""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from semrew import (
    E, RuleEngine, RewriteLimitExceeded,
    apply_rule, define_rule, format_sexpr, match, normalize,
)
from semrew.cli import format_substitution


def section(title: str):
    """Print a section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print('='*60)


def demo_matching():
    """Commutative, sequence and extractor matching."""
    section("Semantic Matching")

    examples = [
        ("(+ 0 ?x)", "(+ 2 0)", "commutative operator"),
        ("(+ ?a ?b)", "(+ x y)", "every bijection"),
        ("(+ 0 ?&*)", "(+ 1 0 3)", "rest of a commutative compound"),
        ("(° ?xs... sep ?ys...)", "(° a b sep c)", "segmentation"),
        ("(+ (zero? ?z) ?&*)", "(+ 1 [[0 0] [0 0]] 3)", "zero extractor"),
    ]

    for pattern, expr_str, desc in examples:
        print(f"  {pattern} against {expr_str} ({desc}):")
        for sub in match(pattern, E(expr_str)):
            print(f"    {format_substitution(sub)}")


def demo_rules():
    """Single rule application, guards and compute forms."""
    section("Rules")

    sort_step = define_rule("(° ?&*1 ?x ?&*2 ?y ?&*3)", "(° ?&*1 ?y ?&*2 ?x ?&*3)",
                            "(> ?y ?x)", name="sort-step")
    fold = define_rule("(* ?a:const ?b:const)", "(! * ?a ?b)", name="fold")
    double = define_rule("(twice ?x)", lambda sub: E.op("+", sub["x"], sub["x"]))

    examples = [
        (sort_step, "(° 1 2 3)"),
        (sort_step, "(° 3 2 1)"),
        (fold, "(* 6 7)"),
        (double, "(twice y)"),
    ]

    for rule, expr_str in examples:
        result = apply_rule(rule, E(expr_str))
        shown = format_sexpr(result) if result is not None else "(does not apply)"
        print(f"  {rule.name or 'twice'}: {expr_str} => {shown}")


def demo_normalize():
    """Bottom-up normalization, the step bound and the executor."""
    section("Normalization")

    rules = [
        define_rule("(+ 0 ?&*)", "(+ ?&*)", name="remove-zero"),
        define_rule("(+ ?x)", "?x", name="unary-plus"),
        define_rule("(+)", "0", name="nullary-plus"),
    ]

    expr = E("(+ 0 1 0 2 0 3 0 4)")
    print(f"  {format_sexpr(expr)} => {format_sexpr(normalize(rules, expr))}")

    nested = E("(° (+ 0 a) (+ 0 (+ 0 b)) (+ 0))")
    with ThreadPoolExecutor(max_workers=3) as executor:
        result = normalize(rules, nested, executor=executor)
    print(f"  {format_sexpr(nested)} => {format_sexpr(result)} (children in parallel)")

    swap = [define_rule("(° ?a ?b)", "(° ?b ?a)", name="swap")]
    try:
        normalize(swap, E("(° 1 2)"), max_steps=10)
    except RewriteLimitExceeded as e:
        print(f"  swap loop stopped: {e} (at {format_sexpr(e.partial)})")


def demo_engine():
    """Rule files, priorities, groups and tracing."""
    section("Rule Engine")

    engine = RuleEngine.from_file(Path(__file__).parent / "algebra.rules")
    print(f"  Loaded {len(engine)} rules, groups: {sorted(engine.groups())}")

    for expr_str in ["(+ x 0 (* 1 y))", "(+ 1 2 x 3)", "(* 4 0 z)", "(° 1 3 2)"]:
        print(f"    {expr_str} => {format_sexpr(engine(E(expr_str)))}")

    print(f"\n  Without [folding]: (+ 1 2 x 3) => "
          f"{format_sexpr(engine(E('(+ 1 2 x 3)'), groups=['identities']))}")

    result, trace = engine(E("(+ 0 (* 1 y))"), trace=True)
    print("\n  Trace:")
    for line in str(trace).split('\n'):
        print(f"    {line}")
    print(f"  Compact: {trace.format('compact')}")
    print(f"  Summary: {trace.summary()}")


def demo_sequencing():
    """Run engines one after another."""
    section("Engine Sequencing")

    expand = RuleEngine.from_dsl("@square: (square ?x) => (* ?x ?x)")
    fold = RuleEngine.from_dsl("@fold: (* ?a:const ?b:const) => (! * ?a ?b)")
    pipeline = expand >> fold

    expr = E("(square 5)")
    print(f"  After expand only: {format_sexpr(expand(expr))}")
    print(f"  After expand >> fold: {format_sexpr(pipeline(expr))}")


def main():
    """Run all demonstrations."""
    print("semrew - semantic term rewriting")
    print("Feature Demonstration")

    demo_matching()
    demo_rules()
    demo_normalize()
    demo_engine()
    demo_sequencing()

    print("\n" + "="*60)
    print(" Demo complete!")
    print("="*60)


if __name__ == "__main__":
    main()
