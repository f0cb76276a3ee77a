"""Tests for RuleEngine, traces and engine composition."""

import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from semrew import (
    E, Literal, NO_PRELUDE, NoMatch, RewriteLimitExceeded, RuleEngine, SequencedEngine, Variable,
    DEFAULT_CACHE_LIMIT, define_rule, load_rules_from_json,
)

RULES = """
[algebra]
@add-zero: (+ 0 ?&*) => (+ ?&*)
@unary-plus: (+ ?x) => ?x
@mul-one: (* 1 ?&*) => (* ?&*)
@unary-times: (* ?x) => ?x

[calculus]
@dd-const "Derivative of a constant": (dd ?c:const ?v:var) => 0
@dd-x: (dd ?x:var ?x) => 1
"""


@pytest.fixture
def engine():
    return RuleEngine.from_dsl(RULES)


class TestLoading:

    def test_from_dsl(self, engine):
        assert len(engine) == 6
        assert "add-zero" in engine
        assert engine["dd-x"].name == "dd-x"
        assert engine.get_rule("missing") is None

    def test_missing_rule_key(self, engine):
        with pytest.raises(KeyError):
            engine["missing"]

    def test_from_file(self, tmp_path):
        path = tmp_path / "algebra.rules"
        path.write_text("@add-zero: (+ 0 ?x) => ?x\n")
        engine = RuleEngine.from_file(path)
        assert engine(E("(+ y 0)")) == Variable("y")

    def test_from_rules(self):
        engine = RuleEngine.from_rules([
            ["(+ 0 ?x)", "?x"],
            ["(abs ?x)", "?x", "(> ?x 0)"],
            define_rule("(f ?x)", "?x", name="unf"),
        ])
        assert len(engine) == 3
        assert engine(E("(f (abs (+ 0 4)))")) == Literal(4)

    def test_add_rule_chains(self):
        engine = (RuleEngine()
                  .add_rule("(+ 0 ?x)", "?x", name="add-zero", tags=("algebra",))
                  .add_rule("(* 1 ?x)", "?x", name="mul-one"))
        assert [r.name for r in engine] == ["add-zero", "mul-one"]
        assert engine.groups() == {"algebra"}

    def test_callable_rules(self):
        engine = RuleEngine().add_rule("(twice ?x)", lambda sub: E.op("+", sub["x"], sub["x"]))
        assert engine(E("(twice y)")) == E("(+ y y)")

    def test_repr(self, engine):
        assert repr(engine) == "RuleEngine(6 rules)"


class TestPriority:
    """Higher priority rules are tried first; ties keep load order."""

    def test_priority_order(self):
        engine = RuleEngine.from_dsl("""
            @low: (f ?x) => low
            @high[10]: (f ?x) => high
            @mid[5]: (f ?x) => mid
        """)
        assert [r.name for r in engine.rules] == ["high", "mid", "low"]
        assert engine(E("(f 1)")) == Variable("high")

    def test_stable_for_equal_priority(self):
        engine = RuleEngine.from_dsl("@a: (f ?x) => a\n@b: (f ?x) => b")
        assert engine(E("(f 1)")) == Variable("a")

    def test_priority_across_loads(self):
        engine = RuleEngine.from_dsl("@a: (f ?x) => a")
        engine.load_dsl("@b[1]: (f ?x) => b")
        assert engine(E("(f 1)")) == Variable("b")
        assert engine.get_rule("a") is engine.rules[1]


class TestGroups:

    def test_groups(self, engine):
        assert engine.groups() == {"algebra", "calculus"}

    def test_disable_group(self, engine):
        engine.disable_group("calculus")
        assert engine(E("(dd 5 x)")) == E("(dd 5 x)")
        engine.enable_group("calculus")
        assert engine(E("(dd 5 x)")) == Literal(0)

    def test_explicit_groups(self, engine):
        expr = E("(+ 0 (dd x x))")
        assert engine.simplify(expr, groups=["algebra"]) == E("(dd x x)")
        assert engine.simplify(expr, groups=["calculus"]) == E("(+ 0 1)")
        assert engine.simplify(expr) == Literal(1)

    def test_untagged_rules_always_active(self):
        engine = RuleEngine.from_dsl("@free: (f ?x) => ?x\n[g]\n@tagged: (h ?x) => ?x")
        engine.disable_group("g")
        assert engine(E("(f (h 1))")) == E("(h 1)")

    def test_active_rules(self, engine):
        engine.disable_group("algebra")
        assert [r.name for r in engine.active_rules()] == ["dd-const", "dd-x"]


class TestMatching:

    def test_match(self, engine):
        sub = engine.match("(+ ?a ?b)", "(+ 1 2)")
        assert sub["a"] == Literal(1)
        assert sub["b"] == Literal(2)

    def test_no_match(self, engine):
        assert engine.match("(* ?a ?b)", "(+ 1 2)") is NoMatch
        assert not engine.match("(* ?a ?b)", "(+ 1 2)")

    def test_match_all(self, engine):
        assert len(list(engine.match_all("(+ ?a ?&*)", "(+ 1 2 3)"))) == 3

    def test_apply_once_root_only(self, engine):
        result, rule = engine.apply_once("(+ 0 x)")
        assert result == E("(+ x)")
        assert rule.name == "add-zero"
        expr = E("(f (+ 0 x))")
        assert engine.apply_once(expr) == (expr, None)

    def test_rules_matching(self):
        engine = RuleEngine.from_dsl("""
            @pos: (abs ?x) => ?x when (> ?x 0)
            @neg: (abs ?x) => (- ?x) when (< ?x 0)
            @any: (abs ?x) => wrapped
        """)
        names = [rule.name for rule, _ in engine.rules_matching("(abs 5)")]
        assert names == ["pos", "any"]
        unguarded = engine.rules_matching("(abs 5)", check_conditions=False)
        assert [rule.name for rule, _ in unguarded] == ["pos", "neg", "any"]
        assert unguarded[0][1]["x"] == Literal(5)


class TestSimplify:

    def test_normalize(self, engine):
        assert engine.simplify("(+ 0 (* 1 x) 0)") == Variable("x")

    def test_strategy_once(self, engine):
        assert engine.simplify("(f (+ 0 x))", strategy="once") == E("(f (+ x))")

    def test_unknown_strategy(self, engine):
        with pytest.raises(ValueError, match="Unknown strategy"):
            engine.simplify("x", strategy="topdown")

    def test_max_steps(self):
        engine = RuleEngine.from_dsl("@swap: (° ?a ?b) => (° ?b ?a)")
        with pytest.raises(RewriteLimitExceeded):
            engine.simplify("(° 1 2)", max_steps=5)

    def test_executor(self, engine):
        with ThreadPoolExecutor(max_workers=2) as executor:
            result = engine.simplify("(° (+ 0 a) (* 1 b))", executor=executor)
        assert result == E("(° a b)")

    def test_cache_reset_on_load(self, engine):
        expr = E("(g 1)")
        assert engine(expr) == expr
        engine.load_dsl("@g: (g ?x) => ?x")
        assert engine(expr) == Literal(1)

    def test_cache_stays_bounded(self):
        engine = RuleEngine(cache_limit=16).load_dsl("@double: (* ?x 2) => (+ ?x ?x)")
        for i in range(200):
            engine(E(f"(+ x{i} (* y{i} 2))"))
        assert engine.ruleset().cache_size <= 16
        assert engine.copy().ruleset().cache_limit == 16

    def test_default_cache_limit(self, engine):
        assert engine.ruleset().cache_limit == DEFAULT_CACHE_LIMIT

    def test_with_prelude(self):
        engine = RuleEngine.from_dsl("@pos: (abs ?x) => ?x when (> ?x 0)")
        assert engine(E("(abs 2)")) == Literal(2)
        engine.with_prelude(NO_PRELUDE)
        assert engine.prelude is NO_PRELUDE
        assert engine(E("(abs 2)")) == E("(abs 2)")

    def test_clear(self, engine):
        engine.clear()
        assert len(engine) == 0
        assert engine(E("(+ 0 x)")) == E("(+ 0 x)")


class TestTrace:

    def test_steps(self, engine):
        result, trace = engine.simplify("(+ 0 (+ 0 x))", trace=True)
        assert result == Variable("x")
        assert trace.initial == E("(+ 0 (+ 0 x))")
        assert trace.final == result
        assert len(trace) == 4
        assert trace.rules_applied() == ["add-zero", "unary-plus", "add-zero", "unary-plus"]
        assert repr(trace.steps[0]) == "add-zero: (+ 0 x) -> (+ x)"

    def test_formats(self, engine):
        _, trace = engine.simplify("(+ 0 y)", trace=True)
        assert trace.format("compact") == "(+ 0 y) --[add-zero, unary-plus]--> y"
        assert trace.format("rules") == "add-zero -> unary-plus"
        assert trace.format("chain") == "(+ 0 y)\n  --(add-zero)-->\n(+ y)\n  --(unary-plus)-->\ny"
        assert trace.format("verbose") == repr(trace)
        assert repr(trace).startswith("Initial: (+ 0 y)")
        assert repr(trace).endswith("Final: y")
        with pytest.raises(ValueError):
            trace.format("fancy")

    def test_description_in_verbose(self, engine):
        _, trace = engine.simplify("(dd 3 x)", trace=True)
        assert "(Derivative of a constant)" in trace.format()

    def test_empty_trace(self, engine):
        result, trace = engine.simplify("(f x)", trace=True)
        assert not trace
        assert trace.format("rules") == "(no rules applied)"
        assert trace.summary() == "No rewriting performed"

    def test_counts_and_summary(self, engine):
        _, trace = engine.simplify("(+ 0 (+ 0 x))", trace=True)
        assert trace.rule_counts() == {"add-zero": 2, "unary-plus": 2}
        assert trace.summary() == "4 steps using 2 unique rules. Most used: add-zero (2x)"

    def test_to_dict(self, engine):
        _, trace = engine.simplify("(+ 0 y)", trace=True)
        data = trace.to_dict()
        assert data["initial"] == "(+ 0 y)"
        assert data["final"] == "y"
        assert data["step_count"] == 2
        assert data["steps"][0]["rule_name"] == "add-zero"
        assert data["steps"][0]["rule_index"] == engine.rules.index(engine["add-zero"])
        json.dumps(data)

    def test_anonymous_step_name(self):
        engine = RuleEngine.from_rules([["(f ?x)", "?x"]])
        _, trace = engine.simplify("(f 1)", trace=True)
        assert trace.rules_applied() == ["rule[0]"]

    def test_once_trace(self, engine):
        result, trace = engine.simplify("(f (+ 0 x))", strategy="once", trace=True)
        assert len(trace) == 1
        assert trace.steps[0].before == E("(f (+ 0 x))")
        assert trace.steps[0].after == result


class TestExport:

    def test_to_dsl(self):
        engine = RuleEngine.from_dsl("[algebra]\n@add-zero: (+ 0 ?x) => ?x\n@mul-one: (* 1 ?x) => ?x")
        assert engine.to_dsl() == "[algebra]\n@add-zero: (+ 0 ?x) => ?x\n@mul-one: (* 1 ?x) => ?x"

    def test_to_dsl_round_trip(self, engine):
        reloaded = RuleEngine.from_dsl(engine.to_dsl(name="demo"))
        assert reloaded.list_rules() == engine.list_rules()
        assert [r.metadata for r in reloaded] == [r.metadata for r in engine]

    def test_list_rules(self):
        engine = RuleEngine.from_dsl('@r[2] "doc": (f ?x) => ?x when (> ?x 0)')
        assert engine.list_rules() == ['@r[2] "doc": (f ?x) => ?x when (> ?x 0)']

    def test_json_round_trip(self, engine):
        rules = load_rules_from_json(engine.to_json(name="demo"))
        assert [r.metadata for r in rules] == [r.metadata for r in engine]
        reloaded = RuleEngine.from_rules(rules)
        assert reloaded(E("(+ 0 (dd x x))")) == Literal(1)

    def test_callable_export_rejected(self):
        engine = RuleEngine().add_rule("(f ?x)", lambda sub: sub["x"])
        with pytest.raises(ValueError):
            engine.to_dict()
        with pytest.raises(ValueError):
            engine.to_dsl()
        assert engine.list_rules()[0].endswith("(f ?x) => <function>)")


class TestComposition:

    def test_union(self):
        a = RuleEngine.from_dsl("@a: (f ?x) => ?x")
        b = RuleEngine.from_dsl("@b: (g ?x) => ?x")
        both = a | b
        assert len(both) == 2
        assert len(a) == 1
        assert both(E("(f (g 1))")) == Literal(1)

    def test_in_place_union(self):
        a = RuleEngine.from_dsl("@a: (f ?x) => ?x")
        a |= RuleEngine.from_dsl("@b: (g ?x) => ?x")
        assert len(a) == 2

    def test_copy_is_independent(self, engine):
        clone = engine.copy()
        clone.clear()
        assert len(engine) == 6

    def test_sequence(self):
        expand = RuleEngine.from_dsl("@expand: (square ?x) => (* :x :x)")
        fold = RuleEngine.from_dsl("@fold: (* ?a:const ?b:const) => (! * :a :b)")
        pipeline = expand >> fold
        assert isinstance(pipeline, SequencedEngine)
        assert pipeline(E("(square 3)")) == Literal(9)
        assert len(pipeline >> RuleEngine()) == 3
        assert repr(pipeline) == "SequencedEngine(2 phases)"
