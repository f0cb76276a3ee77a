"""Tests for s-expression parsing, formatting and the E builder."""

import pytest

from semrew import (
    Compound, E, ExtractorApp, Literal, LVar, SeqVar, SexprSyntaxError, Variable,
    compile_pattern, format_sexpr, operator_properties, parse_sexpr, parse_sexprs,
    DEFAULT_EXTRACTORS, DEFAULT_SYMBOLS,
)


class TestParseAtoms:
    """Atoms: numbers, booleans, symbols."""

    def test_integers_and_floats(self):
        assert parse_sexpr("42") == Literal(42)
        assert parse_sexpr("-3") == Literal(-3)
        assert parse_sexpr("2.5") == Literal(2.5)
        assert isinstance(parse_sexpr("7").value, int)

    def test_booleans(self):
        assert parse_sexpr("true") == Literal(True)
        assert parse_sexpr("false").value is False

    def test_symbols(self):
        assert parse_sexpr("x") == Variable("x")
        assert parse_sexpr("foo-bar") == Variable("foo-bar")

    def test_operator_symbols_stay_symbols(self):
        """+ and - are not numbers on their own."""
        assert parse_sexpr("(- x)") == Compound("-", [Variable("x")])

    def test_blank_input(self):
        assert parse_sexpr("   ") is None


class TestParseCompounds:

    def test_nested(self):
        expr = parse_sexpr("(+ x (* 2 y))")
        assert expr.op == "+"
        assert expr.children[0] == Variable("x")
        assert expr.children[1] == Compound("*", [Literal(2), Variable("y")])

    def test_props_from_symbol_table(self):
        assert parse_sexpr("(+ 1 2)").props.commutative
        assert not parse_sexpr("(° 1 2)").props.commutative

    def test_custom_symbol_table(self):
        table = DEFAULT_SYMBOLS.extend({"max": operator_properties(commutative=True)})
        assert parse_sexpr("(max a b)", table).props.commutative

    def test_nullary(self):
        assert parse_sexpr("(+)") == Compound("+")

    def test_matrix_literal(self):
        assert parse_sexpr("[[0 0] [0 0]]") == Literal(((0, 0), (0, 0)))
        assert parse_sexpr("[1 2 3]") == Literal((1, 2, 3))

    def test_multiline(self):
        assert parse_sexpr("(f\n  x\n  y)") == E("(f x y)")

    def test_several_forms(self):
        forms = parse_sexprs("(f x) y 3")
        assert forms == [E("(f x)"), Variable("y"), Literal(3)]


class TestParseErrors:

    def test_missing_close(self):
        with pytest.raises(SexprSyntaxError):
            parse_sexpr("(+ x 1")

    def test_extra_close(self):
        with pytest.raises(SexprSyntaxError):
            parse_sexpr("(+ x 1))")

    def test_empty_compound(self):
        with pytest.raises(SexprSyntaxError):
            parse_sexpr("()")

    def test_non_symbol_operator(self):
        with pytest.raises(SexprSyntaxError):
            parse_sexpr("(1 2)")

    def test_matrix_entries_numeric(self):
        with pytest.raises(SexprSyntaxError):
            parse_sexpr("[1 x]")

    def test_unknown_constraint(self):
        with pytest.raises(SexprSyntaxError):
            parse_sexpr("?x:weird")

    def test_ampersand_var_needs_marker(self):
        with pytest.raises(SexprSyntaxError, match="length marker"):
            parse_sexpr("(+ ?a ?&r)")
        with pytest.raises(SexprSyntaxError):
            parse_sexpr("?&")

    def test_unknown_sequence_constraint(self):
        with pytest.raises(SexprSyntaxError, match="bogus"):
            parse_sexpr("?xs:bogus...")
        with pytest.raises(SexprSyntaxError):
            parse_sexpr("?xs:free(y)...+")

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            parse_sexpr("(f")


class TestPatternSyntax:
    """Pattern and template atoms."""

    def test_plain_var(self):
        assert parse_sexpr("?x") == LVar("x")
        assert parse_sexpr("?x:expr") == LVar("x")

    def test_constrained_vars(self):
        assert parse_sexpr("?c:const") == LVar("c", kind="const")
        assert parse_sexpr("?v:var") == LVar("v", kind="var")
        assert parse_sexpr("?f:free(x)") == LVar("f", free_of="x")

    def test_ampersand_sequence_vars(self):
        assert parse_sexpr("?&*") == SeqVar("&*", min=0)
        assert parse_sexpr("?&*1") == SeqVar("&*1", min=0)
        assert parse_sexpr("?&+") == SeqVar("&+", min=1)
        assert parse_sexpr("?&+rest") == SeqVar("&+rest", min=1)

    def test_ellipsis_sequence_vars(self):
        assert parse_sexpr("?xs...") == SeqVar("xs", min=0)
        assert parse_sexpr("?xs...+") == SeqVar("xs", min=1)
        assert parse_sexpr("?cs:const...") == SeqVar("cs", min=0, kind="const")
        assert parse_sexpr("?xs:expr...") == SeqVar("xs", min=0)

    def test_template_references(self):
        assert parse_sexpr(":x") == LVar("x")
        assert parse_sexpr(":xs...") == SeqVar("xs")

    def test_vars_inside_compound(self):
        expr = parse_sexpr("(+ 0 ?&*)")
        assert expr.children == (Literal(0), SeqVar("&*"))

    def test_extractor_application_compiles(self):
        raw = parse_sexpr("(+ (zero? ?x) ?&*)")
        compiled = compile_pattern(raw, DEFAULT_EXTRACTORS)
        app = compiled.children[0]
        assert isinstance(app, ExtractorApp)
        assert app.name == "zero?"
        assert app.args == (LVar("x"),)


class TestFormat:

    @pytest.mark.parametrize("text", [
        "(+ x (* 2 y))",
        "(+)",
        "[[0 0] [0 0]]",
        "(f true false 2.5)",
        "(° ?&*1 ?x ?&*2 ?y ?&*3)",
        "(g ?c:const ?v:var ?f:free(x))",
        "(h ?xs... ?ys...+ ?cs:const...)",
    ])
    def test_round_trip(self, text):
        assert format_sexpr(parse_sexpr(text)) == text

    def test_reference_syntax_normalized(self):
        assert format_sexpr(parse_sexpr("(f :x :xs...)")) == "(f ?x ?xs...)"

    def test_extractor_app(self):
        compiled = compile_pattern(parse_sexpr("(zero? ?x)"), DEFAULT_EXTRACTORS)
        assert format_sexpr(compiled) == "(zero? ?x)"


class TestExprBuilder:
    """The E builder."""

    def test_parse(self):
        assert E("(+ x 1)") == parse_sexpr("(+ x 1)")

    def test_op_lifts_python_values(self):
        assert E.op("+", "x", 1) == E("(+ x 1)")
        assert E.op("+", "x", E.op("*", 2, "y")) == E("(+ x (* 2 y))")

    def test_op_uses_symbol_table(self):
        assert E.op("+", 1, 2).props.commutative

    def test_vars(self):
        x, y, z = E.vars("x", "y", "z")
        assert (x, y, z) == (Variable("x"), Variable("y"), Variable("z"))
        assert E.var("w") == Variable("w")

    def test_const_and_matrix(self):
        assert E.const(3) == Literal(3)
        assert E.matrix([[1, 0], [0, 1]]) == E("[[1 0] [0 1]]")

    def test_pattern_builders(self):
        assert E.op("+", 0, E.seq("&*")) == E("(+ 0 ?&*)")
        assert E.lvar("c", "const") == E("?c:const")
        assert E.seq("xs", min=1) == E("?xs...+")

    def test_with_symbols(self):
        builder = E.with_symbols(DEFAULT_SYMBOLS.extend({"max": operator_properties(commutative=True)}))
        assert builder("(max a b)").props.commutative
        assert builder.op("max", "a", "b").props.commutative
