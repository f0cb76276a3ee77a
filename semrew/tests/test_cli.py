"""Tests for CLI module."""

import subprocess
import sys

import pytest

from semrew import FULL_PRELUDE, NO_PRELUDE, EMPTY, Literal
from semrew.cli import (
    BUILTIN_PRELUDES, SemrewCompleter, SemrewREPL, ScriptRunner,
    count_parens, format_substitution, load_custom_prelude,
)


@pytest.fixture
def repl():
    return SemrewREPL()


class TestBuiltinPreludes:

    def test_builtin_prelude_names(self):
        """All expected built-in preludes exist."""
        assert set(BUILTIN_PRELUDES) == {"none", "arithmetic", "math", "predicate", "full"}

    def test_default_prelude(self, repl):
        assert repl.prelude is FULL_PRELUDE
        assert repl.engine.prelude is FULL_PRELUDE


class TestREPLCommands:
    """Tests for REPL command handling."""

    def test_help_command(self, repl):
        result = repl.handle_command(":help")
        assert ":load" in result
        assert ":match" in result

    def test_prelude_command(self, repl):
        result = repl.handle_command(":prelude none")
        assert "none" in result
        assert repl.prelude is NO_PRELUDE
        assert repl.engine.prelude is NO_PRELUDE

    def test_prelude_usage(self, repl):
        assert "Available" in repl.handle_command(":prelude")

    def test_unknown_prelude(self, repl):
        assert "Unknown" in repl.handle_command(":prelude nonexistent")

    def test_trace_command(self, repl):
        assert repl.trace is False
        assert "enabled" in repl.handle_command(":trace on")
        assert repl.trace is True
        assert "disabled" in repl.handle_command(":trace off")
        assert repl.trace is False

    def test_trace_toggle(self, repl):
        """Trace command without arg toggles."""
        repl.handle_command(":trace")
        assert repl.trace is True
        repl.handle_command(":trace")
        assert repl.trace is False

    def test_strategy_command(self, repl):
        result = repl.handle_command(":strategy once")
        assert repl.strategy == "once"
        assert "once" in result

    def test_unknown_strategy(self, repl):
        assert "Unknown" in repl.handle_command(":strategy bottomup")
        assert repl.strategy == "normalize"

    def test_clear_command(self, repl):
        repl.process_line("@test: (f ?x) => :x")
        assert len(repl.engine) == 1
        repl.handle_command(":clear")
        assert len(repl.engine) == 0

    def test_rules_command(self, repl):
        assert "No rules" in repl.handle_command(":rules")
        repl.process_line("@test: (f ?x) => :x")
        assert repl.handle_command(":rules") == "@test: (f ?x) => ?x"

    def test_quit_command(self, repl):
        assert repl.running is True
        repl.handle_command(":quit")
        assert repl.running is False

    def test_groups(self, repl):
        assert "No groups" in repl.handle_command(":groups")
        repl.engine.load_dsl("[algebra]\n@add-zero: (+ 0 ?x) => ?x\n[calculus]\n@d: (dd ?c:const ?v) => 0")
        assert repl.handle_command(":groups") == "Groups: algebra, calculus"

    def test_enable_disable_group(self, repl):
        repl.engine.load_dsl("[algebra]\n@add-zero: (+ 0 ?x) => ?x")
        repl.handle_command(":disable algebra")
        assert repl.process_line("(+ 0 y)") == "(+ 0 y)"
        repl.handle_command(":enable algebra")
        assert repl.process_line("(+ 0 y)") == "y"

    def test_load_command(self, repl, tmp_path):
        path = tmp_path / "algebra.rules"
        path.write_text("@add-zero: (+ 0 ?x) => ?x\n@mul-one: (* 1 ?x) => ?x\n")
        assert repl.handle_command(f":load {path}") == f"Loaded 2 rules from {path}"
        assert "Error" in repl.handle_command(f":load {tmp_path / 'missing.rules'}")

    def test_unknown_command(self, repl):
        assert "Unknown command" in repl.handle_command(":frobnicate")


class TestMatchCommand:
    """:match lists every substitution."""

    def test_sequence_binding(self, repl):
        assert repl.handle_command(":match (+ 0 ?&*) (+ 1 0 3)") == "&* = {1 3}"

    def test_all_bijections(self, repl):
        result = repl.handle_command(":match (+ ?a ?b) (+ 1 2)")
        assert result.splitlines() == ["a = 1, b = 2", "a = 2, b = 1"]

    def test_no_match(self, repl):
        assert repl.handle_command(":match (f ?x) (g 1)") == "No match"

    def test_usage(self, repl):
        assert "Usage" in repl.handle_command(":match (f ?x)")

    def test_parse_error(self, repl):
        assert repl.handle_command(":match (f ?x").startswith("Error")

    def test_format_substitution(self):
        assert format_substitution(EMPTY) == "(no bindings)"
        sub = EMPTY.bind_var("x", Literal(2)).bind_seq("xs", ())
        assert format_substitution(sub) == "x = 2, xs = {}"


class TestREPLProcessLine:
    """Tests for REPL line processing."""

    def test_empty_and_comment(self, repl):
        assert repl.process_line("") is None
        assert repl.process_line("   ") is None
        assert repl.process_line("# comment") is None

    def test_rule_definition(self, repl):
        assert repl.process_line("@add-zero: (+ 0 ?x) => ?x") == "Added 1 rule(s)"
        assert len(repl.engine) == 1

    def test_bad_rule(self, repl):
        assert repl.process_line("@bad: (f ?x) => ?y").startswith("Error")
        assert len(repl.engine) == 0

    def test_expression_evaluation(self, repl):
        repl.process_line("@add-zero: (+ 0 ?x) => ?x")
        assert repl.process_line("(+ y 0)") == "y"

    def test_expression_unchanged(self, repl):
        assert repl.process_line("(f x)") == "(f x)"

    def test_compute_with_default_prelude(self, repl):
        repl.process_line("@fold: (+ ?a:const ?b:const) => (! + ?a ?b)")
        assert repl.process_line("(+ 2 3)") == "5"

    def test_trace_output(self, repl):
        repl.process_line("@add-zero: (+ 0 ?&*) => (+ ?&*)")
        repl.process_line("@unary-plus: (+ ?x) => ?x")
        repl.handle_command(":trace on")
        assert repl.process_line("(+ 0 y)") == "y\nadd-zero -> unary-plus"

    def test_once_strategy(self, repl):
        repl.process_line("@add-zero: (+ 0 ?&*) => (+ ?&*)")
        repl.handle_command(":strategy once")
        assert repl.process_line("(+ 0 (+ 0 y))") == "(+ (+ 0 y))"

    def test_parse_error(self, repl):
        assert repl.process_line("(f x))").startswith("Error")

    def test_group_line(self, repl):
        assert repl.process_line("[algebra]") == "Group: algebra"


class TestScriptRunner:
    """Tests for script execution."""

    def test_run_expression(self, capsys):
        runner = ScriptRunner()
        runner.repl.process_line("@add-zero: (+ 0 ?x) => ?x")
        assert runner.run_expression("(+ y 0)") == 0
        assert capsys.readouterr().out == "y\n"

    def test_run_expression_error(self, capsys):
        assert ScriptRunner().run_expression("(+ y") == 1
        assert capsys.readouterr().out.startswith("Error")

    def test_run_script(self, tmp_path, capsys):
        (tmp_path / "algebra.rules").write_text("@add-zero: (+ 0 ?x) => ?x\n")
        script = tmp_path / "demo.semrew"
        script.write_text(
            "#!/usr/bin/env semrew\n"
            ":prelude full\n"
            f":load {tmp_path / 'algebra.rules'}\n"
            "[folding]\n"
            "@fold: (* ?a:const ?b:const) => (! * ?a ?b)\n"
            "\n"
            "(+ 0 (* 2 3))\n"
        )
        runner = ScriptRunner()
        assert runner.run_script(script) == 0
        assert capsys.readouterr().out == "6\n"
        assert runner.repl.engine["fold"].metadata.tags == ("folding",)

    def test_run_script_quiet(self, tmp_path, capsys):
        script = tmp_path / "quiet.semrew"
        script.write_text("(f x)\n")
        assert ScriptRunner().run_script(script, quiet=True) == 0
        assert capsys.readouterr().out == ""

    def test_script_error_reports_line(self, tmp_path, capsys):
        script = tmp_path / "bad.semrew"
        script.write_text("# header\n@bad: (f ?x) => ?y\n")
        assert ScriptRunner().run_script(script) == 1
        assert f"{script}:2:" in capsys.readouterr().err

    def test_missing_script(self, tmp_path, capsys):
        assert ScriptRunner().run_script(tmp_path / "missing.semrew") == 1


class TestCLIIntegration:
    """Integration tests using subprocess."""

    def run_cli(self, *args, stdin=None):
        return subprocess.run(
            [sys.executable, "-m", "semrew.cli", *args],
            input=stdin, capture_output=True, text=True,
        )

    def test_help_flag(self):
        result = self.run_cli("--help")
        assert result.returncode == 0
        assert "semrew" in result.stdout

    def test_version_flag(self):
        result = self.run_cli("--version")
        assert result.returncode == 0
        assert "0.1.0" in result.stdout

    def test_expression_mode(self):
        """Without rules, expression is unchanged."""
        result = self.run_cli("-e", "(+ 1 2)")
        assert result.returncode == 0
        assert result.stdout.strip() == "(+ 1 2)"

    def test_expression_with_rules(self, tmp_path):
        path = tmp_path / "algebra.rules"
        path.write_text("@remove-zero: (+ 0 ?&*) => (+ ?&*)\n")
        result = self.run_cli("-q", "-r", str(path), "-e", "(+ 1 0 3)")
        assert result.returncode == 0
        assert result.stdout.strip() == "(+ 1 3)"

    def test_expression_error_exit_code(self):
        result = self.run_cli("-e", "(+ 1")
        assert result.returncode == 1

    def test_pipe_mode(self):
        result = self.run_cli("-q", stdin="(f x)\n(g y)\n")
        assert result.returncode == 0
        assert result.stdout.splitlines() == ["(f x)", "(g y)"]

    def test_unknown_prelude_exits(self):
        result = self.run_cli("-p", "nonexistent", "-e", "x")
        assert result.returncode == 1
        assert "Unknown prelude" in result.stderr


class TestCustomPreludeLoading:

    def test_load_nonexistent_prelude(self):
        assert load_custom_prelude("/nonexistent/path.py") is None

    def test_load_prelude_file(self, tmp_path):
        path = tmp_path / "numbers.py"
        path.write_text(
            "import math\n"
            "from semrew import ARITHMETIC_PRELUDE, binary_only\n"
            "PRELUDE = {**ARITHMETIC_PRELUDE, 'gcd': binary_only(math.gcd)}\n"
        )
        prelude = load_custom_prelude(str(path))
        assert "gcd" in prelude and "+" in prelude

    def test_repl_uses_custom_prelude(self, tmp_path, repl):
        path = tmp_path / "numbers.py"
        path.write_text(
            "import math\n"
            "from semrew import binary_only\n"
            "PRELUDE = {'gcd': binary_only(math.gcd)}\n"
        )
        assert repl.set_prelude(str(path)) is True
        repl.process_line("@gcd: (gcd ?a ?b) => (! gcd ?a ?b)")
        assert repl.process_line("(gcd 12 8)") == "4"

    def test_builtin_names(self, repl):
        assert repl.set_prelude("full") is True
        assert repl.set_prelude("ARITHMETIC") is True
        assert repl.set_prelude("none") is True


class TestMultiLineInput:

    def test_count_parens_balanced(self):
        assert count_parens("(+ x 1)") == 0
        assert count_parens("(+ (+ x 1) 2)") == 0
        assert count_parens("[[0 0] [0 0]]") == 0
        assert count_parens("x") == 0

    def test_count_parens_unbalanced(self):
        assert count_parens("(+ (+ x") == 2
        assert count_parens("(+ x [1") == 2
        assert count_parens("(+ x))") == -1

    def test_count_parens_ignores_strings(self):
        assert count_parens('@r "doc (": (f ?x) => ?x') == 0

    def test_repl_multi_line_buffer(self, repl):
        assert repl.multi_line_buffer == ""


class TestTabCompletion:

    def test_completer_commands(self, repl):
        matches = SemrewCompleter(repl)._get_matches(":", ":")
        assert ":help" in matches
        assert ":match" in matches

    def test_completer_partial_command(self, repl):
        matches = SemrewCompleter(repl)._get_matches(":h", ":h")
        assert ":help" in matches
        assert ":quit" not in matches

    def test_completer_prelude_names(self, repl):
        matches = SemrewCompleter(repl)._get_matches("", ":prelude ")
        assert set(matches) == set(BUILTIN_PRELUDES)

    def test_completer_strategy_names(self, repl):
        assert SemrewCompleter(repl)._get_matches("", ":strategy ") == ["normalize", "once"]

    def test_completer_groups(self, repl):
        repl.engine.load_dsl("[algebra]\n@add-zero: (+ 0 ?x) => ?x\n[calculus]\n@d: (dd ?c:const ?v) => 0")
        assert SemrewCompleter(repl)._get_matches("", ":enable ") == ["algebra", "calculus"]

    def test_completer_rule_names(self, repl):
        repl.engine.load_dsl("@add-zero: (+ 0 ?x) => ?x\n@mul-one: (* 1 ?x) => ?x")
        matches = SemrewCompleter(repl)._get_matches("@", "@")
        assert set(matches) == {"@add-zero", "@mul-one"}

    def test_completer_trace_options(self, repl):
        assert SemrewCompleter(repl)._get_matches("", ":trace ") == ["on", "off"]
