#!/usr/bin/env python3
"""
semrew command-line interface

Provides interactive REPL, script execution, and pipe/filter modes.

Usage:
    semrew                              # Start REPL
    semrew script.semrew                # Run script
    semrew -e "(+ 0 x)"                 # Evaluate expression
    semrew -r rules.rules               # REPL with rules preloaded
    semrew -r rules.rules -e "(+ 0 x)"  # One-shot with rules
    echo "(+ 0 x)" | semrew -r rules.rules  # Filter mode

Script Format (.semrew files):
    #!/usr/bin/env semrew
    :prelude full
    :load algebra.rules

    @remove-zero: (+ 0 ?&*) => (+ ?&*)

    (+ 0 1 0 2)

REPL Commands:
    :help              Show help
    :load FILE         Load rules from file
    :rules             List loaded rules
    :clear             Clear all rules
    :prelude NAME      Set prelude (arithmetic, math, predicate, full, none, or path)
    :trace on|off      Toggle tracing
    :strategy NAME     Set strategy (normalize, once)
    :groups            Show groups
    :enable GROUP      Enable group
    :disable GROUP     Disable group
    :match PAT EXPR    Show every substitution matching PAT against EXPR
    :quit              Exit
"""

import argparse
import glob
import importlib.util
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .engine import STRATEGIES, RuleEngine
from .prelude import (
    ARITHMETIC_PRELUDE, FULL_PRELUDE, MATH_PRELUDE, NO_PRELUDE, PREDICATE_PRELUDE,
    FoldFuncsType,
)
from .sexpr import format_sexpr, parse_sexpr, parse_sexprs
from .substitution import Substitution

logger = logging.getLogger(__name__)

# readline gives history and completion where the platform has it
try:
    import readline
    HAS_READLINE = True
except ImportError:
    HAS_READLINE = False

BUILTIN_PRELUDES: Dict[str, FoldFuncsType] = {
    "none": NO_PRELUDE,
    "arithmetic": ARITHMETIC_PRELUDE,
    "math": MATH_PRELUDE,
    "predicate": PREDICATE_PRELUDE,
    "full": FULL_PRELUDE,
}

PRELUDE_SEARCH_PATHS = [
    Path("./preludes"),
    Path.home() / ".config" / "semrew" / "preludes",
]


def load_custom_prelude(name_or_path: str) -> Optional[FoldFuncsType]:
    """
    Load a custom prelude from a Python file defining a PRELUDE dict.

    Args:
        name_or_path: A path to a .py file, or a name searched for as
            NAME.py in PRELUDE_SEARCH_PATHS

    Returns:
        The PRELUDE dict, or None if no file defines one
    """
    path = Path(name_or_path)

    if path.suffix == ".py" or "/" in name_or_path or "\\" in name_or_path:
        candidates = [path]
    else:
        candidates = [d / f"{name_or_path}.py" for d in PRELUDE_SEARCH_PATHS]

    for prelude_path in candidates:
        if not prelude_path.exists():
            continue
        try:
            spec = importlib.util.spec_from_file_location("custom_prelude", prelude_path)
            if spec and spec.loader:
                module = importlib.util.module_from_spec(spec)
                spec.loader.exec_module(module)
                if hasattr(module, "PRELUDE"):
                    logger.info("Loaded prelude from %s", prelude_path)
                    return module.PRELUDE
        except Exception as e:
            print(f"Error loading prelude from {prelude_path}: {e}", file=sys.stderr)

    return None


def format_substitution(sub: Substitution) -> str:
    """Render bindings as 'x = 2, &* = {1 3}'; runs are shown in braces."""
    parts = []
    for name, value in sorted(sub.items()):
        if isinstance(value, tuple):
            rendered = "{" + " ".join(format_sexpr(v) for v in value) + "}"
        else:
            rendered = format_sexpr(value)
        parts.append(f"{name} = {rendered}")
    return ", ".join(parts) if parts else "(no bindings)"


class SemrewCompleter:
    """Tab completer for the semrew REPL."""

    COMMANDS = [
        ":help", ":quit", ":exit", ":q",
        ":load", ":rules", ":clear",
        ":prelude", ":trace", ":strategy",
        ":groups", ":enable", ":disable", ":match",
    ]

    TRACE_OPTIONS = ["on", "off"]

    def __init__(self, repl: 'SemrewREPL'):
        self.repl = repl
        self.matches: List[str] = []

    def complete(self, text: str, state: int) -> Optional[str]:
        """Return the next possible completion for 'text'."""
        if state == 0:
            line = readline.get_line_buffer() if HAS_READLINE else ""
            self.matches = self._get_matches(text, line)
        try:
            return self.matches[state]
        except IndexError:
            return None

    def _get_matches(self, text: str, line: str) -> List[str]:
        line = line.lstrip()

        if line.startswith(":prelude "):
            return [p for p in BUILTIN_PRELUDES if p.startswith(text)]

        if line.startswith(":strategy "):
            return [s for s in STRATEGIES if s.startswith(text)]

        if line.startswith(":trace "):
            return [t for t in self.TRACE_OPTIONS if t.startswith(text)]

        if line.startswith(":enable ") or line.startswith(":disable "):
            return sorted(g for g in self.repl.engine.groups() if g.startswith(text))

        if line.startswith(":load "):
            return self._complete_path(text)

        if text.startswith(":") or (line.startswith(":") and " " not in line):
            return [c for c in self.COMMANDS if c.startswith(text)]

        # Rule names, for reference
        if text.startswith("@"):
            names = ["@" + rule.name for rule in self.repl.engine if rule.name]
            return [n for n in names if n.startswith(text)]

        return []

    def _complete_path(self, text: str) -> List[str]:
        matches = []
        for path in glob.glob((text or "./") + "*"):
            matches.append(path + "/" if Path(path).is_dir() else path)
        return matches


def count_parens(text: str) -> int:
    """Count unbalanced parentheses and brackets. >0 means more open than close."""
    depth = 0
    in_string = False
    escape = False

    for c in text:
        if escape:
            escape = False
            continue
        if c == '\\':
            escape = True
            continue
        if c == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if c in '([':
            depth += 1
        elif c in ')]':
            depth -= 1

    return depth


class SemrewREPL:
    """Interactive REPL for semrew."""

    def __init__(self):
        self.engine = RuleEngine()
        self.prelude: FoldFuncsType = FULL_PRELUDE
        self.trace = False
        self.strategy = "normalize"
        self.running = True
        self.multi_line_buffer = ""

        if HAS_READLINE:
            self.history_file = Path.home() / ".semrew_history"
            try:
                readline.read_history_file(self.history_file)
            except OSError:
                pass
            readline.set_history_length(1000)

            self.completer = SemrewCompleter(self)
            readline.set_completer(self.completer.complete)
            readline.parse_and_bind("tab: complete")
            # Don't break on colons, so commands complete as a whole
            readline.set_completer_delims(" \t\n")

    def save_history(self):
        if HAS_READLINE:
            try:
                readline.write_history_file(self.history_file)
            except OSError as e:
                logger.warning("Could not save history to %s: %s", self.history_file, e)

    def set_prelude(self, name: str) -> bool:
        """Set the prelude by name or path."""
        prelude = BUILTIN_PRELUDES.get(name.lower())
        if prelude is None:
            prelude = load_custom_prelude(name)
        if prelude is None:
            return False
        self.prelude = prelude
        self.engine.with_prelude(prelude)
        return True

    def handle_command(self, line: str) -> Optional[str]:
        """
        Handle a REPL command (starts with :).

        Returns a message to print, or None.
        """
        parts = line[1:].split(None, 1)
        if not parts:
            return "Unknown command. Type :help for help."

        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd == "help":
            return self.help_text()

        elif cmd in ("quit", "exit", "q"):
            self.running = False
            return None

        elif cmd == "load":
            if not arg:
                return "Usage: :load FILENAME"
            try:
                before = len(self.engine)
                self.engine.load_file(Path(arg))
                return f"Loaded {len(self.engine) - before} rules from {arg}"
            except Exception as e:
                return f"Error loading {arg}: {e}"

        elif cmd == "rules":
            rules = self.engine.list_rules()
            if not rules:
                return "No rules loaded"
            return "\n".join(rules)

        elif cmd == "clear":
            self.engine.clear()
            return "Cleared all rules"

        elif cmd == "prelude":
            if not arg:
                available = ", ".join(BUILTIN_PRELUDES)
                return f"Usage: :prelude NAME\nAvailable: {available}\nOr provide a path to a .py file"
            if self.set_prelude(arg):
                return f"Prelude set to: {arg}"
            return f"Unknown prelude: {arg}"

        elif cmd == "trace":
            if arg.lower() in ("on", "true", "1"):
                self.trace = True
            elif arg.lower() in ("off", "false", "0"):
                self.trace = False
            else:
                self.trace = not self.trace
            return f"Tracing {'enabled' if self.trace else 'disabled'}"

        elif cmd == "strategy":
            if arg.lower() in STRATEGIES:
                self.strategy = arg.lower()
                return f"Strategy set to: {self.strategy}"
            return f"Unknown strategy. Options: {', '.join(STRATEGIES)}"

        elif cmd == "groups":
            groups = self.engine.groups()
            if not groups:
                return "No groups defined"
            return "Groups: " + ", ".join(sorted(groups))

        elif cmd == "enable":
            if not arg:
                return "Usage: :enable GROUP"
            self.engine.enable_group(arg)
            return f"Enabled group: {arg}"

        elif cmd == "disable":
            if not arg:
                return "Usage: :disable GROUP"
            self.engine.disable_group(arg)
            return f"Disabled group: {arg}"

        elif cmd == "match":
            return self.match_command(arg)

        return f"Unknown command: {cmd}. Type :help for help."

    def match_command(self, arg: str) -> str:
        try:
            forms = parse_sexprs(arg, self.engine.symbols)
            if len(forms) != 2:
                return "Usage: :match PATTERN EXPR"
            lines = [format_substitution(sub) for sub in self.engine.match_all(*forms)]
        except Exception as e:
            return f"Error: {e}"
        return "\n".join(lines) if lines else "No match"

    def help_text(self) -> str:
        return """semrew REPL Commands:
  :help              Show this help
  :load FILE         Load rules from file (.rules or .json)
  :rules             List all loaded rules
  :clear             Clear all rules
  :prelude NAME      Set prelude (arithmetic, math, predicate, full, none, or path.py)
  :trace on|off      Toggle tracing
  :strategy NAME     Set strategy (normalize, once)
  :groups            Show all groups
  :enable GROUP      Enable a group
  :disable GROUP     Disable a group
  :match PAT EXPR    Show every substitution matching PAT against EXPR
  :quit              Exit

Syntax:
  @name: pattern => template               Define a rule
  @name[priority]: pattern => template     Rule with priority
  @name: pat => tmpl when guard            Rule with guard
  [groupname]                              Start a rule group
  (expression)                             Normalize an expression

Patterns: ?x ?x:const ?x:var ?x:free(v) ?&* ?&+ ?xs... (zero? ?x)
Templates: ?x :x ?&* :xs... (! op args...)
"""

    def process_line(self, line: str) -> Optional[str]:
        """
        Process a single line of input.

        Returns the result to print, or None.
        """
        line = line.strip()

        if not line or line.startswith("#"):
            return None

        if line.startswith(":"):
            return self.handle_command(line)

        # Rule definition (possibly prefixed by a [group] header line)
        if "=>" in line:
            try:
                before = len(self.engine)
                self.engine.load_dsl(line)
            except Exception as e:
                return f"Error: {e}"
            added = len(self.engine) - before
            if not added:
                return "Error: failed to parse rule"
            return f"Added {added} rule(s)"

        # Groups are applied when rules are loaded from files or scripts
        if line.startswith("[") and line.endswith("]") and " " not in line:
            return f"Group: {line[1:-1]}"

        try:
            expr = parse_sexpr(line, self.engine.symbols)
            if expr is None:
                return None

            if self.trace:
                result, trace = self.engine(expr, trace=True, strategy=self.strategy)
                output = format_sexpr(result)
                if trace.steps:
                    return f"{output}\n{trace.format('rules')}"
                return output

            return format_sexpr(self.engine(expr, strategy=self.strategy))

        except Exception as e:
            return f"Error: {e}"

    def run(self):
        """Run the REPL loop."""
        print("semrew - semantic term rewriting")
        print("Type :help for help, :quit to exit")
        print("Multi-line input: expressions with unbalanced parens continue on next line")
        print()

        while self.running:
            try:
                prompt = "...... " if self.multi_line_buffer else "semrew> "
                line = input(prompt)

                if self.multi_line_buffer:
                    self.multi_line_buffer += "\n" + line
                else:
                    self.multi_line_buffer = line

                depth = count_parens(self.multi_line_buffer)
                if depth > 0:
                    continue
                if depth < 0:
                    print("Error: Unbalanced parentheses (too many closing)")
                    self.multi_line_buffer = ""
                    continue

                complete_input = self.multi_line_buffer
                self.multi_line_buffer = ""

                result = self.process_line(complete_input)
                if result:
                    print(result)

            except EOFError:
                print()
                break
            except KeyboardInterrupt:
                # Ctrl+C cancels multi-line input
                if self.multi_line_buffer:
                    print("\nInput cancelled")
                    self.multi_line_buffer = ""
                else:
                    print()

        self.save_history()


class ScriptRunner:
    """Runs semrew scripts, single expressions and stdin filters."""

    def __init__(self):
        self.repl = SemrewREPL()

    def run_script(self, path: Path, quiet: bool = False) -> int:
        """
        Run a script file.

        Returns:
            Exit code (0 for success)
        """
        try:
            lines = path.read_text().splitlines()
        except OSError as e:
            print(f"Error reading {path}: {e}", file=sys.stderr)
            return 1

        current_group = None

        for lineno, line in enumerate(lines, 1):
            line = line.strip()

            # Empty lines, comments and the shebang
            if not line or line.startswith("#"):
                continue

            if line.startswith(":"):
                result = self.repl.handle_command(line)
                if result and ("Error" in result or "Unknown" in result):
                    print(f"{path}:{lineno}: {result}", file=sys.stderr)
                    return 1
                if not self.repl.running:
                    break
                continue

            if line.startswith("[") and line.endswith("]"):
                current_group = line[1:-1].strip() or None
                continue

            if "=>" in line:
                if current_group:
                    line = f"[{current_group}]\n{line}"
                result = self.repl.process_line(line)
                if result and "Error" in result:
                    print(f"{path}:{lineno}: {result}", file=sys.stderr)
                    return 1
                continue

            result = self.repl.process_line(line)
            if result and result.startswith("Error"):
                print(f"{path}:{lineno}: {result}", file=sys.stderr)
                return 1
            if result and not quiet:
                print(result)

        return 0

    def run_expression(self, expr_str: str) -> int:
        """Evaluate a single expression. Returns the exit code."""
        result = self.repl.process_line(expr_str)
        if result:
            print(result)
            if result.startswith("Error"):
                return 1
        return 0

    def run_stdin(self) -> int:
        """Read expressions from stdin and evaluate them. Returns the exit code."""
        for line in sys.stdin:
            line = line.strip()
            if not line or line.startswith("#"):
                continue

            result = self.repl.process_line(line)
            if result:
                print(result)
                if result.startswith("Error"):
                    return 1

        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="semrew",
        description="semrew - semantic term rewriting",
        epilog="Examples:\n"
               "  semrew                             Start REPL\n"
               "  semrew script.semrew               Run script\n"
               "  semrew -e '(+ 0 x)'                Evaluate expression\n"
               "  semrew -r rules.rules              REPL with rules\n"
               "  echo '(+ 0 x)' | semrew -r rules.rules  Filter mode\n",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("script", nargs="?", help="Script file to run (.semrew)")
    parser.add_argument(
        "-r", "--rules", action="append", default=[],
        help="Load rules from file (can be specified multiple times)"
    )
    parser.add_argument("-e", "--expr", help="Evaluate a single expression")
    parser.add_argument(
        "-p", "--prelude", default="full",
        help="Set prelude (arithmetic, math, predicate, full, none, or path.py)"
    )
    parser.add_argument("-t", "--trace", action="store_true", help="Enable tracing")
    parser.add_argument(
        "-s", "--strategy", default="normalize", choices=list(STRATEGIES),
        help="Rewriting strategy"
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true",
        help="Quiet mode (suppress non-essential output)"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Log rule firings and file loads to stderr"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )

    runner = ScriptRunner()

    if not runner.repl.set_prelude(args.prelude):
        print(f"Unknown prelude: {args.prelude}", file=sys.stderr)
        sys.exit(1)

    runner.repl.trace = args.trace
    runner.repl.strategy = args.strategy

    for rules_file in args.rules:
        try:
            runner.repl.engine.load_file(Path(rules_file))
            if not args.quiet:
                print(f"Loaded rules from {rules_file}", file=sys.stderr)
        except Exception as e:
            print(f"Error loading {rules_file}: {e}", file=sys.stderr)
            sys.exit(1)

    if args.script:
        sys.exit(runner.run_script(Path(args.script), quiet=args.quiet))
    elif args.expr:
        sys.exit(runner.run_expression(args.expr))
    elif not sys.stdin.isatty():
        sys.exit(runner.run_stdin())
    else:
        runner.repl.run()


if __name__ == "__main__":
    main()
