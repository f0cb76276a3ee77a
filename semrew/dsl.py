"""
Rule files: the line-oriented rule DSL and JSON rule sets.

DSL format:

    # comment
    [algebra]                                   - group header, tags following rules
    @add-zero: (+ 0 ?x) => ?x
    @fold[100] "Fold constants": (+ ?a:const ?b:const) => (! + :a :b)
    @sort: (° ?&*1 ?x ?&*2 ?y ?&*3) => (° ?&*1 ?y ?&*2 ?x ?&*3) when (> ?y ?x)
    :include calculus.rules                     - relative to the including file

JSON format:

    {"rules": [{"name": "add-zero", "pattern": "(+ 0 ?x)", "skeleton": "?x",
                "condition": null, "priority": 0, "tags": ["algebra"]},
               ["(* 1 ?x)", "?x"]]}

Patterns in JSON may also be nested lists: ["+", 0, "?x"].
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, List, Optional, Set, Union

from .errors import RuleConstructionError, SexprSyntaxError
from .expr import DEFAULT_SYMBOLS, Compound, Expression, SymbolTable, to_expr
from .pattern import ExtractorRegistry
from .prelude import FoldFuncsType
from .rewriter import Rule, define_rule
from .sexpr import parse_sexpr

logger = logging.getLogger(__name__)

_HEADERS = [
    # @name[priority] "description": ...
    (re.compile(r'@([\w-]+)\[(-?\d+)\]\s+"([^"]+)":\s*(.+)'), ('name', 'priority', 'description')),
    # @name[priority]: ...
    (re.compile(r'@([\w-]+)\[(-?\d+)\]:\s*(.+)'), ('name', 'priority')),
    # @name "description": ...
    (re.compile(r'@([\w-]+)\s+"([^"]+)":\s*(.+)'), ('name', 'description')),
    # @name: ...
    (re.compile(r'@([\w-]+):\s*(.+)'), ('name',)),
]


def _split_when(rest: str):
    """Split 'skeleton when guard' at a top-level 'when'."""
    depth = 0
    for i, ch in enumerate(rest):
        if ch in '([':
            depth += 1
        elif ch in ')]':
            depth -= 1
        elif depth == 0 and rest.startswith('when', i) and (i == 0 or rest[i - 1].isspace()):
            after = i + 4
            if after >= len(rest) or rest[after].isspace():
                return rest[:i].strip(), rest[after:].strip()
    return rest.strip(), None


def parse_rule_line(line: str,
                    symbols: Optional[SymbolTable] = None,
                    extractors: Optional[ExtractorRegistry] = None,
                    prelude: Optional[FoldFuncsType] = None) -> Optional[Rule]:
    """
    Parse a single rule line.

    Formats:
        @name: pattern => skeleton
        @name[priority]: pattern => skeleton
        @name "description": pattern => skeleton
        @name[priority] "description": pattern => skeleton
        @name: pattern => skeleton when condition
        pattern => skeleton

    Returns:
        The Rule, or None for blank lines, comments and non-rule lines.

    Raises:
        RuleConstructionError: the line is a rule but cannot be compiled.
    """
    line = line.strip()

    # Skip empty lines and comments
    if not line or line.startswith('#'):
        return None

    fields = {}
    if line.startswith('@'):
        for regex, names in _HEADERS:
            match_obj = regex.match(line)
            if match_obj:
                fields = dict(zip(names, match_obj.groups()))
                line = match_obj.groups()[-1]
                break
    if 'priority' in fields:
        fields['priority'] = int(fields['priority'])

    if '=>' not in line:
        return None

    pattern_str, rest = line.split('=>', 1)
    skeleton_str, condition_str = _split_when(rest)

    return define_rule(
        pattern_str.strip(), skeleton_str, condition_str,
        symbols=symbols, extractors=extractors, prelude=prelude, **fields,
    )


def load_rules_from_dsl(
    text: str,
    base_path: Optional[Path] = None,
    symbols: Optional[SymbolTable] = None,
    extractors: Optional[ExtractorRegistry] = None,
    prelude: Optional[FoldFuncsType] = None,
    _included_files: Optional[Set[Path]] = None,
) -> List[Rule]:
    """
    Load rules from DSL text.

    Supports:
    - Named groups: [groupname]
    - File includes: :include path/to/file.rules

    Args:
        text: DSL text containing rules
        base_path: Base path for resolving relative :include paths
        symbols, extractors, prelude: Passed to define_rule for every rule
        _included_files: Files on the current include chain (cycle detection)

    Returns:
        List of rules in file order

    Raises:
        RuleConstructionError: malformed rule (message carries the line
            number) or circular include.
        FileNotFoundError: missing include file.
    """
    rules: List[Rule] = []
    current_group = None

    if _included_files is None:
        _included_files = set()

    for lineno, line in enumerate(text.split('\n'), 1):
        stripped = line.strip()

        # Group declaration: [groupname]
        if stripped.startswith('[') and stripped.endswith(']'):
            current_group = stripped[1:-1].strip() or None
            continue

        # Include directive: :include path
        if stripped.startswith(':include '):
            include_str = stripped[len(':include '):].strip()
            if not include_str:
                continue
            include_path = base_path / include_str if base_path else Path(include_str)

            abs_path = include_path.resolve()
            if abs_path in _included_files:
                raise RuleConstructionError(f"Circular include detected: {include_path}")
            if not include_path.exists():
                raise FileNotFoundError(f"Include file not found: {include_path}")

            # Cycles are files already on the current include chain
            included = load_rules_from_file(
                include_path, symbols=symbols, extractors=extractors,
                prelude=prelude, _included_files=_included_files | {abs_path},
            )
            # Untagged included rules join the current group
            for rule in included:
                if current_group and not rule.metadata.tags:
                    rule = rule.with_metadata(tags=(current_group,))
                rules.append(rule)
            continue

        try:
            rule = parse_rule_line(line, symbols, extractors, prelude)
        except RuleConstructionError as e:
            raise RuleConstructionError(f"Line {lineno}: {e}") from e
        if rule is None:
            continue
        if current_group and current_group not in rule.metadata.tags:
            rule = rule.with_metadata(tags=rule.metadata.tags + (current_group,))
        rules.append(rule)
    return rules


def load_rules_from_file(
    path: Union[str, Path],
    symbols: Optional[SymbolTable] = None,
    extractors: Optional[ExtractorRegistry] = None,
    prelude: Optional[FoldFuncsType] = None,
    _included_files: Optional[Set[Path]] = None,
) -> List[Rule]:
    """
    Load rules from a .rules or .json file.

    DSL :include directives resolve relative to the containing file.
    """
    path = Path(path)
    text = path.read_text()

    if path.suffix == '.json':
        rules = load_rules_from_json(text, symbols, extractors, prelude)
    else:
        if _included_files is None:
            _included_files = {path.resolve()}
        rules = load_rules_from_dsl(
            text, base_path=path.parent, symbols=symbols, extractors=extractors,
            prelude=prelude, _included_files=_included_files,
        )
    logger.info("Loaded %d rules from %s", len(rules), path)
    return rules


def _from_json(value: Any, symbols: SymbolTable) -> Expression:
    # Strings are s-expressions, so "?x" is a pattern variable and "x" a symbol
    if isinstance(value, str):
        try:
            expr = parse_sexpr(value, symbols)
        except SexprSyntaxError as e:
            raise RuleConstructionError(str(e)) from e
        if expr is None:
            raise RuleConstructionError("Empty expression in JSON rule")
        return expr
    if isinstance(value, list) and value and isinstance(value[0], str):
        head = value[0]
        return Compound(head, [_from_json(v, symbols) for v in value[1:]], symbols.lookup(head))
    try:
        return to_expr(value, symbols)
    except (TypeError, ValueError) as e:
        raise RuleConstructionError(f"Malformed JSON rule expression: {e}") from e


def load_rules_from_json(
    text: str,
    symbols: Optional[SymbolTable] = None,
    extractors: Optional[ExtractorRegistry] = None,
    prelude: Optional[FoldFuncsType] = None,
) -> List[Rule]:
    """
    Load rules from JSON text.

    Expected format:
        {
            "name": "ruleset-name",
            "rules": [
                {
                    "name": "rule-name",
                    "description": "...",
                    "pattern": "(+ 0 ?x)",
                    "skeleton": "?x",
                    "priority": 100,        # optional
                    "condition": "...",     # optional guard expression
                    "tags": ["group1"]      # optional
                },
                or just [pattern, skeleton]
            ]
        }
    """
    table = symbols if symbols is not None else DEFAULT_SYMBOLS
    data = json.loads(text)
    rules = []

    for entry in data.get('rules', []):
        if isinstance(entry, dict):
            condition = entry.get('condition')
            rule = define_rule(
                _from_json(entry['pattern'], table),
                _from_json(entry['skeleton'], table),
                _from_json(condition, table) if condition is not None else None,
                name=entry.get('name'),
                description=entry.get('description'),
                tags=entry.get('tags') or (),
                priority=entry.get('priority', 0),
                symbols=table, extractors=extractors, prelude=prelude,
            )
        else:
            pattern, skeleton = entry[0], entry[1]
            rule = define_rule(_from_json(pattern, table), _from_json(skeleton, table),
                               symbols=table, extractors=extractors, prelude=prelude)
        rules.append(rule)

    return rules
