"""
Expression validation for SPARQL fragments.

Every fragment that enters the query AST is checked against the set of
grammar kinds allowed at its usage site. Validation is a disjunction:
the fragment is accepted as soon as it matches any allowed kind.

Most kinds are flat token shapes and are matched with regular
expressions. Comparisons and their &&/|| combinations nest, so they use
a small pyparsing grammar.
"""

import re
from enum import IntFlag
from typing import Any

import pyparsing as pp
from pyparsing import Forward, Regex, Suppress, ZeroOrMore

from forestqb.errors import ExpressionValidationError


class ExpressionKind(IntFlag):
    """Grammar kinds a fragment can be validated against."""
    VARIABLE = 1
    IRI = 2
    PREFIX = 4
    PREFIXED_IRI = 8
    NATIVE = 16
    PATH = 32
    FUNCTION = 64
    FUNCTION_AS = 128
    COMPLEX = 512            # (lat lng radius <unit>)
    POLYGON = 1024           # "POLYGON((...))"^^geo:wktLiteral
    COMPARISON = 2048        # ?x > "30"^^xsd:float
    NESTED_COMPARISON = 4096 # (?x > "1"^^xsd:float || ?x < "9"^^xsd:float)

    ALL = (
        VARIABLE | IRI | PREFIX | PREFIXED_IRI | NATIVE | PATH | FUNCTION
        | FUNCTION_AS | COMPLEX | POLYGON | COMPARISON | NESTED_COMPARISON
    )


# Human-readable names, in reporting order
KIND_NAMES = (
    (ExpressionKind.VARIABLE, "variable"),
    (ExpressionKind.IRI, "IRI"),
    (ExpressionKind.PREFIX, "prefix"),
    (ExpressionKind.PREFIXED_IRI, "prefixed IRI"),
    (ExpressionKind.NATIVE, "native"),
    (ExpressionKind.PATH, "path"),
    (ExpressionKind.FUNCTION, "function"),
    (ExpressionKind.FUNCTION_AS, "function with variable assignment"),
    (ExpressionKind.COMPLEX, "complex expression"),
    (ExpressionKind.POLYGON, "POLYGON literal"),
    (ExpressionKind.COMPARISON, "comparison expression"),
    (ExpressionKind.NESTED_COMPARISON, "nested comparison"),
)


# =============================================================================
# Token shapes
# =============================================================================

_VARIABLE = r"[?$][A-Za-z_]\w*"
_IRI = r"<[^\s<>\"{}|^`\\]*>"
_PREFIX = r"[A-Za-z][\w\-.]*"
_PNAME = rf"(?:{_PREFIX})?:[\w\-.%]+"
_NUMBER = r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"
_STRING = r"\"(?:[^\"\\\n\r]|\\.)*\"|'(?:[^'\\\n\r]|\\.)*'"
_LANG = r"@[A-Za-z]+(?:-[A-Za-z0-9]+)*"
_FUNCTION = r"!?\s*[A-Za-z_]\w*\s*\(.*\)"
_PATH_PRIMARY = rf"(?:{_IRI}|{_PNAME}|a)"
_PATH_ELEMENT = rf"[\^!]?\(?\s*{_PATH_PRIMARY}\s*\)?[*+?]?"
_COORD = r"-?\d+(?:\.\d+)?"

_PATTERNS = {
    ExpressionKind.VARIABLE: re.compile(rf"^{_VARIABLE}$"),
    ExpressionKind.IRI: re.compile(rf"^{_IRI}$"),
    ExpressionKind.PREFIX: re.compile(rf"^{_PREFIX}$"),
    ExpressionKind.PREFIXED_IRI: re.compile(rf"^{_PNAME}$"),
    ExpressionKind.NATIVE: re.compile(
        rf"^(?:{_NUMBER}|true|false|(?:{_STRING})(?:{_LANG}|\^\^(?:{_IRI}|{_PNAME}))?)$",
        re.IGNORECASE,
    ),
    ExpressionKind.PATH: re.compile(rf"^{_PATH_ELEMENT}(?:\s*[/|]\s*{_PATH_ELEMENT})*$"),
    ExpressionKind.FUNCTION: re.compile(rf"^{_FUNCTION}$"),
    ExpressionKind.FUNCTION_AS: re.compile(
        rf"^\(\s*({_FUNCTION})\s+AS\s+{_VARIABLE}\s*\)$", re.IGNORECASE
    ),
    ExpressionKind.COMPLEX: re.compile(
        rf"^\(\s*{_COORD}\s+{_COORD}\s+{_COORD}\s+<[^>\s]+>\s*\)$"
    ),
    ExpressionKind.POLYGON: re.compile(
        rf"^\"POLYGON\(\(\s*{_COORD}\s+{_COORD}(?:\s*,\s*{_COORD}\s+{_COORD})*\s*\)\)\"\^\^geo:wktLiteral$"
    ),
}

# Quoted strings and full IRIs may legitimately contain brackets
_ESCAPABLE = re.compile(rf"{_STRING}|{_IRI}")


def escape_sequences(expression: str) -> str:
    """Replace string literals and IRIs with a neutral placeholder."""
    return _ESCAPABLE.sub("_", expression)


def has_balanced_brackets(expression: str) -> bool:
    """Check that round brackets outside literals are balanced."""
    depth = 0
    for char in escape_sequences(expression):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def kind_names(kinds: ExpressionKind) -> list[str]:
    """Return the human-readable names of every kind set in `kinds`."""
    return [name for kind, name in KIND_NAMES if kinds & kind]


class ExpressionValidator:
    """
    Classifies SPARQL fragments against a fixed set of grammars.

    Stateless apart from the grammar objects built in __init__; a single
    instance can be shared by any number of compilations.
    """

    def __init__(self):
        self._build_grammar()

    def _build_grammar(self):
        """Build the pyparsing grammar for (nested) comparisons."""
        variable = Regex(_VARIABLE)
        comp_op = Regex(r"<=|>=|!=|=|<|>")
        typed_literal = Regex(rf"(?:{_STRING})\s*\^\^\s*(?:{_IRI}|{_PNAME})")
        number = Regex(_NUMBER)

        comparison = variable + comp_op + (typed_literal | number)

        bool_op = Regex(r"\|\||&&")
        expression = Forward()
        operand = comparison | (Suppress("(") + expression + Suppress(")"))
        expression <<= operand + ZeroOrMore(bool_op + operand)

        self._comparison = comparison
        self._nested_comparison = expression

    # =========================================================================
    # Public API
    # =========================================================================

    def validate(self, expression: Any, kinds: ExpressionKind) -> None:
        """
        Validate `expression` against the allowed `kinds`.

        Raises:
            ExpressionValidationError: if the expression is not a string or
                matches none of the allowed kinds. The error lists every
                allowed kind name.
        """
        if not isinstance(expression, str) or not self.matches(expression, kinds):
            raise ExpressionValidationError(str(expression), kind_names(kinds))

    def matches(self, expression: str, kinds: ExpressionKind) -> bool:
        """Return True if `expression` matches any of the allowed kinds."""
        return any(
            self._matches_kind(expression, kind)
            for kind, _ in KIND_NAMES
            if kinds & kind
        )

    def classify(self, expression: str) -> ExpressionKind:
        """Return every kind the expression matches (0 if none)."""
        result = ExpressionKind(0)
        for kind, _ in KIND_NAMES:
            if self._matches_kind(expression, kind):
                result |= kind
        return result

    # =========================================================================
    # Grammars
    # =========================================================================

    def _matches_kind(self, expression: str, kind: ExpressionKind) -> bool:
        if kind == ExpressionKind.COMPARISON:
            return self._parses(self._comparison, expression)
        if kind == ExpressionKind.NESTED_COMPARISON:
            return self._is_nested_comparison(expression)
        if not _PATTERNS[kind].fullmatch(expression):
            return False
        if kind == ExpressionKind.FUNCTION:
            return has_balanced_brackets(expression)
        if kind == ExpressionKind.FUNCTION_AS:
            inner = _PATTERNS[kind].fullmatch(expression).group(1)
            return has_balanced_brackets(inner)
        return True

    def _is_nested_comparison(self, expression: str) -> bool:
        # A bare comparison is its own kind
        return (
            self._parses(self._nested_comparison, expression)
            and not self._parses(self._comparison, expression)
        )

    @staticmethod
    def _parses(grammar: pp.ParserElement, expression: str) -> bool:
        try:
            grammar.parse_string(expression, parse_all=True)
        except pp.ParseException:
            return False
        return True
