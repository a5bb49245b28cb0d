"""
Abstract Syntax Tree (AST) nodes for generated SPARQL queries.

The compiler assembles a SelectQuery out of these nodes and serializes
it once at the very end. Terms are kept as already-rendered SPARQL
fragments; the graph builder validates each fragment before it enters
the tree, so the nodes themselves only deal with structure.

Every group graph pattern can carry an `origin`, the observable key it
was built for. Post-processing passes (BIND injection) locate their
target scope through that field instead of searching rendered text.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional, Union

INDENT = "  "

_VARIABLE_RE = re.compile(r"[?$][A-Za-z_]\w*")


def find_variables(fragment: str) -> list[str]:
    """Return the variables mentioned in a fragment, in order of appearance."""
    return _VARIABLE_RE.findall(fragment)


# =============================================================================
# Modifiers
# =============================================================================

class ModifierKind(Enum):
    """Solution modifiers, declared in serialization order."""
    GROUP_BY = "GROUP BY"
    ORDER_BY = "ORDER BY"
    LIMIT = "LIMIT"


class OrderDirection(Enum):
    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def from_str(cls, direction: Optional[str]) -> "OrderDirection":
        """Parse a direction, defaulting to ascending."""
        try:
            return cls(str(direction or "").strip().upper())
        except ValueError:
            return cls.ASC


def _render_group_by(value: list[str]) -> str:
    return "GROUP BY " + " ".join(value)


def _render_order_by(value: list[tuple[str, OrderDirection]]) -> str:
    return "ORDER BY " + " ".join(f"{d.value}({expr})" for expr, d in value)


def _render_limit(value: int) -> str:
    return f"LIMIT {int(value)}"


_MODIFIER_RENDERERS = {
    ModifierKind.GROUP_BY: _render_group_by,
    ModifierKind.ORDER_BY: _render_order_by,
    ModifierKind.LIMIT: _render_limit,
}


@dataclass(frozen=True)
class Modifier:
    """
    A solution modifier.

    value depends on kind:
        GROUP_BY: list of variables
        ORDER_BY: list of (expression, OrderDirection) pairs
        LIMIT: int
    """
    kind: ModifierKind
    value: Any

    def __str__(self) -> str:
        return _MODIFIER_RENDERERS[self.kind](self.value)


def render_modifiers(modifiers: list[Modifier]) -> list[str]:
    order = list(ModifierKind)
    return [str(m) for m in sorted(modifiers, key=lambda m: order.index(m.kind))]


# =============================================================================
# Graph Pattern Elements
# =============================================================================

@dataclass(frozen=True)
class TriplePattern:
    """A triple pattern; each slot holds a rendered term."""
    subject: str
    predicate: str
    object: str

    def __str__(self) -> str:
        return f"{self.subject} {self.predicate} {self.object} ."

    def get_variables(self) -> set[str]:
        """Return all variables in this pattern."""
        vars = set()
        for term in (self.subject, self.predicate, self.object):
            vars.update(find_variables(term))
        return vars

    def render(self, depth: int) -> list[str]:
        return [INDENT * depth + str(self)]


@dataclass(frozen=True)
class Filter:
    """A FILTER clause constraining query results."""
    expression: str

    def __str__(self) -> str:
        return f"FILTER({self.expression})"

    def render(self, depth: int) -> list[str]:
        return [INDENT * depth + str(self)]


@dataclass(frozen=True)
class Bind:
    """A BIND clause assigning an expression to a new variable."""
    expression: str
    alias: str

    def __str__(self) -> str:
        return f"BIND({self.expression} AS {self.alias})"

    def render(self, depth: int) -> list[str]:
        return [INDENT * depth + str(self)]


@dataclass
class OptionalPattern:
    """OPTIONAL { ... }"""
    pattern: "GroupGraphPattern"

    def render(self, depth: int) -> list[str]:
        lines = [INDENT * depth + "OPTIONAL {"]
        lines.extend(self.pattern.render_body(depth + 1))
        lines.append(INDENT * depth + "}")
        return lines

    def binds(self, variable: str) -> bool:
        return variable in self.pattern.get_variables()


@dataclass
class UnionPattern:
    """
    Alternatives joined by UNION.

    A single branch renders as a plain nested group.
    """
    branches: list[Union["GroupGraphPattern", "SubSelect"]] = field(default_factory=list)

    def render(self, depth: int) -> list[str]:
        lines = []
        for i, branch in enumerate(self.branches):
            if i > 0:
                lines.append(INDENT * depth + "UNION")
            lines.extend(branch.render(depth))
        return lines


@dataclass
class SubSelect:
    """A nested SELECT query used as a graph pattern."""
    query: "SelectQuery"

    def render(self, depth: int) -> list[str]:
        lines = [INDENT * depth + "{"]
        lines.extend(self.query.render_select(depth + 1))
        lines.append(INDENT * depth + "}")
        return lines


PatternElement = Union[
    TriplePattern, Filter, Bind, OptionalPattern, UnionPattern, SubSelect, "GroupGraphPattern"
]


@dataclass
class GroupGraphPattern:
    """
    An ordered group of pattern elements: { ... }.

    Elements serialize in insertion order. `origin` records the
    observable key the group was built for, if any.
    """
    elements: list[PatternElement] = field(default_factory=list)
    origin: Optional[str] = None

    def add(self, element: PatternElement) -> "GroupGraphPattern":
        self.elements.append(element)
        return self

    def insert_after(self, anchor: PatternElement, element: PatternElement) -> None:
        """Insert `element` directly after `anchor` (identity match)."""
        for i, existing in enumerate(self.elements):
            if existing is anchor:
                self.elements.insert(i + 1, element)
                return
        raise ValueError("anchor element is not part of this group")

    @property
    def triples(self) -> list[TriplePattern]:
        return [e for e in self.elements if isinstance(e, TriplePattern)]

    @property
    def optionals(self) -> list[OptionalPattern]:
        return [e for e in self.elements if isinstance(e, OptionalPattern)]

    @property
    def filters(self) -> list[Filter]:
        return [e for e in self.elements if isinstance(e, Filter)]

    @property
    def binds(self) -> list[Bind]:
        return [e for e in self.elements if isinstance(e, Bind)]

    def is_empty(self) -> bool:
        return not self.elements

    def get_variables(self) -> set[str]:
        """Return all variables declared by triple patterns in this group, recursively."""
        vars = set()
        for pattern in self.walk():
            for triple in pattern.triples:
                vars.update(triple.get_variables())
            for bind in pattern.binds:
                vars.add(bind.alias)
        return vars

    def walk(self) -> Iterator["GroupGraphPattern"]:
        """Yield this group and every group nested inside it, depth first."""
        yield self
        for element in self.elements:
            if isinstance(element, GroupGraphPattern):
                yield from element.walk()
            elif isinstance(element, OptionalPattern):
                yield from element.pattern.walk()
            elif isinstance(element, UnionPattern):
                for branch in element.branches:
                    if isinstance(branch, SubSelect):
                        yield from branch.query.where.walk()
                    else:
                        yield from branch.walk()
            elif isinstance(element, SubSelect):
                yield from element.query.where.walk()

    def find_origin(self, origin: str) -> Optional["GroupGraphPattern"]:
        """Return the first group (depth first) built for `origin`."""
        for pattern in self.walk():
            if pattern.origin == origin:
                return pattern
        return None

    def render_body(self, depth: int) -> list[str]:
        lines = []
        for element in self.elements:
            lines.extend(element.render(depth))
        return lines

    def render(self, depth: int) -> list[str]:
        lines = [INDENT * depth + "{"]
        lines.extend(self.render_body(depth + 1))
        lines.append(INDENT * depth + "}")
        return lines

    def __str__(self) -> str:
        return "\n".join(self.render(0))


# =============================================================================
# Query Structure
# =============================================================================

@dataclass
class SelectQuery:
    """
    A SELECT query.

    SELECT ?s ?o
    WHERE { ?s ?p ?o }
    """
    prefixes: dict[str, str] = field(default_factory=dict)
    projection: list[str] = field(default_factory=list)  # Empty list means SELECT *
    where: GroupGraphPattern = field(default_factory=GroupGraphPattern)
    modifiers: list[Modifier] = field(default_factory=list)
    distinct: bool = False

    def is_select_all(self) -> bool:
        """Check if this is a SELECT * query."""
        return len(self.projection) == 0

    def project(self, item: str) -> bool:
        """Append an item to the projection unless already present."""
        if item in self.projection:
            return False
        self.projection.append(item)
        return True

    def set_modifier(self, kind: ModifierKind, value: Any) -> None:
        """Set a modifier, replacing any existing one of the same kind."""
        self.modifiers = [m for m in self.modifiers if m.kind != kind]
        self.modifiers.append(Modifier(kind, value))

    def get_modifier(self, kind: ModifierKind) -> Optional[Modifier]:
        for modifier in self.modifiers:
            if modifier.kind == kind:
                return modifier
        return None

    def render_select(self, depth: int) -> list[str]:
        """Render SELECT, WHERE and modifiers (no prologue)."""
        pad = INDENT * depth
        distinct_str = "DISTINCT " if self.distinct else ""
        if self.is_select_all():
            lines = [f"{pad}SELECT {distinct_str}*"]
        else:
            lines = [f"{pad}SELECT {distinct_str}{' '.join(self.projection)}"]

        lines.append(f"{pad}WHERE {{")
        lines.extend(self.where.render_body(depth + 1))
        lines.append(f"{pad}}}")

        lines.extend(pad + m for m in render_modifiers(self.modifiers))
        return lines

    def used_prefixes(self, body: str) -> dict[str, str]:
        """Return the declared prefixes whose `name:` occurs in the body."""
        used = {}
        for prefix, uri in self.prefixes.items():
            if re.search(rf"(?<![\w/#.\-]){re.escape(prefix)}:", body):
                used[prefix] = uri
        return used

    def __str__(self) -> str:
        body = "\n".join(self.render_select(0))
        parts = [f"PREFIX {prefix}: <{uri}>" for prefix, uri in self.used_prefixes(body).items()]
        parts.append(body)
        return "\n".join(parts)
