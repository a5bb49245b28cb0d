"""
Triple and subgraph building.

GraphBuilder is the only way fragments get into a GroupGraphPattern:
each method validates its fragments against the grammar kinds allowed
at that position and raises ExpressionValidationError before anything
reaches the AST.

SubgraphBuilder turns one Observable (plus the FilterSpecs attached to
its key) into a Subgraph, collecting selectable variables and function
requests into the per-compilation CompilationState as it goes.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from forestqb.compiler.filters import (
    FilterKind,
    FilterTranslator,
    RangeBound,
    classify_filter,
    merge_ranges,
    normalize_operator,
)
from forestqb.config import CompilerConfig
from forestqb.models import FilterClause, FilterSpec, Observable, QueryRequest
from forestqb.sparql.ast import (
    Bind,
    Filter,
    GroupGraphPattern,
    Modifier,
    ModifierKind,
    OptionalPattern,
    OrderDirection,
    SelectQuery,
    SubSelect,
    TriplePattern,
    UnionPattern,
)
from forestqb.sparql.validator import ExpressionKind as K
from forestqb.sparql.validator import ExpressionValidator

logger = logging.getLogger(__name__)

SUBJECT_KINDS = K.VARIABLE | K.IRI | K.PREFIXED_IRI
PREDICATE_KINDS = K.VARIABLE | K.IRI | K.PREFIXED_IRI | K.PATH
OBJECT_KINDS = K.VARIABLE | K.IRI | K.PREFIXED_IRI | K.NATIVE | K.COMPLEX | K.POLYGON
FILTER_KINDS = K.FUNCTION | K.COMPARISON | K.NESTED_COMPARISON
BIND_KINDS = K.FUNCTION
SELECT_KINDS = K.VARIABLE | K.FUNCTION_AS

_URL = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://[^\s<>\"]+$")


def prepare_entity(entity: str) -> str:
    """Wrap bare URLs in angle brackets; leave everything else untouched."""
    if _URL.match(entity):
        return f"<{entity}>"
    return entity


def is_variable(term: str) -> bool:
    return term.startswith(("?", "$"))


# =============================================================================
# Function requests
# =============================================================================

class FunctionCategory(Enum):
    AGGREGATE = "aggregate"
    TEMPORAL = "temporal"


@dataclass(frozen=True)
class FunctionSpec:
    """An aggregate or temporal function requested on a variable."""
    category: FunctionCategory
    function_type: str
    variable_name: str
    variable_uri: str
    subject: str
    predicate: str
    object: str
    fieldset_uri: str

    @property
    def alias(self) -> str:
        """AVG of ?temperature -> ?AvgTemperature"""
        name = self.variable_name.lstrip("?$")
        return f"?{self.function_type.lower().capitalize()}{name[:1].upper()}{name[1:]}"

    @property
    def call(self) -> str:
        return f"{self.function_type}({self.variable_name})"


# =============================================================================
# Compilation state
# =============================================================================

@dataclass
class Subgraph:
    """One observable's graph pattern plus its branch modifiers."""
    pattern: GroupGraphPattern
    modifiers: list[Modifier] = field(default_factory=list)

    @property
    def origin(self) -> Optional[str]:
        return self.pattern.origin

    def as_branch(self) -> Union[GroupGraphPattern, SubSelect]:
        """A modified subgraph is wrapped as its own sub-SELECT."""
        if not self.modifiers:
            return self.pattern
        return SubSelect(SelectQuery(where=self.pattern, modifiers=list(self.modifiers)))


@dataclass
class CompilationState:
    """Mutable state owned by exactly one compilation."""
    selectable: dict[str, bool] = field(default_factory=dict)
    subgraphs: list[Subgraph] = field(default_factory=list)
    aggregates: dict[str, list[FunctionSpec]] = field(default_factory=dict)
    temporals: dict[str, list[FunctionSpec]] = field(default_factory=dict)

    def add_selectable(self, variable: str) -> None:
        self.selectable.setdefault(variable, True)

    def add_function(self, spec: FunctionSpec) -> None:
        target = self.aggregates if spec.category == FunctionCategory.AGGREGATE else self.temporals
        target.setdefault(spec.fieldset_uri, []).append(spec)

    @property
    def temporal_specs(self) -> list[FunctionSpec]:
        return [spec for specs in self.temporals.values() for spec in specs]


# =============================================================================
# Validating graph builder
# =============================================================================

class GraphBuilder:
    """
    Fluent builder over one GroupGraphPattern.

    where() sets the anchor subject that also() reuses.
    """

    def __init__(self, validator: ExpressionValidator, origin: Optional[str] = None):
        self.validator = validator
        self.pattern = GroupGraphPattern(origin=origin)
        self._subject: Optional[str] = None

    def _triple(self, subject: str, predicate: str, obj: str) -> TriplePattern:
        self.validator.validate(subject, SUBJECT_KINDS)
        self.validator.validate(predicate, PREDICATE_KINDS)
        self.validator.validate(obj, OBJECT_KINDS)
        return TriplePattern(subject, predicate, obj)

    def where(self, subject: str, predicate: str, obj: str) -> "GraphBuilder":
        self.pattern.add(self._triple(subject, predicate, obj))
        self._subject = subject
        return self

    def also(self, predicate: str, obj: str, subject: Optional[str] = None) -> "GraphBuilder":
        """Add a triple on the current anchor subject (or an explicit one)."""
        subject = subject or self._subject
        if subject is None:
            raise ValueError("also() called before where()")
        self.pattern.add(self._triple(subject, predicate, obj))
        return self

    def optional(self, subject: str, predicate: str, obj: str) -> "GraphBuilder":
        inner = GroupGraphPattern([self._triple(subject, predicate, obj)])
        self.pattern.add(OptionalPattern(inner))
        return self

    def filter(self, expression: str) -> "GraphBuilder":
        self.validator.validate(expression, FILTER_KINDS)
        self.pattern.add(Filter(expression))
        return self

    def union(self, branches: list[Union[GroupGraphPattern, SubSelect]]) -> "GraphBuilder":
        if branches:
            self.pattern.add(UnionPattern(list(branches)))
        return self

    def group(self, pattern: GroupGraphPattern) -> "GraphBuilder":
        self.pattern.add(pattern)
        return self


def bind_clause(validator: ExpressionValidator, expression: str, alias: str) -> Bind:
    validator.validate(expression, BIND_KINDS)
    validator.validate(alias, K.VARIABLE)
    return Bind(expression, alias)


def order_modifier(validator: ExpressionValidator, expression: str, direction: Optional[str]) -> Modifier:
    """Build an ORDER BY modifier, adding the leading '?' when missing."""
    expression = expression.strip()
    if not expression.startswith(("?", "$")):
        expression = "?" + expression
    validator.validate(expression, K.VARIABLE)
    return Modifier(ModifierKind.ORDER_BY, [(expression, OrderDirection.from_str(direction))])


# =============================================================================
# Observable -> Subgraph
# =============================================================================

class SubgraphBuilder:
    """Builds one Subgraph per Observable."""

    def __init__(self, validator: ExpressionValidator, translator: FilterTranslator,
                 config: Optional[CompilerConfig] = None):
        self.validator = validator
        self.translator = translator
        self.config = config or translator.config

    def build(self, observable: Observable, request: QueryRequest, state: CompilationState) -> Subgraph:
        for term in (observable.subject, observable.predicate, observable.object):
            if is_variable(term):
                state.add_selectable(term)

        key = observable.key_for(request.observables_keys)
        subject = prepare_entity(observable.subject)

        graph = GraphBuilder(self.validator, origin=key)
        graph.where(subject, prepare_entity(observable.predicate), prepare_entity(observable.object))

        union_branches = []
        for spec in request.filters_for(key):
            self._apply_spec(graph, spec, observable, key, state, union_branches)
        graph.union(union_branches)

        subgraph = Subgraph(graph.pattern, self._modifiers(observable))
        logger.debug(
            f"Built subgraph for key {key}: {len(graph.pattern.elements)} elements, "
            f"{len(subgraph.modifiers)} modifiers"
        )
        return subgraph

    def _modifiers(self, observable: Observable) -> list[Modifier]:
        modifiers = []
        if observable.modifiers.order_by:
            modifiers.append(order_modifier(
                self.validator, observable.modifiers.order_by, observable.modifiers.order_direction
            ))
        if observable.modifiers.limit is not None:
            modifiers.append(Modifier(ModifierKind.LIMIT, observable.modifiers.limit))
        return modifiers

    def _apply_spec(self, graph: GraphBuilder, spec: FilterSpec, observable: Observable,
                    key: str, state: CompilationState, union_branches: list) -> None:
        subject = prepare_entity(observable.subject)
        predicate_uri = prepare_entity(spec.uri)

        if spec.is_optional and spec.predicate_name:
            graph.optional(subject, predicate_uri, spec.predicate_name)
        elif spec.predicate_name:
            graph.also(predicate_uri, spec.predicate_name, subject=subject)

        if spec.is_selectable and spec.predicate_name:
            state.add_selectable(spec.predicate_name)

        range_bounds = []
        for clause in spec.filters:
            if not clause.is_selected:
                continue

            if self.config.is_geo_function(spec.uri):
                self._apply_geo(graph, clause, subject, spec, union_branches)
                continue

            kind = classify_filter(clause.text)
            if kind.is_function:
                self._collect_function(kind, clause, spec, observable, key, state)
                continue

            fragment = self.translator.translate(clause, spec.predicate_name, spec.datatype)
            if kind == FilterKind.RANGE:
                if fragment is not None:
                    range_bounds.append(RangeBound(
                        clause.value, normalize_operator(clause.expression), fragment
                    ))
            elif fragment is not None:
                graph.filter(fragment)

        if range_bounds:
            merged = merge_ranges(range_bounds)
            if merged is not None:
                graph.filter(merged)

    def _apply_geo(self, graph: GraphBuilder, clause: FilterClause, subject: str,
                   spec: FilterSpec, union_branches: list) -> None:
        fragment = self.translator.translate(clause, None, spec.datatype)
        if fragment is None:
            return
        function_iri = prepare_entity(spec.uri)
        if clause.is_union:
            branch = GraphBuilder(self.validator).where(subject, function_iri, fragment)
            union_branches.append(branch.pattern)
        else:
            graph.also(function_iri, fragment, subject=subject)

    def _collect_function(self, kind: FilterKind, clause: FilterClause, spec: FilterSpec,
                          observable: Observable, key: str, state: CompilationState) -> None:
        function_type = str(clause.value or clause.expression or "").strip().upper()
        if not function_type or not spec.predicate_name:
            logger.warning(f"Ignoring function filter on {spec.uri}: missing function name or variable")
            return
        category = (
            FunctionCategory.TEMPORAL if kind == FilterKind.TEMPORAL_FUNCTION
            else FunctionCategory.AGGREGATE
        )
        state.add_function(FunctionSpec(
            category=category,
            function_type=function_type,
            variable_name=spec.predicate_name,
            variable_uri=spec.uri,
            subject=observable.subject,
            predicate=observable.predicate,
            object=observable.object,
            fieldset_uri=key,
        ))
