"""
Query assembly.

QueryCompiler is the entry point of the compiler. One call to build()
owns a fresh CompilationState, so the compiler instance itself only
holds read-only collaborators and can be shared across threads.

Pipeline:
    1. One Subgraph per observable (SubgraphBuilder)
    2. Projection, global ORDER BY and LIMIT
    3. WHERE: a single plain subgraph is inlined, anything else becomes
       a UNION of branches (modified branches as sub-SELECTs)
    4. Aggregate sub-SELECT (AggregateGenerator)
    5. Temporal BINDs (TemporalInjector)

When the request has no observables but carries location filters, a
location-discovery query is built instead and steps 2-5 are skipped.
"""

import logging
from typing import Any, Optional, Union

from forestqb.compiler.aggregates import AggregateGenerator
from forestqb.compiler.builder import (
    SELECT_KINDS,
    CompilationState,
    GraphBuilder,
    SubgraphBuilder,
    order_modifier,
    prepare_entity,
)
from forestqb.compiler.filters import FilterTranslator
from forestqb.compiler.temporal import TemporalInjector
from forestqb.config import CompilerConfig
from forestqb.errors import MissingFieldError
from forestqb.models import FilterSpec, QueryRequest, SensorPattern
from forestqb.sparql.ast import (
    ModifierKind,
    SelectQuery,
    UnionPattern,
    find_variables,
)
from forestqb.sparql.validator import ExpressionKind, ExpressionValidator

logger = logging.getLogger(__name__)


class QueryCompiler:
    """
    Compiles a declarative query request into a SPARQL SELECT query.

    Example:
        compiler = QueryCompiler()
        sparql = compiler.compile({
            "observables": [{"subject": "?person", "predicate": "foaf:knows", "object": "?friend"}],
            "observablesKeys": ["predicate"],
            "filters": {},
        })
    """

    def __init__(self, config: Optional[CompilerConfig] = None):
        self.config = config or CompilerConfig()
        self.validator = ExpressionValidator()
        self.translator = FilterTranslator(self.config)
        self.subgraphs = SubgraphBuilder(self.validator, self.translator, self.config)
        self.aggregates = AggregateGenerator(self.validator)
        self.temporal = TemporalInjector(self.validator)

    def compile(self, payload: Union[QueryRequest, dict[str, Any]]) -> str:
        """Compile a request (decoded JSON or QueryRequest) to SPARQL text."""
        query = self.build(payload)
        sparql = str(query)
        logger.debug(f"Generated query:\n{sparql}")
        return sparql

    def build(self, payload: Union[QueryRequest, dict[str, Any]]) -> SelectQuery:
        """Compile a request to the SelectQuery AST without serializing it."""
        request = payload if isinstance(payload, QueryRequest) else QueryRequest.from_dict(payload)
        state = CompilationState()

        for observable in request.observables:
            state.subgraphs.append(self.subgraphs.build(observable, request, state))

        if not state.subgraphs:
            if request.has_location_filters():
                return self._location_query(request)
            raise MissingFieldError("observables")

        query = SelectQuery(prefixes=dict(self.config.prefixes))
        for variable in state.selectable:
            self.validator.validate(variable, SELECT_KINDS)
            query.project(variable)

        sort_by = request.sort_by
        if sort_by is not None and sort_by.enabled:
            query.modifiers.append(order_modifier(self.validator, sort_by.expression, sort_by.direction))
        if request.limit is not None:
            query.set_modifier(ModifierKind.LIMIT, request.limit)

        self._assemble_where(query, state)

        aggregate_result = self.aggregates.apply(query, state.aggregates)
        temporal_report = self.temporal.apply(query, state.temporal_specs)

        self._check_projection(query, aggregate_result.aliases if aggregate_result else [])
        logger.info(
            f"Compiled {len(state.subgraphs)} subgraphs, {len(query.projection)} projected, "
            f"{len(aggregate_result.aliases) if aggregate_result else 0} aggregates, "
            f"{len(temporal_report.injected)} temporal binds"
        )
        return query

    def _assemble_where(self, query: SelectQuery, state: CompilationState) -> None:
        if len(state.subgraphs) == 1:
            subgraph = state.subgraphs[0]
            if not subgraph.modifiers:
                query.where = subgraph.pattern
            else:
                query.where.add(subgraph.as_branch())
            return
        query.where.add(UnionPattern([s.as_branch() for s in state.subgraphs]))

    def _check_projection(self, query: SelectQuery, aliases: list[str]) -> None:
        """Report projected variables that no pattern declares."""
        declared = query.where.get_variables() | set(aliases)
        for item in query.projection:
            if self.validator.matches(item, ExpressionKind.FUNCTION_AS):
                continue
            for variable in find_variables(item):
                if variable not in declared:
                    logger.warning(f"Projected variable {variable} is not bound in any pattern")

    # =========================================================================
    # Location discovery
    # =========================================================================

    def _location_query(self, request: QueryRequest) -> SelectQuery:
        """
        Find one sensor per feature of interest inside the filtered area.

        SELECT (SAMPLE(?sensor) AS ?sensorURI) ?featureOfInterest
        WHERE { ... } GROUP BY ?sensor ?featureOfInterest
        """
        if request.sensor_pattern is None:
            raise MissingFieldError("sensorPattern")
        pattern = SensorPattern.from_dict(request.sensor_pattern)
        config = self.config

        sensor = prepare_entity(pattern.sensor)
        subject = prepare_entity(pattern.s)
        graph = GraphBuilder(self.validator)
        graph.where(subject, prepare_entity(pattern.p), prepare_entity(pattern.o))
        graph.where(sensor, "a", f"<{config.sensor_class_iri}>")
        graph.optional(sensor, f"<{config.feature_of_interest_iri}>", "?featureOfInterest")
        graph.where(subject, f"<{config.latitude_iri}>", "?Latitude")
        graph.where(subject, f"<{config.longitude_iri}>", "?Longitude")

        union_branches = []
        for entity, specs in request.filters.items():
            for spec in specs:
                self._apply_location_spec(graph, prepare_entity(entity), spec, union_branches)
        graph.union(union_branches)

        query = SelectQuery(prefixes=dict(config.prefixes), where=graph.pattern)
        sample = f"(SAMPLE({sensor}) AS ?sensorURI)"
        self.validator.validate(sample, SELECT_KINDS)
        query.project(sample)
        query.project("?featureOfInterest")

        group_by = [sensor, "?featureOfInterest"]
        for variable in group_by:
            self.validator.validate(
                variable, ExpressionKind.VARIABLE | ExpressionKind.IRI | ExpressionKind.PREFIXED_IRI
            )
        query.set_modifier(ModifierKind.GROUP_BY, group_by)

        logger.info(f"Compiled location discovery over {len(request.filters)} filtered entities")
        return query

    def _apply_location_spec(self, graph: GraphBuilder, entity: str, spec: FilterSpec,
                             union_branches: list) -> None:
        geo = self.config.is_geo_function(spec.uri)
        for clause in spec.filters:
            if not clause.is_selected:
                continue
            if geo:
                fragment = self.translator.translate(clause, None, spec.datatype)
                if fragment is None:
                    continue
                function_iri = prepare_entity(spec.uri)
                if clause.is_union:
                    branch = GraphBuilder(self.validator).where(entity, function_iri, fragment)
                    union_branches.append(branch.pattern)
                else:
                    graph.also(function_iri, fragment, subject=entity)
            else:
                fragment = self.translator.translate(clause, spec.predicate_name, spec.datatype)
                if fragment is not None:
                    graph.filter(fragment)


def compile_query(payload: Union[QueryRequest, dict[str, Any]],
                  config: Optional[CompilerConfig] = None) -> str:
    """Compile one request with a throwaway QueryCompiler."""
    return QueryCompiler(config).compile(payload)
