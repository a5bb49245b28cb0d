"""
Aggregate subquery generation.

Aggregate requests collected during filter translation are grouped by
the observable key they came from. Each group becomes one branch
anchored on its observable's triple, plus one triple per aggregated
variable binding it through its predicate IRI. The branches go into a
sub-SELECT whose projection is the list of aggregate expressions:

    { SELECT (AVG(?temperature) AS ?AvgTemperature)
      WHERE { ?sensor <...#hasTemperature> ?temperature . ... } }

Branches from different keys are joined by UNION, except when the
groups aggregate different variable sets. In that case UNION is
dropped and the branches are emitted one after the other; this keeps
the bound-variable shape consistent but is not a general merge rule
for heterogeneous branches.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from forestqb.compiler.builder import (
    SELECT_KINDS,
    FunctionSpec,
    GraphBuilder,
    prepare_entity,
)
from forestqb.sparql.ast import GroupGraphPattern, SelectQuery, SubSelect, UnionPattern
from forestqb.sparql.validator import ExpressionValidator

logger = logging.getLogger(__name__)


def aggregate_select_item(spec: FunctionSpec) -> str:
    """(AVG(?temperature) AS ?AvgTemperature)"""
    return f"({spec.call} AS {spec.alias})"


@dataclass
class AggregateSubquery:
    """Result of aggregate generation."""
    query: SelectQuery
    aliases: list[str] = field(default_factory=list)
    union_suppressed: bool = False


class AggregateGenerator:
    """Builds the aggregate sub-SELECT for one compilation."""

    def __init__(self, validator: ExpressionValidator):
        self.validator = validator

    def generate(self, groups: dict[str, list[FunctionSpec]]) -> Optional[AggregateSubquery]:
        """
        Build the aggregate subquery, or None when nothing was requested.

        Args:
            groups: FunctionSpecs keyed by their origin observable key,
                in encounter order.
        """
        groups = {key: specs for key, specs in groups.items() if specs}
        if not groups:
            return None

        select_items: list[str] = []
        aliases: list[str] = []
        branches: list[GroupGraphPattern] = []
        variable_sets: list[frozenset[str]] = []

        for origin, specs in groups.items():
            branches.append(self._branch(origin, specs))
            variable_sets.append(frozenset(s.variable_name for s in specs))
            for spec in specs:
                item = aggregate_select_item(spec)
                if item in select_items:
                    continue
                self.validator.validate(item, SELECT_KINDS)
                select_items.append(item)
                aliases.append(spec.alias)

        # Generated as SELECT *, then the projection is swapped for the
        # aggregate list.
        subquery = SelectQuery()
        subquery.projection = select_items

        union_suppressed = False
        if len(branches) == 1:
            subquery.where.elements.extend(branches[0].elements)
            subquery.where.origin = branches[0].origin
        elif len(set(variable_sets)) == 1:
            subquery.where.add(UnionPattern(branches))
        else:
            union_suppressed = True
            logger.warning(
                "Aggregate branches bind different variable sets; "
                "emitting them sequentially instead of as a UNION"
            )
            for branch in branches:
                subquery.where.add(branch)

        return AggregateSubquery(subquery, aliases, union_suppressed)

    def _branch(self, origin: str, specs: list[FunctionSpec]) -> GroupGraphPattern:
        first = specs[0]
        subject = prepare_entity(first.subject)
        graph = GraphBuilder(self.validator, origin=origin)
        graph.where(subject, prepare_entity(first.predicate), prepare_entity(first.object))

        seen = set()
        for spec in specs:
            binding = (spec.variable_uri, spec.variable_name)
            if binding in seen:
                continue
            seen.add(binding)
            graph.also(prepare_entity(spec.variable_uri), spec.variable_name, subject=subject)
        return graph.pattern

    def apply(self, query: SelectQuery, groups: dict[str, list[FunctionSpec]]) -> Optional[AggregateSubquery]:
        """Append the aggregate sub-SELECT to `query` and project its aliases."""
        result = self.generate(groups)
        if result is None:
            return None
        query.where.add(SubSelect(result.query))
        for alias in result.aliases:
            query.project(alias)
        logger.debug(f"Added aggregate subquery with {len(result.aliases)} aliases")
        return result
