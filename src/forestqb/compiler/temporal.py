"""
Temporal function injection.

Temporal functions (YEAR, MONTH, ...) do not need a subquery: the value
is computed in place with a BIND next to the pattern that binds the
variable, and the alias is added to the outer projection.

The target scope is found structurally. Every group built for an
observable carries that observable's key as its origin, so the first
group (depth first) with a matching origin is the one to patch.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from forestqb.compiler.builder import FunctionSpec, bind_clause, prepare_entity
from forestqb.sparql.ast import GroupGraphPattern, OptionalPattern, SelectQuery, TriplePattern
from forestqb.sparql.validator import ExpressionValidator

logger = logging.getLogger(__name__)


@dataclass
class InjectionReport:
    injected: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _binding_anchor(group: GroupGraphPattern, spec: FunctionSpec):
    """
    Return (anchor, found) for a BIND of spec's variable in `group`.

    anchor is the element the BIND goes after, or None to append at the
    end of the group. found is False when nothing binds the variable.
    """
    variable = spec.variable_name
    for element in group.elements:
        if isinstance(element, OptionalPattern) and element.binds(variable):
            return element, True

    predicate = prepare_entity(spec.variable_uri)
    for element in group.elements:
        if (isinstance(element, TriplePattern)
                and element.predicate == predicate and element.object == variable):
            return element, True

    if variable in group.get_variables():
        return None, True
    return None, False


class TemporalInjector:
    """Places BIND clauses for temporal function requests."""

    def __init__(self, validator: ExpressionValidator):
        self.validator = validator

    def apply(self, query: SelectQuery, specs: list[FunctionSpec]) -> InjectionReport:
        report = InjectionReport()
        for spec in specs:
            if self._inject(query, spec):
                report.injected.append(spec.alias)
            else:
                report.skipped.append(spec.alias)
        return report

    def _inject(self, query: SelectQuery, spec: FunctionSpec) -> bool:
        group: Optional[GroupGraphPattern] = query.where.find_origin(spec.fieldset_uri)
        if group is None:
            logger.warning(
                f"No graph pattern built for key {spec.fieldset_uri}; skipping {spec.alias}"
            )
            return False

        if any(b.alias == spec.alias for b in group.binds):
            query.project(spec.alias)
            return True

        anchor, found = _binding_anchor(group, spec)
        if not found:
            logger.warning(
                f"{spec.variable_name} is not bound for key {spec.fieldset_uri}; skipping {spec.alias}"
            )
            return False

        bind = bind_clause(self.validator, spec.call, spec.alias)
        if anchor is None:
            group.add(bind)
        else:
            group.insert_after(anchor, bind)
        query.project(spec.alias)
        logger.debug(f"Injected {bind} for key {spec.fieldset_uri}")
        return True
