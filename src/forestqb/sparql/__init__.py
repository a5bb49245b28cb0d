"""
SPARQL query model and fragment validation.
"""

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
    find_variables,
)
from forestqb.sparql.validator import (
    ExpressionKind,
    ExpressionValidator,
    has_balanced_brackets,
    kind_names,
)

__all__ = [
    "Bind",
    "Filter",
    "GroupGraphPattern",
    "Modifier",
    "ModifierKind",
    "OptionalPattern",
    "OrderDirection",
    "SelectQuery",
    "SubSelect",
    "TriplePattern",
    "UnionPattern",
    "find_variables",
    "ExpressionKind",
    "ExpressionValidator",
    "has_balanced_brackets",
    "kind_names",
]
