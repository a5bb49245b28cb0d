"""
Filter translation: one FilterClause -> one SPARQL expression fragment.

Dispatch is on the lower-cased filter name. Function clauses are not
rendered here; they are classified so the subgraph builder can collect
them for the aggregate and temporal passes. Range clauses of one
predicate are collected too and merged afterwards by merge_ranges(),
which decides between AND and OR per (greater, less) pair so that
wrap-around intervals such as compass bearings come out right.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Any, Optional

from forestqb.compiler.datatypes import resolve_datatype
from forestqb.config import CompilerConfig

logger = logging.getLogger(__name__)


class FilterKind(Enum):
    """Filter kinds recognised by the translator."""
    NEARBY = "nearby"
    WITHIN = "within"
    CONTAIN = "contain"
    BOUND = "bound"
    MATCH = "match"
    REGEX = "regex"
    RANGE = "range"
    AGGREGATE_FUNCTION = "aggregate_function"
    TEMPORAL_FUNCTION = "temporal_function"
    UNSUPPORTED = "unsupported"

    @property
    def is_function(self) -> bool:
        return self in (FilterKind.AGGREGATE_FUNCTION, FilterKind.TEMPORAL_FUNCTION)


_INLINE_KINDS = {
    kind.value: kind
    for kind in (
        FilterKind.NEARBY, FilterKind.WITHIN, FilterKind.CONTAIN, FilterKind.BOUND,
        FilterKind.MATCH, FilterKind.REGEX, FilterKind.RANGE,
    )
}

# These never reached the range branch of the filter-kind dispatch; they
# are reported as ignored rather than silently widened.
LEGACY_RANGE_VARIANTS = frozenset({"daterange", "timerange", "datetimerange"})

# Kinds that compare against input.value
_VALUE_KINDS = frozenset({FilterKind.CONTAIN, FilterKind.MATCH, FilterKind.REGEX, FilterKind.RANGE})

_OPERATOR_ALIASES = {
    "gt": ">", "gte": ">=", "ge": ">=",
    "lt": "<", "lte": "<=", "le": "<=",
    "eq": "=", "ne": "!=", "neq": "!=",
}


def classify_filter(text: Optional[str]) -> FilterKind:
    """Map a filter name (case-insensitive) to its FilterKind."""
    name = (text or "").strip().lower()
    if "function" in name:
        if "temporal" in name or "date" in name:
            return FilterKind.TEMPORAL_FUNCTION
        return FilterKind.AGGREGATE_FUNCTION
    return _INLINE_KINDS.get(name, FilterKind.UNSUPPORTED)


def normalize_operator(expression: str) -> str:
    """Map textual comparison operators (gt, lte, ...) onto SPARQL symbols."""
    op = expression.strip()
    return _OPERATOR_ALIASES.get(op.lower(), op)


_ECHARS = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t"}


def escape_string(value: Any) -> str:
    """Escape a value for embedding inside a double-quoted SPARQL literal."""
    return "".join(_ECHARS.get(char, char) for char in str(value))


def is_missing(value: Any) -> bool:
    return value is None or value == ""


def format_number(value: Any) -> str:
    """Render a coordinate-like number without float noise."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _km(meters: Any) -> str:
    km = round(float(meters) / 1000, 2)
    return ("%.2f" % km).rstrip("0").rstrip(".")


class FilterTranslator:
    """
    Turns FilterClauses into SPARQL expression fragments.

    Holds only read-only configuration, so one instance can serve any
    number of compilations.
    """

    def __init__(self, config: Optional[CompilerConfig] = None):
        self.config = config or CompilerConfig()
        self._dispatch = {
            FilterKind.NEARBY: self._nearby,
            FilterKind.WITHIN: self._within,
            FilterKind.CONTAIN: self._contain,
            FilterKind.BOUND: self._bound,
            FilterKind.MATCH: self._match,
            FilterKind.REGEX: self._regex,
            FilterKind.RANGE: self._range,
        }

    def translate(self, clause, predicate_name: Optional[str], datatype: Optional[str]) -> Optional[str]:
        """
        Translate one clause.

        Returns None for function clauses (collected elsewhere), for
        unsupported filter kinds and for value filters without a value.
        None of these is treated as an error.
        """
        kind = classify_filter(clause.text)
        handler = self._dispatch.get(kind)
        if handler is None:
            if kind == FilterKind.UNSUPPORTED:
                name = (clause.text or "").strip().lower()
                if name in LEGACY_RANGE_VARIANTS:
                    logger.debug(f"Ignoring unreachable range variant '{clause.text}'")
                else:
                    logger.debug(f"Ignoring unsupported filter kind '{clause.text}'")
            return None
        if predicate_name is None and kind not in (FilterKind.NEARBY, FilterKind.WITHIN):
            logger.debug(f"Ignoring '{clause.text}' filter without a variable to constrain")
            return None
        if kind in _VALUE_KINDS and is_missing(clause.value):
            logger.debug(f"Ignoring '{clause.text}' filter without a value")
            return None
        return handler(clause, predicate_name, datatype or self.config.default_datatype)

    def xsd_type(self, datatype: str) -> str:
        return resolve_datatype(datatype, self.config.datatype_prefix)

    # =========================================================================
    # Geospatial
    # =========================================================================

    def _nearby(self, clause, predicate_name, datatype) -> Optional[str]:
        center = clause.center or {}
        if clause.radius is None or "lat" not in center or "lng" not in center:
            logger.debug("Ignoring nearby filter without center/radius")
            return None
        return (
            f"({format_number(center['lat'])} {format_number(center['lng'])} "
            f"{_km(clause.radius)} <{self.config.distance_unit_iri}>)"
        )

    def _within(self, clause, predicate_name, datatype) -> Optional[str]:
        points = []
        for lat_lng in clause.lat_lngs:
            if isinstance(lat_lng, dict):
                lat, lng = lat_lng["lat"], lat_lng["lng"]
            else:
                lat, lng = lat_lng[0], lat_lng[1]
            # WKT wants longitude first
            points.append(f"{format_number(lng)} {format_number(lat)}")
        if not points:
            logger.debug("Ignoring within filter without coordinates")
            return None
        return f'"POLYGON(({", ".join(points)}))"^^geo:wktLiteral'

    # =========================================================================
    # String matching
    # =========================================================================

    def _contain(self, clause, predicate_name, datatype) -> str:
        return f'regex(str({predicate_name}), "{escape_string(clause.value)}", "i")'

    def _bound(self, clause, predicate_name, datatype) -> str:
        negate = "!" if "not" in str(clause.value or "") else ""
        return f"{negate}BOUND({predicate_name})"

    def _match(self, clause, predicate_name, datatype) -> str:
        if "string" in datatype:
            return f'regex({predicate_name}, "^{escape_string(clause.value)}")'
        return f'{predicate_name} = "{escape_string(clause.value)}"^^{self.xsd_type(datatype)}'

    def _regex(self, clause, predicate_name, datatype) -> str:
        return f'regex({predicate_name}, "{escape_string(clause.value)}")'

    # =========================================================================
    # Ranges
    # =========================================================================

    def _range(self, clause, predicate_name, datatype) -> str:
        op = normalize_operator(clause.expression)
        return f'{predicate_name} {op} "{escape_string(clause.value)}"^^{self.xsd_type(datatype)}'


# =============================================================================
# Range merging
# =============================================================================

@dataclass
class RangeBound:
    """A translated range clause awaiting merge."""
    value: Any
    expression: str
    fragment: str

    @property
    def is_greater(self) -> bool:
        op = self.expression.lower()
        return "gt" in op or ">" in op

    @property
    def is_less(self) -> bool:
        op = self.expression.lower()
        return "lt" in op or "<" in op


def _parse_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) else result


def _parse_temporal(value: Any):
    text = str(value).strip().replace("Z", "+00:00")
    for parser in (datetime.fromisoformat, time.fromisoformat):
        try:
            return parser(text)
        except ValueError:
            continue
    return None


def upper_exceeds_lower(less_value: Any, greater_value: Any) -> bool:
    """
    True if the less-than bound lies above the greater-than bound.

    Values are compared numerically when both parse as floats, then as
    ISO dates/datetimes/times, and finally as plain strings.
    """
    less_num, greater_num = _parse_float(less_value), _parse_float(greater_value)
    if less_num is not None and greater_num is not None:
        return less_num > greater_num

    less_t, greater_t = _parse_temporal(less_value), _parse_temporal(greater_value)
    if less_t is not None and greater_t is not None and type(less_t) is type(greater_t):
        try:
            return less_t > greater_t
        except TypeError:
            # naive vs aware datetimes
            pass
    return str(less_value) > str(greater_value)


def merge_ranges(bounds: list[RangeBound]) -> Optional[str]:
    """
    Combine the range clauses of one predicate into a single expression.

    Greater-than bounds are paired FIFO with less-than bounds. A pair
    whose upper bound lies above its lower bound is an ordinary interval
    and uses &&; otherwise the interval wraps around and uses ||.
    Unpaired bounds stand alone. Everything is joined with ||.

    Example:
        ?Direction > 315, ?Direction < 45
        -> (?Direction > "315"^^xsd:float || ?Direction < "45"^^xsd:float)
    """
    greater = [b for b in bounds if b.is_greater]
    less = [b for b in bounds if not b.is_greater and b.is_less]
    for bound in bounds:
        if not bound.is_greater and not bound.is_less:
            logger.debug(f"Dropping range bound with operator '{bound.expression}'")

    parts = []
    for greater_bound in greater:
        if not less:
            parts.append(greater_bound.fragment)
            continue
        less_bound = less.pop(0)
        joiner = "&&" if upper_exceeds_lower(less_bound.value, greater_bound.value) else "||"
        parts.append(f"({greater_bound.fragment} {joiner} {less_bound.fragment})")

    parts.extend(b.fragment for b in less)

    if not parts:
        return None
    return " || ".join(parts)
