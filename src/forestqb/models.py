"""
Typed request model.

The HTTP layer hands the compiler a decoded JSON object. These
dataclasses give that loosely structured input a fixed shape, failing
fast with a MissingFieldError that names the offending path whenever a
required field is absent.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from forestqb.errors import InvalidFieldError, MissingFieldError

OBSERVABLE_ROLES = ("subject", "predicate", "object")


def _require(data: Any, key: str, path: str) -> Any:
    if not isinstance(data, dict) or data.get(key) is None:
        raise MissingFieldError(f"{path}.{key}" if path else key)
    return data[key]


def _parse_limit(value: Any, path: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise InvalidFieldError(path, value, "a non-negative integer") from None
    if limit < 0:
        raise InvalidFieldError(path, value, "a non-negative integer")
    return limit


def _parse_number(value: Any, path: str) -> Optional[float]:
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise InvalidFieldError(path, value, "a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidFieldError(path, value, "a number") from None


def _is_enabled(modifier: Any) -> bool:
    return isinstance(modifier, dict) and bool(modifier.get("enabled")) and modifier.get("value") not in (None, "")


@dataclass
class FilterClause:
    """One filter applied to a FilterSpec's variable."""
    text: Optional[str] = None
    value: Any = None
    expression: str = ""
    center: Optional[dict[str, Any]] = None
    radius: Optional[float] = None
    lat_lngs: list[Any] = field(default_factory=list)
    operator: str = "AND"

    @property
    def is_selected(self) -> bool:
        """A clause without a filter name was never selected in the UI."""
        return bool(self.text)

    @property
    def is_union(self) -> bool:
        return self.operator.upper() == "UNION"

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "") -> FilterClause:
        if not isinstance(data, dict):
            raise MissingFieldError(path, f"Filter clause at {path} must be an object")
        selected = data.get("selectedFilter") or {}
        inp = data.get("input") or {}
        return cls(
            text=selected.get("text"),
            value=inp.get("value"),
            expression=str(inp.get("expression") or ""),
            center=inp.get("center"),
            radius=_parse_number(inp.get("radius"), f"{path}.input.radius"),
            lat_lngs=list(inp.get("latLngs") or []),
            operator=str(data.get("operator") or "AND"),
        )


@dataclass
class FilterSpec:
    """Filters attached to one predicate of an observable."""
    uri: str
    predicate_name: Optional[str] = None
    is_optional: bool = False
    is_selectable: bool = False
    datatype: Optional[str] = None
    filters: list[FilterClause] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str, uri: Optional[str] = None) -> FilterSpec:
        if not isinstance(data, dict):
            raise MissingFieldError(path, f"Filter spec at {path} must be an object")
        spec_uri = data.get("uri") or uri
        if not spec_uri:
            raise MissingFieldError(f"{path}.uri")

        datatype = data.get("datatype")
        if isinstance(datatype, dict):
            datatype = datatype.get("value")

        clauses = data.get("filters") or []
        if isinstance(clauses, dict):
            clauses = list(clauses.values())

        return cls(
            uri=spec_uri,
            predicate_name=data.get("predicateName") or None,
            is_optional=bool(data.get("isOptional", False)),
            is_selectable=bool(data.get("isSelectable", False)),
            datatype=datatype or None,
            filters=[
                FilterClause.from_dict(c, f"{path}.filters[{i}]")
                for i, c in enumerate(clauses)
            ],
        )


def parse_filter_specs(data: Any, path: str) -> list[FilterSpec]:
    """Parse the FilterSpecs of one key; accepts a list or a map keyed by IRI."""
    if not data:
        return []
    if isinstance(data, dict):
        return [
            FilterSpec.from_dict(spec, f"{path}[{key!r}]", uri=key)
            for key, spec in data.items()
        ]
    return [FilterSpec.from_dict(spec, f"{path}[{i}]") for i, spec in enumerate(data)]


@dataclass
class ObservableModifiers:
    """Per-branch solution modifiers."""
    limit: Optional[int] = None
    order_by: Optional[str] = None
    order_direction: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]], path: str = "modifiers") -> ObservableModifiers:
        data = data or {}
        limit = data.get("limit")
        order_by = data.get("orderBy")
        return cls(
            limit=_parse_limit(limit["value"], f"{path}.limit.value") if _is_enabled(limit) else None,
            order_by=str(order_by["value"]) if _is_enabled(order_by) else None,
            order_direction=order_by.get("direction") if _is_enabled(order_by) else None,
        )


@dataclass
class Observable:
    """A (subject, predicate, object) pattern the user wants to observe."""
    subject: str
    predicate: str
    object: str
    modifiers: ObservableModifiers = field(default_factory=ObservableModifiers)

    def key_role(self, observables_keys: list[str]) -> str:
        """
        Decide which slot keys this observable's filters.

        Subject wins if listed in observablesKeys, then object; predicate
        is the default.
        """
        if self.subject in observables_keys:
            return "subject"
        if self.object in observables_keys:
            return "object"
        return "predicate"

    def key_for(self, observables_keys: list[str]) -> str:
        return getattr(self, self.key_role(observables_keys))

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> Observable:
        return cls(
            subject=str(_require(data, "subject", path)),
            predicate=str(_require(data, "predicate", path)),
            object=str(_require(data, "object", path)),
            modifiers=ObservableModifiers.from_dict(data.get("modifiers"), f"{path}.modifiers"),
        )


@dataclass
class SensorPattern:
    """Triple shape used by location discovery; sensor_key names the sensor slot."""
    s: str
    p: str
    o: str
    sensor_key: str

    @property
    def sensor(self) -> str:
        return getattr(self, self.sensor_key)

    @classmethod
    def from_dict(cls, data: Any, path: str = "sensorPattern") -> SensorPattern:
        if not isinstance(data, dict):
            raise MissingFieldError(path)
        sensor_key = str(_require(data, "sensorKey", path))
        if sensor_key not in ("s", "p", "o"):
            raise MissingFieldError(f"{path}.{sensor_key}")
        return cls(
            s=str(_require(data, "s", path)),
            p=str(_require(data, "p", path)),
            o=str(_require(data, "o", path)),
            sensor_key=sensor_key,
        )


@dataclass
class SortSpec:
    expression: str
    direction: str = "ASC"

    DISABLED = "!none"

    @property
    def enabled(self) -> bool:
        return bool(self.expression) and self.expression != self.DISABLED

    @classmethod
    def from_dict(cls, data: Any) -> Optional[SortSpec]:
        if not isinstance(data, dict) or "expression" not in data or "direction" not in data:
            return None
        return cls(expression=str(data["expression"] or ""), direction=str(data["direction"] or ""))


@dataclass
class QueryRequest:
    """A complete compilation request."""
    observables: list[Observable] = field(default_factory=list)
    observables_keys: list[str] = field(default_factory=list)
    filters: dict[str, list[FilterSpec]] = field(default_factory=dict)
    sort_by: Optional[SortSpec] = None
    limit: Optional[int] = None
    sensor_pattern: Optional[dict[str, Any]] = None

    def filters_for(self, key: str) -> list[FilterSpec]:
        return self.filters.get(key, [])

    def has_location_filters(self) -> bool:
        """No observables, but the first filter entry carries specs."""
        if not self.filters:
            return False
        return len(next(iter(self.filters.values()))) > 0

    @classmethod
    def from_dict(cls, data: Any) -> QueryRequest:
        if not isinstance(data, dict):
            raise MissingFieldError("observables", "Request body must be a JSON object")

        raw_filters = data.get("filters") or {}
        if not isinstance(raw_filters, dict):
            raise MissingFieldError("filters", "filters must be an object keyed by observable key")

        raw_observables = data.get("observables")
        limit = data.get("limit")
        return cls(
            observables=[
                Observable.from_dict(o, f"observables[{i}]")
                for i, o in enumerate(raw_observables or [])
            ],
            observables_keys=[str(k) for k in data.get("observablesKeys") or []],
            filters={
                key: parse_filter_specs(specs, f"filters[{key!r}]")
                for key, specs in raw_filters.items()
            },
            sort_by=SortSpec.from_dict(data.get("sortBy")),
            limit=_parse_limit(limit, "limit"),
            sensor_pattern=data.get("sensorPattern"),
        )
