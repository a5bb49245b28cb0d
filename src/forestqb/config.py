"""
Compiler configuration.

A CompilerConfig is built once and handed to the compiler at
construction time. It is frozen, and its prefix table is exposed as a
read-only mapping, so concurrent compilations can share one instance.

Usage:
    config = CompilerConfig()
    config = CompilerConfig.from_dict({"prefixes": {"sosa": "http://www.w3.org/ns/sosa/"}})
    config = load_config("forestqb.yaml")
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "FORESTQB_CONFIG"

XSD = "http://www.w3.org/2001/XMLSchema#"

DEFAULT_PREFIXES = {
    "xsd": XSD,
    "rdfs": "http://www.w3.org/2000/01/rdf-schema#",
    "geo": "http://www.opengis.net/ont/geosparql#",
}

GEOSPARQL_NEARBY = "http://www.opengis.net/def/function/geosparql/nearby"
GEOSPARQL_WITHIN = "http://www.opengis.net/def/function/geosparql/within"


def _freeze(prefixes: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(prefixes))


@dataclass(frozen=True)
class CompilerConfig:
    """Read-only tables consulted while compiling a request."""
    prefixes: Mapping[str, str] = field(default_factory=lambda: _freeze(DEFAULT_PREFIXES))
    geo_function_iris: frozenset[str] = frozenset({GEOSPARQL_NEARBY, GEOSPARQL_WITHIN})
    distance_unit_iri: str = "http://qudt.org/vocab/unit#Kilometer"
    sensor_class_iri: str = "http://www.w3.org/ns/sosa/Sensor"
    feature_of_interest_iri: str = "http://www.w3.org/ns/sosa/hasFeatureOfInterest"
    latitude_iri: str = "http://www.w3.org/2003/01/geo/wgs84_pos#lat"
    longitude_iri: str = "http://www.w3.org/2003/01/geo/wgs84_pos#long"
    datatype_prefix: str = "xsd"
    default_datatype: str = XSD + "string"

    def __post_init__(self):
        if not isinstance(self.prefixes, MappingProxyType):
            object.__setattr__(self, "prefixes", _freeze(self.prefixes))
        if not isinstance(self.geo_function_iris, frozenset):
            object.__setattr__(self, "geo_function_iris", frozenset(self.geo_function_iris))

    def is_geo_function(self, uri: Optional[str]) -> bool:
        return uri in self.geo_function_iris

    def to_dict(self) -> dict[str, Any]:
        return {
            "prefixes": dict(self.prefixes),
            "geo_function_iris": sorted(self.geo_function_iris),
            "distance_unit_iri": self.distance_unit_iri,
            "sensor_class_iri": self.sensor_class_iri,
            "feature_of_interest_iri": self.feature_of_interest_iri,
            "latitude_iri": self.latitude_iri,
            "longitude_iri": self.longitude_iri,
            "datatype_prefix": self.datatype_prefix,
            "default_datatype": self.default_datatype,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompilerConfig:
        """
        Build a config from a plain dict.

        Extra prefixes are merged over the defaults rather than replacing
        them, so a config file only needs to list what it adds.
        """
        defaults = cls()
        prefixes = dict(DEFAULT_PREFIXES)
        prefixes.update(data.get("prefixes") or {})
        return cls(
            prefixes=prefixes,
            geo_function_iris=frozenset(data.get("geo_function_iris", defaults.geo_function_iris)),
            distance_unit_iri=data.get("distance_unit_iri", defaults.distance_unit_iri),
            sensor_class_iri=data.get("sensor_class_iri", defaults.sensor_class_iri),
            feature_of_interest_iri=data.get("feature_of_interest_iri", defaults.feature_of_interest_iri),
            latitude_iri=data.get("latitude_iri", defaults.latitude_iri),
            longitude_iri=data.get("longitude_iri", defaults.longitude_iri),
            datatype_prefix=data.get("datatype_prefix", defaults.datatype_prefix),
            default_datatype=data.get("default_datatype", defaults.default_datatype),
        )


def load_config(path: Optional[str | Path] = None) -> CompilerConfig:
    """
    Load a CompilerConfig from a YAML file.

    Falls back to the FORESTQB_CONFIG environment variable when no path
    is given, and to the built-in defaults when neither is set.
    """
    if path is None:
        path = os.getenv(CONFIG_ENV_VAR)
    if not path:
        return CompilerConfig()

    config_file = Path(path)
    with open(config_file, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    logger.info(f"Loaded compiler config from {config_file}")
    return CompilerConfig.from_dict(data)
