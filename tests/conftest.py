"""
Shared fixtures for the compiler tests.
"""

import pytest

from forestqb import CompilerConfig, QueryCompiler
from forestqb.compiler.filters import FilterTranslator
from forestqb.config import GEOSPARQL_NEARBY, XSD
from forestqb.sparql import ExpressionValidator

SOSA = "http://www.w3.org/ns/sosa/"
EX = "http://example.org/"


def range_clause(expression, value, operator="AND"):
    return {
        "selectedFilter": {"text": "range"},
        "input": {"value": value, "expression": expression},
        "operator": operator,
    }


@pytest.fixture
def config():
    return CompilerConfig()


@pytest.fixture
def validator():
    return ExpressionValidator()


@pytest.fixture
def translator(config):
    return FilterTranslator(config)


@pytest.fixture
def compiler(config):
    return QueryCompiler(config)


@pytest.fixture
def temperature_request():
    """One sensor observable with a 10..15 range on its temperature."""
    return {
        "observables": [
            {"subject": "?sensor", "predicate": SOSA + "observes", "object": "?property"},
        ],
        "observablesKeys": ["?sensor"],
        "filters": {
            "?sensor": [
                {
                    "uri": EX + "hasTemperature",
                    "predicateName": "?temperature",
                    "isOptional": False,
                    "isSelectable": True,
                    "datatype": {"value": XSD + "float"},
                    "filters": [range_clause(">", "10"), range_clause("<", "15")],
                },
            ],
        },
    }


@pytest.fixture
def location_request():
    """No observables, a nearby filter on the platform and a sensor pattern."""
    return {
        "observables": [],
        "filters": {
            "?platform": [
                {
                    "uri": GEOSPARQL_NEARBY,
                    "filters": [
                        {
                            "selectedFilter": {"text": "nearby"},
                            "input": {"center": {"lat": 51.5, "lng": -0.12}, "radius": 1000},
                            "operator": "AND",
                        },
                    ],
                },
            ],
        },
        "sensorPattern": {
            "s": "?platform",
            "p": SOSA + "hosts",
            "o": "?sensor",
            "sensorKey": "o",
        },
    }
