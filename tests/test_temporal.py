"""
Tests for temporal BIND injection.
"""

import logging

import pytest

from forestqb.compiler.builder import FunctionCategory, FunctionSpec
from forestqb.compiler.temporal import TemporalInjector
from forestqb.sparql import Bind, GroupGraphPattern, OptionalPattern, SelectQuery, TriplePattern

SOSA = "http://www.w3.org/ns/sosa/"


def temporal(function_type="YEAR", variable="?time", origin="?obs"):
    return FunctionSpec(
        category=FunctionCategory.TEMPORAL,
        function_type=function_type,
        variable_name=variable,
        variable_uri=SOSA + "resultTime",
        subject="?obs",
        predicate=SOSA + "madeBySensor",
        object="?sensor",
        fieldset_uri=origin,
    )


def observation_request(optional=False, clauses=None):
    return {
        "observables": [{"subject": "?obs", "predicate": SOSA + "madeBySensor", "object": "?sensor"}],
        "observablesKeys": ["?obs"],
        "filters": {
            "?obs": [{
                "uri": SOSA + "resultTime",
                "predicateName": "?time",
                "isOptional": optional,
                "filters": clauses if clauses is not None else [
                    {"selectedFilter": {"text": "Temporal Function"}, "input": {"value": "year"}},
                ],
            }],
        },
    }


@pytest.fixture
def injector(validator):
    return TemporalInjector(validator)


class TestTemporalInQuery:

    def test_alias_naming(self):
        """Test YEAR of ?time becomes ?YearTime."""
        assert temporal().alias == "?YearTime"

    def test_bind_after_triple(self, compiler):
        """Test the BIND follows the triple binding the variable."""
        sparql = compiler.compile(observation_request())

        assert sparql == "\n".join([
            "SELECT ?obs ?sensor ?YearTime",
            "WHERE {",
            "  ?obs <http://www.w3.org/ns/sosa/madeBySensor> ?sensor .",
            "  ?obs <http://www.w3.org/ns/sosa/resultTime> ?time .",
            "  BIND(YEAR(?time) AS ?YearTime)",
            "}",
        ])

    def test_bind_after_optional(self, compiler):
        """Test the BIND follows the OPTIONAL binding the variable."""
        query = compiler.build(observation_request(optional=True))

        elements = query.where.elements
        assert isinstance(elements[1], OptionalPattern)
        assert elements[2] == Bind("YEAR(?time)", "?YearTime")

    def test_duplicate_requests_bind_once(self, compiler):
        clause = {"selectedFilter": {"text": "Temporal Function"}, "input": {"value": "year"}}
        query = compiler.build(observation_request(clauses=[clause, clause]))

        assert len(query.where.binds) == 1
        assert query.projection.count("?YearTime") == 1

    def test_bind_inside_union_branch(self, compiler):
        """Test the BIND lands in the branch built for its key."""
        payload = observation_request()
        payload["observables"].append({"subject": "?other", "predicate": "?p", "object": "?o"})
        query = compiler.build(payload)

        [union] = query.where.elements
        obs_branch, other_branch = union.branches
        assert obs_branch.binds == [Bind("YEAR(?time)", "?YearTime")]
        assert other_branch.binds == []


class TestTemporalInjector:

    def test_appends_when_bound_elsewhere_in_group(self, injector):
        """Test a variable bound by a different triple still gets a BIND at the end."""
        anchor = TriplePattern("?obs", "<http://example.org/at>", "?time")
        query = SelectQuery(projection=["?obs"], where=GroupGraphPattern([anchor], origin="?obs"))

        report = injector.apply(query, [temporal()])

        assert report.injected == ["?YearTime"]
        assert query.where.elements == [anchor, Bind("YEAR(?time)", "?YearTime")]
        assert query.projection == ["?obs", "?YearTime"]

    def test_unbound_variable_skipped(self, injector, caplog):
        """Test a variable nothing binds is skipped and not projected."""
        query = SelectQuery(
            projection=["?obs"],
            where=GroupGraphPattern([TriplePattern("?obs", "?p", "?o")], origin="?obs"),
        )
        with caplog.at_level(logging.WARNING, logger="forestqb.compiler.temporal"):
            report = injector.apply(query, [temporal()])

        assert report.skipped == ["?YearTime"]
        assert query.where.binds == []
        assert query.projection == ["?obs"]
        assert "?time" in caplog.text

    def test_unknown_origin_skipped(self, injector):
        query = SelectQuery(where=GroupGraphPattern([TriplePattern("?obs", "?p", "?time")], origin="?obs"))
        report = injector.apply(query, [temporal(origin="?elsewhere")])
        assert report.skipped == ["?YearTime"]
        assert query.is_select_all()

    def test_idempotent(self, injector):
        group = GroupGraphPattern(
            [TriplePattern("?obs", f"<{SOSA}resultTime>", "?time")], origin="?obs"
        )
        query = SelectQuery(where=group)

        injector.apply(query, [temporal()])
        injector.apply(query, [temporal()])

        assert len(group.binds) == 1
        assert query.projection == ["?YearTime"]
