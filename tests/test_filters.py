"""
Tests for filter translation and range merging.
"""

import logging

import pytest

from forestqb.compiler.datatypes import resolve_datatype
from forestqb.compiler.filters import (
    FilterKind,
    RangeBound,
    classify_filter,
    merge_ranges,
    normalize_operator,
    upper_exceeds_lower,
)
from forestqb.config import XSD
from forestqb.models import FilterClause

KM = "<http://qudt.org/vocab/unit#Kilometer>"


class TestDatatypes:

    def test_hash_iri(self):
        """Test the local name after '#'."""
        assert resolve_datatype("http://www.w3.org/2001/XMLSchema#float") == "xsd:float"

    def test_slash_iri(self):
        """Test the local name after the last '/'."""
        assert resolve_datatype("http://example.org/ns/float") == "xsd:float"

    def test_hash_before_slash(self):
        """Test a '#' that precedes the last '/' is ignored."""
        assert resolve_datatype("http://example.org/a#b/dateTime") == "xsd:dateTime"

    def test_custom_prefix(self):
        assert resolve_datatype("http://example.org/ns#speed", "ex") == "ex:speed"

    def test_prefixed_passthrough(self):
        assert resolve_datatype("xsd:integer") == "xsd:integer"


class TestClassification:

    @pytest.mark.parametrize("text,kind", [
        ("Contain", FilterKind.CONTAIN),
        ("NEARBY", FilterKind.NEARBY),
        ("range", FilterKind.RANGE),
        ("Aggregate Function", FilterKind.AGGREGATE_FUNCTION),
        ("Temporal Function", FilterKind.TEMPORAL_FUNCTION),
        ("date function", FilterKind.TEMPORAL_FUNCTION),
        ("dateRange", FilterKind.UNSUPPORTED),
        ("something else", FilterKind.UNSUPPORTED),
        (None, FilterKind.UNSUPPORTED),
    ])
    def test_classify(self, text, kind):
        assert classify_filter(text) == kind

    @pytest.mark.parametrize("op,expected", [
        ("gt", ">"), ("GTE", ">="), ("le", "<="), ("lt", "<"), ("ne", "!="), (">", ">"),
    ])
    def test_normalize_operator(self, op, expected):
        assert normalize_operator(op) == expected


class TestTranslate:
    """One test per filter kind."""

    def test_contain(self, translator):
        """Test case-insensitive substring match."""
        clause = FilterClause(text="Contain", value="John")
        assert translator.translate(clause, "?name", None) == 'regex(str(?name), "John", "i")'

    def test_contain_escapes_quotes(self, translator):
        clause = FilterClause(text="contain", value='say "hi"')
        assert translator.translate(clause, "?name", None) == 'regex(str(?name), "say \\"hi\\"", "i")'

    def test_contain_escapes_line_breaks(self, translator):
        """Test raw line breaks and tabs become escape sequences."""
        clause = FilterClause(text="contain", value="a\nb\r\tc")
        assert translator.translate(clause, "?name", None) == 'regex(str(?name), "a\\nb\\r\\tc", "i")'

    @pytest.mark.parametrize("text", ["contain", "match", "regex", "range"])
    @pytest.mark.parametrize("value", [None, ""])
    def test_missing_value_ignored(self, translator, text, value):
        """Test a value filter without a value yields no fragment."""
        clause = FilterClause(text=text, value=value, expression=">")
        assert translator.translate(clause, "?x", XSD + "float") is None

    def test_nearby(self, translator):
        """Test radius is converted from meters to kilometers."""
        clause = FilterClause(text="nearby", center={"lat": 51.5, "lng": -0.12}, radius=1500)
        assert translator.translate(clause, None, None) == f"(51.5 -0.12 1.5 {KM})"

    def test_nearby_rounds_radius(self, translator):
        clause = FilterClause(text="nearby", center={"lat": 1, "lng": 2}, radius=1234)
        assert translator.translate(clause, None, None) == f"(1 2 1.23 {KM})"

    def test_nearby_without_center(self, translator):
        assert translator.translate(FilterClause(text="nearby", radius=10), None, None) is None

    def test_within_reorders_coordinates(self, translator):
        """Test (lat, lng) input becomes (lng lat) WKT."""
        clause = FilterClause(text="within", lat_lngs=[[10, 20], [30, 40], [10, 20]])
        assert translator.translate(clause, None, None) == '"POLYGON((20 10, 40 30, 20 10))"^^geo:wktLiteral'

    def test_within_accepts_dicts(self, translator):
        clause = FilterClause(text="within", lat_lngs=[{"lat": 1.5, "lng": 2.5}, {"lat": 3, "lng": 4}])
        assert translator.translate(clause, None, None) == '"POLYGON((2.5 1.5, 4 3))"^^geo:wktLiteral'

    def test_bound(self, translator):
        assert translator.translate(FilterClause(text="bound", value="bound"), "?x", None) == "BOUND(?x)"

    def test_not_bound(self, translator):
        """Test a value containing 'not' negates BOUND."""
        assert translator.translate(FilterClause(text="Bound", value="not bound"), "?x", None) == "!BOUND(?x)"

    def test_match_string(self, translator):
        """Test string datatypes use an anchored regex."""
        clause = FilterClause(text="match", value="abc")
        assert translator.translate(clause, "?x", XSD + "string") == 'regex(?x, "^abc")'

    def test_match_defaults_to_string(self, translator):
        clause = FilterClause(text="match", value="abc")
        assert translator.translate(clause, "?x", None) == 'regex(?x, "^abc")'

    def test_match_typed(self, translator):
        """Test other datatypes use typed equality."""
        clause = FilterClause(text="match", value="5")
        assert translator.translate(clause, "?x", XSD + "integer") == '?x = "5"^^xsd:integer'

    def test_regex(self, translator):
        clause = FilterClause(text="regex", value="a.c")
        assert translator.translate(clause, "?x", None) == 'regex(?x, "a.c")'

    def test_range(self, translator):
        clause = FilterClause(text="range", value="10", expression=">")
        assert translator.translate(clause, "?x", XSD + "float") == '?x > "10"^^xsd:float'

    def test_range_textual_operator(self, translator):
        clause = FilterClause(text="range", value="10", expression="gte")
        assert translator.translate(clause, "?x", XSD + "float") == '?x >= "10"^^xsd:float'

    def test_unsupported_kind(self, translator, caplog):
        """Test an unknown kind yields no fragment and does not raise."""
        with caplog.at_level(logging.DEBUG, logger="forestqb.compiler.filters"):
            assert translator.translate(FilterClause(text="fuzzy", value="x"), "?x", None) is None
        assert "fuzzy" in caplog.text

    def test_legacy_range_variant_ignored(self, translator, caplog):
        """Test dateRange never reaches the range branch."""
        clause = FilterClause(text="dateRange", value="2024-01-01", expression=">")
        with caplog.at_level(logging.DEBUG, logger="forestqb.compiler.filters"):
            assert translator.translate(clause, "?t", XSD + "date") is None
        assert "unreachable" in caplog.text

    def test_function_clause_has_no_fragment(self, translator):
        clause = FilterClause(text="Aggregate Function", value="AVG")
        assert translator.translate(clause, "?x", None) is None

    def test_missing_variable(self, translator):
        """Test non-geo filters need a variable."""
        assert translator.translate(FilterClause(text="contain", value="x"), None, None) is None


def bound(op, value, var="?Direction", dtype="xsd:float"):
    return RangeBound(value, op, f'{var} {op} "{value}"^^{dtype}')


class TestMergeRanges:
    """Pairing greater and less bounds into one expression."""

    def test_wrap_around(self):
        """Test a compass range across north uses OR."""
        merged = merge_ranges([bound(">", "315"), bound("<", "45")])
        assert merged == '(?Direction > "315"^^xsd:float || ?Direction < "45"^^xsd:float)'

    def test_plain_interval(self):
        """Test an ordinary interval uses AND."""
        merged = merge_ranges([bound(">", "10"), bound("<", "15")])
        assert merged == '(?Direction > "10"^^xsd:float && ?Direction < "15"^^xsd:float)'

    def test_order_independent_pairing(self):
        """Test less bounds given first still pair with greater bounds."""
        merged = merge_ranges([bound("<", "15"), bound(">", "10")])
        assert merged == '(?Direction > "10"^^xsd:float && ?Direction < "15"^^xsd:float)'

    def test_single_greater(self):
        assert merge_ranges([bound(">=", "3")]) == '?Direction >= "3"^^xsd:float'

    def test_leftover_greater(self):
        """Test unpaired greater bounds are OR-ed on."""
        merged = merge_ranges([bound(">", "1"), bound("<", "5"), bound(">", "8")])
        assert merged == (
            '(?Direction > "1"^^xsd:float && ?Direction < "5"^^xsd:float)'
            ' || ?Direction > "8"^^xsd:float'
        )

    def test_leftover_less(self):
        """Test unpaired less bounds are emitted after the pairs."""
        merged = merge_ranges([bound(">", "1"), bound("<", "5"), bound("<=", "0")])
        assert merged == (
            '(?Direction > "1"^^xsd:float && ?Direction < "5"^^xsd:float)'
            ' || ?Direction <= "0"^^xsd:float'
        )

    def test_equality_bound_dropped(self):
        assert merge_ranges([bound("=", "3")]) is None

    def test_empty(self):
        assert merge_ranges([]) is None

    def test_dates(self):
        """Test ISO dates compare temporally."""
        merged = merge_ranges([
            bound(">", "2024-01-01", "?t", "xsd:date"),
            bound("<", "2024-06-01", "?t", "xsd:date"),
        ])
        assert "&&" in merged

    def test_times_wrap(self):
        """Test a night window across midnight uses OR."""
        merged = merge_ranges([
            bound(">", "22:00:00", "?t", "xsd:time"),
            bound("<", "06:00:00", "?t", "xsd:time"),
        ])
        assert "||" in merged and "&&" not in merged


class TestUpperExceedsLower:

    def test_numeric_not_lexicographic(self):
        """Test 100 > 9 numerically even though '100' < '9' as strings."""
        assert upper_exceeds_lower("100", "9")

    def test_string_fallback(self):
        assert upper_exceeds_lower("b", "a")
        assert not upper_exceeds_lower("a", "b")
