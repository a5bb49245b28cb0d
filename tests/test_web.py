"""
Tests for the HTTP layer.
"""

import pytest
from fastapi.testclient import TestClient

from api.web import create_app
from forestqb import CompilerConfig


@pytest.fixture
def client():
    """Create a test client for the API."""
    return TestClient(create_app(CompilerConfig()))


class TestWebAPI:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_get_sparql(self, client, temperature_request):
        """Test a valid request returns the compiled query."""
        response = client.post("/getSparql", json=temperature_request)
        assert response.status_code == 200
        query = response.json()["query"]
        assert query.startswith("PREFIX xsd:")
        assert "?sensor <http://example.org/hasTemperature> ?temperature ." in query

    def test_invalid_encoding(self, client):
        response = client.post("/getSparql", content=b"\xff\xfe{}")
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid encoding, expected UTF-8."}

    def test_invalid_json(self, client):
        response = client.post("/getSparql", content=b"{not json")
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON format"}

    def test_missing_field(self, client):
        response = client.post("/getSparql", json={"observables": [{"subject": "?s"}]})
        assert response.status_code == 422
        assert response.json() == {"error": "Missing required field: observables[0].predicate"}

    def test_invalid_expression(self, client):
        payload = {
            "observables": [{"subject": '"literal"', "predicate": "?p", "object": "?o"}],
            "filters": {},
        }
        response = client.post("/getSparql", json=payload)
        assert response.status_code == 422
        assert response.json()["error"].startswith("expression has to be a variable")

    def test_cors_preflight(self, client):
        response = client.options(
            "/getSparql",
            headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
        )
        assert response.status_code == 200
        assert "access-control-allow-origin" in response.headers


class TestMalformedNumbers:
    """Bad numeric fields come back as JSON errors, never as a server error."""

    def test_non_numeric_limit(self, client, temperature_request):
        temperature_request["limit"] = "ten"
        response = client.post("/getSparql", json=temperature_request)
        assert response.status_code == 422
        assert response.json() == {"error": "Invalid value for limit: expected a non-negative integer, got 'ten'"}

    def test_negative_limit(self, client, temperature_request):
        temperature_request["limit"] = -5
        response = client.post("/getSparql", json=temperature_request)
        assert response.status_code == 422
        assert "limit" in response.json()["error"]

    def test_non_numeric_branch_limit(self, client, temperature_request):
        temperature_request["observables"][0]["modifiers"] = {"limit": {"enabled": True, "value": "lots"}}
        response = client.post("/getSparql", json=temperature_request)
        assert response.status_code == 422
        assert "observables[0].modifiers.limit.value" in response.json()["error"]

    def test_non_numeric_radius(self, client, location_request):
        location_request["filters"]["?platform"][0]["filters"][0]["input"]["radius"] = "far"
        response = client.post("/getSparql", json=location_request)
        assert response.status_code == 422
        assert "input.radius" in response.json()["error"]
