"""Tests for the health endpoint.

The health endpoint is a liveness check that:
- Does not require a token or a guest id
- Does not touch the database, storage or the model
"""

from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Tests for GET /health"""

    def test_health_returns_200(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_returns_success_envelope(self, client: TestClient):
        """Health endpoint returns the flat success envelope."""
        response = client.get("/health")
        assert response.json() == {"success": True, "status": "ok"}

    def test_health_content_type_is_json(self, client: TestClient):
        response = client.get("/health")
        assert response.headers["content-type"] == "application/json"

    def test_health_does_not_call_model(self, client: TestClient, adapter):
        client.get("/health")
        assert adapter.calls == 0
