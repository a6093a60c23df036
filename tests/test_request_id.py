"""Tests for X-Request-ID middleware.

Tests cover:
- Request ID generation when missing
- Request ID preservation when valid
- Request ID normalization (UUID lowercase)
- Request ID replacement when invalid
- Request ID presence on identity and internal-header failures
- Request ID in error response body
- Principal id in the access log entry
"""

from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from fortunia.app import create_app
from fortunia.middleware import request_id as request_id_middleware
from fortunia.middleware.request_id import resolve_request_id
from tests.helpers import auth_headers, create_guest_id, create_test_user_id, make_settings


class TestRequestIdMiddleware:
    """Tests for X-Request-ID middleware."""

    def test_request_id_generated_when_missing(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        UUID(response.headers["X-Request-ID"])

    def test_request_id_preserved_when_valid(self, client):
        """Valid non-UUID request IDs are preserved."""
        response = client.get("/health", headers={"X-Request-ID": "abc_def-123"})
        assert response.headers["X-Request-ID"] == "abc_def-123"

    def test_request_id_uuid_normalized_to_lowercase(self, client):
        response = client.get(
            "/health", headers={"X-Request-ID": "550E8400-E29B-41D4-A716-446655440000"}
        )
        assert response.headers["X-Request-ID"] == "550e8400-e29b-41d4-a716-446655440000"

    @pytest.mark.parametrize("invalid_id", ["bad id with spaces", "a" * 200, "semi;colon"])
    def test_request_id_replaced_when_invalid(self, client, invalid_id):
        response = client.get("/health", headers={"X-Request-ID": invalid_id})

        new_id = response.headers["X-Request-ID"]
        assert new_id != invalid_id
        UUID(new_id)

    def test_request_id_present_on_identity_failure(self, client):
        """Requests with neither token nor guest id still carry X-Request-ID."""
        response = client.post("/quota", json={})

        assert response.status_code == 401
        assert response.json()["request_id"] == response.headers["X-Request-ID"]

    def test_error_body_echoes_supplied_request_id(self, client):
        response = client.post(
            "/readings",
            json={"user_id": create_guest_id()},
            headers={"X-Request-ID": "support-ticket-42"},
        )

        assert response.status_code == 400
        assert response.json()["request_id"] == "support-ticket-42"

    def test_request_id_present_on_malformed_json(self, client):
        response = client.post(
            "/quota",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["request_id"] == response.headers["X-Request-ID"]

    def test_request_id_present_on_internal_header_failure(self, services, client):
        services.settings = make_settings(FORTUNIA_INTERNAL_SECRET="test-secret")

        response = client.post("/internal/retention/sweep")

        assert response.status_code == 403
        assert "X-Request-ID" in response.headers


class TestResolveRequestId:
    """Tests for request ID validation edge cases."""

    @pytest.mark.parametrize(
        "value",
        ["request.id.with.dots", "request_id_with_underscores", "MiXeD-Case", "a" * 128],
    )
    def test_valid_ids_kept_verbatim(self, value):
        assert resolve_request_id(value) == value

    def test_uuid_lowercased(self):
        value = "550E8400-E29B-41D4-A716-446655440000"
        assert resolve_request_id(value) == value.lower()

    def test_36_char_non_uuid_kept(self):
        assert resolve_request_id("x" * 36) == "x" * 36

    @pytest.mark.parametrize("value", [None, "", "a" * 129, "has space", "ümlaut"])
    def test_unusable_ids_replaced(self, value):
        resolved = resolve_request_id(value)
        assert resolved != value
        assert UUID(resolved).version == 4


class RecordingLogger:
    def __init__(self):
        self.entries: list[tuple[str, dict]] = []

    def info(self, event: str, **kw):
        self.entries.append((event, kw))

    def exception(self, event: str, **kw):
        self.entries.append((event, kw))


class TestAccessLogPrincipal:
    """The access log entry names the principal once identity is resolved."""

    @pytest.fixture
    def access_log(self, monkeypatch) -> RecordingLogger:
        recorder = RecordingLogger()
        monkeypatch.setattr(request_id_middleware, "logger", recorder)
        return recorder

    @pytest.fixture
    def logging_client(self, services, access_log):
        with TestClient(create_app(services=services)) as client:
            yield client

    def completed(self, access_log: RecordingLogger) -> dict:
        entries = [kw for event, kw in access_log.entries if event == "request_completed"]
        assert len(entries) == 1
        return entries[0]

    def test_guest_reading_logs_device_id(self, logging_client, access_log):
        guest = create_guest_id()
        response = logging_client.post(
            "/readings",
            json={"reading_type": "tarot", "cultural_origin": "european", "user_id": guest},
        )

        assert response.status_code == 200
        assert self.completed(access_log)["principal_id"] == guest

    def test_registered_reading_logs_user_id(self, logging_client, access_log):
        user_id = create_test_user_id()
        response = logging_client.post(
            "/readings",
            json={"reading_type": "tarot", "cultural_origin": "european"},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 200
        assert self.completed(access_log)["principal_id"] == str(user_id)

    def test_failed_reading_after_auth_logs_principal(
        self, logging_client, access_log, entitlements
    ):
        guest = create_guest_id()
        entitlements.set_used(guest, 3)

        response = logging_client.post(
            "/readings",
            json={"reading_type": "tarot", "cultural_origin": "european", "user_id": guest},
        )

        assert response.status_code == 429
        assert self.completed(access_log)["principal_id"] == guest

    def test_failed_validation_logs_no_principal(self, logging_client, access_log):
        response = logging_client.post("/readings", json={"user_id": create_guest_id()})

        assert response.status_code == 400
        assert self.completed(access_log)["principal_id"] is None
