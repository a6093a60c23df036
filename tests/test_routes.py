"""HTTP-level tests for the public and internal routes.

Every response carries the success envelope; errors add code, error and
request_id (and processing_time for reading failures).
"""

import json
from datetime import UTC, datetime, timedelta

import pytest
import respx

from fortunia.services.llm import LLMError, LLMErrorClass
from tests.helpers import (
    TAROT_TEXT,
    auth_headers,
    create_guest_id,
    create_test_user_id,
    make_settings,
)

PALM_URL = "https://images.fortunia.test/readings/palm.jpg"


def assert_error(response, status: int, code: str) -> dict:
    assert response.status_code == status
    body = response.json()
    assert body["success"] is False
    assert body["code"] == code
    assert body["error"]
    assert body["request_id"] == response.headers["X-Request-ID"]
    return body


class TestReadingsRoute:
    def test_guest_tarot_reading(self, client, entitlements):
        guest = create_guest_id()
        response = client.post(
            "/readings",
            json={"reading_type": "tarot", "cultural_origin": "european", "user_id": guest},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["result"] == TAROT_TEXT
        assert body["reading_type"] == "tarot"
        assert body["cultural_origin"] == "european"
        assert body["share_card_url"] is None
        assert isinstance(body["processing_time"], int)
        assert body["reading_id"]
        assert entitlements.get_status(guest).quota_remaining == 2

    def test_registered_reading(self, client):
        user_id = create_test_user_id()
        response = client.post(
            "/readings",
            json={"reading_type": "tarot", "cultural_origin": "chinese"},
            headers=auth_headers(user_id),
        )
        assert response.status_code == 200

    def test_quota_exhausted(self, client, entitlements, adapter):
        guest = create_guest_id()
        entitlements.set_used(guest, 3)

        response = client.post(
            "/readings",
            json={"reading_type": "tarot", "cultural_origin": "european", "user_id": guest},
        )

        body = assert_error(response, 429, "E_QUOTA_EXHAUSTED")
        assert body["error"] == "Daily quota exceeded. Upgrade to Premium for unlimited readings."
        assert "processing_time" in body
        assert adapter.calls == 0

    def test_missing_fields(self, client):
        response = client.post("/readings", json={"user_id": create_guest_id()})
        body = assert_error(response, 400, "E_INVALID_REQUEST")
        assert "reading_type" in body["error"]
        assert "processing_time" in body

    def test_no_identity(self, client):
        response = client.post(
            "/readings", json={"reading_type": "tarot", "cultural_origin": "european"}
        )
        assert_error(response, 401, "E_UNAUTHENTICATED")

    def test_malformed_json(self, client):
        response = client.post(
            "/readings",
            content=b'{"reading_type": "tarot",',
            headers={"Content-Type": "application/json"},
        )
        assert_error(response, 400, "E_INVALID_REQUEST")

    def test_schema_violation_is_400(self, client):
        response = client.post(
            "/readings",
            json={"reading_type": "tarot", "cultural_origin": "european", "user_id": "x" * 200},
        )
        assert_error(response, 400, "E_INVALID_REQUEST")

    @respx.mock
    def test_media_failure_is_500(self, client, adapter):
        respx.get(PALM_URL).respond(404)

        response = client.post(
            "/readings",
            json={
                "reading_type": "palm",
                "cultural_origin": "chinese",
                "image_url": PALM_URL,
                "user_id": create_guest_id(),
            },
        )

        body = assert_error(response, 500, "E_MEDIA_FETCH_FAILED")
        assert body["error"] == "Failed to fetch image"
        assert "processing_time" in body
        assert adapter.calls == 0

    def test_entitlement_outage_is_500(self, client, entitlements, adapter):
        entitlements.fail_status = True

        response = client.post(
            "/readings",
            json={
                "reading_type": "tarot",
                "cultural_origin": "european",
                "user_id": create_guest_id(),
            },
        )

        body = assert_error(response, 500, "E_ENTITLEMENT_UNAVAILABLE")
        assert "processing_time" in body
        assert adapter.calls == 0

    def test_inference_failure_is_500(self, client, adapter):
        adapter.script(LLMError(LLMErrorClass.PROVIDER_DOWN, "503", provider="gemini"))

        response = client.post(
            "/readings",
            json={
                "reading_type": "tarot",
                "cultural_origin": "european",
                "user_id": create_guest_id(),
            },
        )

        body = assert_error(response, 500, "E_INFERENCE_FAILED")
        assert "processing_time" in body


class TestQuotaRoute:
    def test_guest_quota(self, client):
        response = client.post("/quota", json={"user_id": create_guest_id()})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "quota_used": 0,
            "quota_limit": 3,
            "quota_remaining": 3,
            "is_premium": False,
            "stale": False,
        }

    def test_registered_quota_without_body(self, client, entitlements):
        user_id = create_test_user_id()
        entitlements.set_used(str(user_id), 1)

        response = client.post("/quota", headers=auth_headers(user_id))

        assert response.status_code == 200
        assert response.json()["quota_remaining"] == 2

    def test_conflicting_user_id_is_403(self, client):
        response = client.post(
            "/quota",
            json={"user_id": str(create_test_user_id())},
            headers=auth_headers(create_test_user_id()),
        )
        assert_error(response, 403, "E_IDENTITY_MISMATCH")

    def test_anonymous_is_401(self, client):
        assert_error(client.post("/quota", json={}), 401, "E_UNAUTHENTICATED")

    def test_store_outage_is_500(self, client, entitlements):
        entitlements.fail_status = True
        response = client.post("/quota", json={"user_id": create_guest_id()})
        assert_error(response, 500, "E_ENTITLEMENT_UNAVAILABLE")


class TestSubscriptionsRoute:
    def subscription_body(self, **overrides) -> dict:
        now = datetime.now(UTC)
        body = {
            "product_id": "fortunia.premium.monthly",
            "status": "active",
            "expires_at": (now + timedelta(days=30)).isoformat(),
            "transaction_id": "2000000999",
            "purchase_date": (now - timedelta(minutes=5)).isoformat(),
            "environment": "sandbox",
        }
        body.update(overrides)
        return body

    def test_requires_token(self, client):
        response = client.post("/subscriptions", json=self.subscription_body())
        assert_error(response, 401, "E_UNAUTHENTICATED")

    def test_upsert(self, client):
        user_id = create_test_user_id()
        response = client.post(
            "/subscriptions", json=self.subscription_body(), headers=auth_headers(user_id)
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user_id"] == str(user_id)
        assert data["transaction_id"] == "2000000999"
        assert data["applied"] is True

    def test_resend_is_idempotent(self, client):
        headers = auth_headers(create_test_user_id())
        body = self.subscription_body()

        first = client.post("/subscriptions", json=body, headers=headers).json()["data"]
        second = client.post("/subscriptions", json=body, headers=headers).json()["data"]

        assert first == second

    def test_invalid_status(self, client):
        response = client.post(
            "/subscriptions",
            json=self.subscription_body(status="paused"),
            headers=auth_headers(create_test_user_id()),
        )
        assert_error(response, 400, "E_INVALID_REQUEST")

    def test_missing_field(self, client):
        body = self.subscription_body()
        del body["transaction_id"]
        response = client.post(
            "/subscriptions", json=body, headers=auth_headers(create_test_user_id())
        )
        assert_error(response, 400, "E_INVALID_REQUEST")


class TestShareCardsRoute:
    def card_body(self, user_id, **overrides) -> dict:
        body = {
            "fortune_text": "A bright path opens.",
            "reading_type": "tarot",
            "cultural_origin": "european",
            "user_id": str(user_id),
        }
        body.update(overrides)
        return body

    def test_create(self, client, storage):
        user_id = create_test_user_id()
        response = client.post(
            "/share-cards", json=self.card_body(user_id), headers=auth_headers(user_id)
        )

        assert response.status_code == 200
        url = response.json()["share_card_url"]
        assert url.startswith("https://fake-storage.test/")
        assert f"share_cards/{user_id}-" in url

    def test_placeholder_on_upload_failure(self, client, storage):
        storage.fail_uploads = True
        user_id = create_test_user_id()

        response = client.post(
            "/share-cards", json=self.card_body(user_id), headers=auth_headers(user_id)
        )

        assert response.status_code == 200
        assert "/placeholder-" in response.json()["share_card_url"]

    def test_requires_token(self, client):
        response = client.post("/share-cards", json=self.card_body(create_test_user_id()))
        assert_error(response, 401, "E_UNAUTHENTICATED")

    def test_user_id_mismatch(self, client):
        response = client.post(
            "/share-cards",
            json=self.card_body(create_test_user_id()),
            headers=auth_headers(create_test_user_id()),
        )
        assert_error(response, 403, "E_IDENTITY_MISMATCH")

    def test_missing_fields(self, client):
        user_id = create_test_user_id()
        response = client.post(
            "/share-cards",
            json=self.card_body(user_id, fortune_text=""),
            headers=auth_headers(user_id),
        )
        body = assert_error(response, 400, "E_INVALID_REQUEST")
        assert "fortune_text" in body["error"]


class TestHoroscopeRoute:
    def test_daily_horoscope(self, client, adapter, entitlements):
        adapter.script(
            json.dumps(
                {
                    "sign": "pisces",
                    "prediction": "Water finds its level.",
                    "ratings": {"love": 3, "career": 4, "health": 5},
                }
            )
        )
        guest = create_guest_id()

        response = client.post("/horoscopes/daily", json={"sign": "Pisces", "user_id": guest})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["sign"] == "pisces"
        assert body["ratings"] == {"love": 3, "career": 4, "health": 5}
        assert entitlements.consume_calls == 0

    def test_unknown_sign(self, client):
        response = client.post(
            "/horoscopes/daily", json={"sign": "ophiuchus", "user_id": create_guest_id()}
        )
        assert_error(response, 400, "E_INVALID_REQUEST")


class TestInternalRetentionRoute:
    def test_open_when_no_secret_configured(self, client):
        response = client.post("/internal/retention/sweep")

        assert response.status_code == 200
        summary = response.json()["summary"]
        assert summary["deletedReadings"] == 0
        assert summary["status"] == "success"

    @pytest.fixture
    def secured(self, services):
        services.settings = make_settings(FORTUNIA_INTERNAL_SECRET="s3cret")
        return services

    def test_missing_header_rejected(self, secured, client):
        assert_error(client.post("/internal/retention/sweep"), 403, "E_INTERNAL_ONLY")

    def test_wrong_header_rejected(self, secured, client):
        response = client.post(
            "/internal/retention/sweep", headers={"X-Fortunia-Internal": "guess"}
        )
        assert_error(response, 403, "E_INTERNAL_ONLY")

    def test_correct_header_accepted(self, secured, client):
        response = client.post(
            "/internal/retention/sweep", headers={"X-Fortunia-Internal": "s3cret"}
        )
        assert response.status_code == 200


class TestUnknownRoutes:
    def test_404_envelope(self, client):
        assert_error(client.get("/nope"), 404, "E_NOT_FOUND")
