"""
Tests for the webhook HTTP endpoints.
"""

import json
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from whatsapp_flows.api.app import create_app
from whatsapp_flows.api.dependencies import get_db, get_locker, get_provider, get_settings
from whatsapp_flows.core.settings import Settings
from whatsapp_flows.providers.meta_cloud.webhook import compute_signature
from whatsapp_flows.providers.stub import StubWhatsAppProvider

from conftest import APP_SECRET, VERIFY_TOKEN, WABA_ID

OTHER_TENANT_ID = UUID("87654321-4321-4321-4321-210987654321")


@pytest.fixture
def api_provider():
    return StubWhatsAppProvider(verify_signatures=True)


@pytest.fixture
def client(db, api_provider):
    app = create_app()
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_provider] = lambda: api_provider
    app.dependency_overrides[get_locker] = lambda: None
    app.dependency_overrides[get_settings] = lambda: Settings(WHATSAPP_ENCRYPTION_KEY=None)
    return TestClient(app)


def post_signed(client, payload, secret=APP_SECRET, path="/webhook"):
    body = json.dumps(payload).encode()
    return client.post(
        path,
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Hub-Signature-256": compute_signature(body, secret),
        },
    )


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "whatsapp-flows"}


class TestVerification:
    """Tests for the GET verification challenge."""

    def test_challenge_echoed(self, client, binding, sample_tenant_id):
        response = client.get(
            f"/webhook/{sample_tenant_id}",
            params={"hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "12345"},
        )

        assert response.status_code == 200
        assert response.text == "12345"

    def test_plain_parameter_names(self, client, binding, sample_tenant_id):
        response = client.get(
            f"/webhook/{sample_tenant_id}",
            params={"mode": "subscribe", "verify_token": VERIFY_TOKEN, "challenge": "abc"},
        )

        assert response.status_code == 200
        assert response.text == "abc"

    def test_wrong_token(self, client, binding, sample_tenant_id):
        response = client.get(
            f"/webhook/{sample_tenant_id}",
            params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "12345"},
        )

        assert response.status_code == 403

    def test_wrong_mode(self, client, binding, sample_tenant_id):
        response = client.get(
            f"/webhook/{sample_tenant_id}",
            params={"hub.mode": "unsubscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "12345"},
        )

        assert response.status_code == 403

    def test_unknown_tenant(self, client, binding):
        response = client.get(
            "/webhook/87654321-4321-4321-4321-210987654321",
            params={"hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "12345"},
        )

        assert response.status_code == 403

    def test_get_without_tenant_not_allowed(self, client):
        assert client.get("/webhook").status_code == 405


class TestReceiveWebhook:
    """Tests for POST event delivery."""

    def test_valid_event_acknowledged(self, client, binding, api_provider, repo, make_payload, text_message):
        payload = make_payload(messages=[text_message("Preciso de cimento", message_id="wamid.HBgM")])

        response = post_signed(client, payload)

        assert response.status_code == 200
        assert response.text == "EVENT_RECEIVED"
        assert repo.get_message_by_provider_id("wamid.HBgM") is not None

    def test_tenant_path_variant(self, client, binding, sample_tenant_id, make_payload, text_message):
        payload = make_payload(messages=[text_message("oi")])

        response = post_signed(client, payload, path=f"/webhook/{sample_tenant_id}")

        assert response.status_code == 200

    def test_missing_signature(self, client, binding, make_payload, text_message):
        response = client.post("/webhook", json=make_payload(messages=[text_message("oi")]))

        assert response.status_code == 401

    def test_invalid_signature(self, client, binding, repo, make_payload, text_message):
        """Test a payload signed with another secret is rejected and not processed."""
        payload = make_payload(messages=[text_message("oi", message_id="wamid.FORGED")])

        response = post_signed(client, payload, secret="attacker_secret")

        assert response.status_code == 401
        assert repo.get_message_by_provider_id("wamid.FORGED") is None

    def test_invalid_json(self, client, binding):
        response = client.post(
            "/webhook",
            content=b"not json{",
            headers={"X-Hub-Signature-256": compute_signature(b"not json{", APP_SECRET)},
        )

        assert response.status_code == 400

    def test_missing_entry(self, client, binding):
        response = post_signed(client, {"object": "whatsapp_business_account"})

        assert response.status_code == 400

    def test_unknown_phone_number(self, client, binding, make_payload, text_message):
        payload = make_payload(messages=[text_message("oi")])
        payload["entry"][0]["changes"][0]["value"]["metadata"]["phone_number_id"] = "PHONE_UNKNOWN"

        response = post_signed(client, payload)

        assert response.status_code == 404

    def test_status_for_unknown_message_acknowledged(self, client, binding, make_payload):
        payload = make_payload(statuses=[{"id": "wamid.999", "status": "read", "timestamp": "1704067200"}])

        response = post_signed(client, payload)

        assert response.status_code == 200
        assert response.text == "EVENT_RECEIVED"

    def test_processing_failure_still_acknowledged(
        self, client, db, repo, binding, sample_tenant_id, api_provider, make_payload, text_message
    ):
        """Test an internal failure in one event does not fail the request."""
        reply = repo.create_canned_response(sample_tenant_id, "greeting", "Olá!")
        repo.create_flow(
            sample_tenant_id,
            "Saudação",
            nodes=[
                {"id": "1", "type": "keywordTrigger", "data": {"triggerKeywords": [{"value": "oi"}]}},
                {"id": "2", "type": "message", "data": {"messageId": str(reply.id)}},
            ],
            edges=[{"source": "1", "target": "2"}],
        )
        db.commit()

        async def broken_send(**kwargs):
            raise RuntimeError("provider exploded")

        api_provider.send_text = broken_send

        response = post_signed(client, make_payload(messages=[text_message("oi", message_id="wamid.BOOM")]))

        assert response.status_code == 200
        assert response.text == "EVENT_RECEIVED"
        # The failed event was rolled back
        assert repo.get_message_by_provider_id("wamid.BOOM") is None

    def test_change_for_other_tenant_not_stored(
        self, client, db, repo, binding, sample_tenant_id, make_payload, make_change_value, text_message
    ):
        """Test a body signed by one tenant cannot write messages into another tenant."""
        repo.create_binding(
            tenant_id=OTHER_TENANT_ID,
            phone_number_id="PHONE_OTHER",
            display_number="+5511000000009",
            app_secret_encrypted="other_app_secret",
        )
        db.commit()
        payload = make_payload(messages=[text_message("oi", message_id="wamid.OWN")])
        other_value = make_change_value(messages=[text_message("oi", message_id="wamid.FORGED")])
        other_value["metadata"]["phone_number_id"] = "PHONE_OTHER"
        payload["entry"][0]["changes"].append({"value": other_value, "field": "messages"})

        response = post_signed(client, payload)

        assert response.status_code == 200
        assert repo.get_message_by_provider_id("wamid.OWN").tenant_id == sample_tenant_id
        assert repo.get_message_by_provider_id("wamid.FORGED") is None

    @pytest.mark.parametrize(
        "changes",
        [
            [{"value": "x"}],
            [{"value": None}],
            5,
            ["garbage"],
        ],
    )
    def test_malformed_changes_acknowledged(self, client, binding, changes):
        """Test structurally broken changes are skipped rather than failing the request."""
        payload = {
            "object": "whatsapp_business_account",
            "entry": [{"id": WABA_ID, "changes": changes}],
        }

        response = post_signed(client, payload)

        assert response.status_code == 200
        assert response.text == "EVENT_RECEIVED"
