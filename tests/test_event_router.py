"""
Tests for webhook batch routing.
"""

import asyncio
import json
from uuid import UUID

from whatsapp_flows.providers.meta_cloud.webhook import compute_signature
from whatsapp_flows.service.router import EventRouter

from conftest import APP_SECRET

OTHER_TENANT_ID = UUID("87654321-4321-4321-4321-210987654321")
OTHER_SECRET = "other_app_secret"


class TestEventRouter:
    """Tests for EventRouter."""

    def test_routes_messages_and_statuses(self, db, provider, tenant, make_payload, text_message):
        payload = make_payload(
            messages=[text_message("oi", message_id="wamid.A")],
            statuses=[{"id": "wamid.UNKNOWN", "status": "read", "timestamp": "1704067200"}],
        )

        report = asyncio.run(EventRouter(db, provider).route(payload, tenant))

        assert report.messages == 1
        assert report.statuses == 1
        assert report.failed == 0
        kinds = [(r["kind"], r["status"]) for r in report.results]
        assert kinds == [("message", "processed"), ("status", "skipped")]

    def test_failing_event_is_isolated(self, db, repo, provider, tenant, make_payload, text_message):
        """Test one failing message does not prevent the rest of the batch."""
        router = EventRouter(db, provider)
        handle_message = router.inbound.handle_message

        async def flaky(tenant_ctx, message):
            if message.message_id == "wamid.BAD":
                raise RuntimeError("boom")
            return await handle_message(tenant_ctx, message)

        router.inbound.handle_message = flaky
        payload = make_payload(
            messages=[
                text_message("um", message_id="wamid.BAD"),
                text_message("dois", message_id="wamid.GOOD"),
            ]
        )

        report = asyncio.run(router.route(payload, tenant))

        assert report.failed == 1
        assert report.messages == 1
        assert repo.get_message_by_provider_id("wamid.GOOD") is not None
        assert repo.get_message_by_provider_id("wamid.BAD") is None

    def test_change_for_unknown_number_skipped(self, db, provider, tenant, make_payload, text_message):
        payload = make_payload(messages=[text_message("oi")])
        payload["entry"][0]["changes"][0]["value"]["metadata"]["phone_number_id"] = "PHONE_UNKNOWN"

        report = asyncio.run(EventRouter(db, provider).route(payload, tenant))

        assert report.skipped_changes == 1
        assert report.messages == 0

    def _bind_other_tenant(self, db, repo):
        repo.create_binding(
            tenant_id=OTHER_TENANT_ID,
            phone_number_id="PHONE_OTHER",
            display_number="+5511000000009",
            waba_id="WABA_OTHER",
            app_secret_encrypted=OTHER_SECRET,
        )
        db.commit()

    def test_change_for_other_tenant_requires_its_signature(
        self, db, repo, provider, tenant, make_payload, text_message
    ):
        """Test a change aimed at another tenant's number is dropped when signed by this tenant."""
        self._bind_other_tenant(db, repo)
        payload = make_payload(messages=[text_message("oi", message_id="wamid.OTHER")])
        payload["entry"][0]["changes"][0]["value"]["metadata"]["phone_number_id"] = "PHONE_OTHER"
        body = json.dumps(payload).encode()

        report = asyncio.run(
            EventRouter(db, provider).route(
                payload, tenant, body=body, signature=compute_signature(body, APP_SECRET)
            )
        )

        assert report.skipped_changes == 1
        assert report.messages == 0
        assert repo.get_message_by_provider_id("wamid.OTHER") is None

    def test_change_for_other_tenant_without_body_skipped(
        self, db, repo, provider, tenant, make_payload, text_message
    ):
        self._bind_other_tenant(db, repo)
        payload = make_payload(messages=[text_message("oi", message_id="wamid.OTHER")])
        payload["entry"][0]["changes"][0]["value"]["metadata"]["phone_number_id"] = "PHONE_OTHER"

        report = asyncio.run(EventRouter(db, provider).route(payload, tenant))

        assert report.skipped_changes == 1
        assert repo.get_message_by_provider_id("wamid.OTHER") is None

    def test_change_for_other_tenant_signed_with_its_secret(
        self, db, repo, provider, tenant, make_payload, text_message
    ):
        """Test a change is attributed to another tenant when its own secret signed the body."""
        self._bind_other_tenant(db, repo)
        payload = make_payload(messages=[text_message("oi", message_id="wamid.OTHER")])
        payload["entry"][0]["changes"][0]["value"]["metadata"]["phone_number_id"] = "PHONE_OTHER"
        body = json.dumps(payload).encode()

        asyncio.run(
            EventRouter(db, provider).route(
                payload, tenant, body=body, signature=compute_signature(body, OTHER_SECRET)
            )
        )

        message = repo.get_message_by_provider_id("wamid.OTHER")
        assert message.tenant_id == OTHER_TENANT_ID

    def test_template_update_for_other_waba_requires_its_signature(
        self, db, repo, provider, tenant, make_payload
    ):
        self._bind_other_tenant(db, repo)
        payload = make_payload(
            value={
                "message_template_status_update": {
                    "message_template_name": "order_update",
                    "message_template_language": "pt_BR",
                    "event": "APPROVED",
                }
            },
            entry_id="WABA_OTHER",
        )
        body = json.dumps(payload).encode()

        report = asyncio.run(
            EventRouter(db, provider).route(
                payload, tenant, body=body, signature=compute_signature(body, APP_SECRET)
            )
        )

        assert report.template_updates == 0
        assert report.skipped_changes == 1
        assert repo.get_template(OTHER_TENANT_ID, "order_update", "pt_BR") is None

    def test_template_update_routed(self, db, repo, provider, tenant, sample_tenant_id, make_payload):
        payload = make_payload(
            value={
                "message_template_status_update": {
                    "message_template_name": "order_update",
                    "message_template_language": "pt_BR",
                    "event": "APPROVED",
                }
            }
        )

        report = asyncio.run(EventRouter(db, provider).route(payload, tenant))

        assert report.template_updates == 1
        assert repo.get_template(sample_tenant_id, "order_update", "pt_BR").status == "approved"

    def test_malformed_entries_ignored(self, db, provider, tenant):
        report = asyncio.run(EventRouter(db, provider).route({"entry": ["garbage", {"changes": []}]}, tenant))

        assert report.skipped_changes == 1
        assert report.failed == 0

    def test_malformed_changes_skipped(self, db, provider, tenant):
        payload = {
            "entry": [
                {"id": "WABA_123456", "changes": 5},
                {"id": "WABA_123456", "changes": [{"value": "x"}, {"value": None}, "garbage"]},
            ]
        }

        report = asyncio.run(EventRouter(db, provider).route(payload, tenant))

        assert report.skipped_changes == 4
        assert report.failed == 0
