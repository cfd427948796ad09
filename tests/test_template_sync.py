"""
Tests for template status synchronization.
"""

from whatsapp_flows.persistence.models import TemplateStatus
from whatsapp_flows.providers.base import TemplateStatusUpdate
from whatsapp_flows.service.template_sync import TemplateStatusSynchronizer


def update(event, reason=None, template_id="987"):
    return TemplateStatusUpdate(
        template_name="order_update",
        language="pt_BR",
        event=event,
        template_id=template_id,
        reason=reason,
    )


class TestTemplateStatusSynchronizer:
    """Tests for TemplateStatusSynchronizer."""

    def test_existing_template_updated(self, db, repo, sample_tenant_id):
        repo.create_template(sample_tenant_id, "order_update", "pt_BR", category="UTILITY")
        db.commit()

        result = TemplateStatusSynchronizer(db).apply(sample_tenant_id, update("APPROVED", reason="NONE"))

        assert result["status"] == "updated"
        assert result["template_status"] == "approved"
        template = repo.get_template(sample_tenant_id, "order_update", "pt_BR")
        assert template.status == TemplateStatus.APPROVED.value
        assert template.status_reason is None
        assert template.provider_template_id == "987"
        assert template.category == "UTILITY"

    def test_unknown_template_created(self, db, repo, sample_tenant_id):
        result = TemplateStatusSynchronizer(db).apply(sample_tenant_id, update("REJECTED", reason="INVALID_FORMAT"))

        assert result["status"] == "created"
        template = repo.get_template(sample_tenant_id, "order_update", "pt_BR")
        assert template.status == TemplateStatus.REJECTED.value
        assert template.status_reason == "INVALID_FORMAT"

    def test_replay_is_idempotent(self, db, repo, sample_tenant_id):
        """Test applying the same event twice leaves one record in the same state."""
        sync = TemplateStatusSynchronizer(db)

        sync.apply(sample_tenant_id, update("APPROVED"))
        result = sync.apply(sample_tenant_id, update("APPROVED"))

        assert result["status"] == "updated"
        template = repo.get_template(sample_tenant_id, "order_update", "pt_BR")
        assert template.status == TemplateStatus.APPROVED.value

    def test_later_event_wins(self, db, repo, sample_tenant_id):
        sync = TemplateStatusSynchronizer(db)

        sync.apply(sample_tenant_id, update("APPROVED"))
        sync.apply(sample_tenant_id, update("DISABLED", reason="Low quality"))

        template = repo.get_template(sample_tenant_id, "order_update", "pt_BR")
        assert template.status == TemplateStatus.DISABLED.value
        assert template.status_reason == "Low quality"

    def test_unsupported_event_skipped(self, db, repo, sample_tenant_id):
        result = TemplateStatusSynchronizer(db).apply(sample_tenant_id, update("FLAGGED"))

        assert result["status"] == "skipped"
        assert repo.get_template(sample_tenant_id, "order_update", "pt_BR") is None
