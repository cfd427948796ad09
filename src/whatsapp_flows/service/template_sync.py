"""
Template Status Synchronizer

Reconciles provider message template lifecycle notifications into local
template records, keyed by tenant + name + language.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from whatsapp_flows.persistence.models import TemplateStatus
from whatsapp_flows.persistence.repo import WhatsAppRepository
from whatsapp_flows.providers.base import TemplateStatusUpdate

logger = logging.getLogger(__name__)

EVENT_STATUS_MAP = {
    "APPROVED": TemplateStatus.APPROVED,
    "REJECTED": TemplateStatus.REJECTED,
    "PENDING": TemplateStatus.PENDING,
    "DISABLED": TemplateStatus.DISABLED,
}


class TemplateStatusSynchronizer:
    """Applies template lifecycle events idempotently."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = WhatsAppRepository(db)

    def apply(self, tenant_id: UUID, update: TemplateStatusUpdate) -> dict[str, Any]:
        """
        Set the template's status from a lifecycle event.

        A template not yet mirrored locally is created, so replaying the
        same event always converges on the same record and status.

        Args:
            tenant_id: Tenant owning the template
            update: Parsed template status update

        Returns:
            Processing result
        """
        status = EVENT_STATUS_MAP.get(update.event.upper())
        if status is None:
            logger.warning(
                f"Ignoring unsupported template event: {update.event}",
                extra={"tenant_id": str(tenant_id), "template": update.template_name},
            )
            return {"status": "skipped", "reason": "unsupported_event", "event": update.event}

        template = self.repo.get_template(tenant_id, update.template_name, update.language)
        created = template is None
        if template is None:
            template = self.repo.create_template(
                tenant_id=tenant_id,
                name=update.template_name,
                language=update.language,
                status=status,
                provider_template_id=update.template_id,
            )

        template.status = status.value
        # Meta sends the literal "NONE" when there is no reason
        has_reason = bool(update.reason) and update.reason.upper() != "NONE"
        template.status_reason = update.reason if has_reason else None
        if update.template_id and not template.provider_template_id:
            template.provider_template_id = update.template_id

        self.db.commit()

        logger.info(
            f"Template {update.template_name} ({update.language}) is now {status.value}",
            extra={"tenant_id": str(tenant_id), "template_id": update.template_id},
        )

        return {
            "status": "created" if created else "updated",
            "template": update.template_name,
            "language": update.language,
            "template_status": status.value,
        }
