"""
Event Router

Dispatches a verified webhook batch to the message, delivery-status and
template-status paths. Every event is processed in isolation: a failure
is rolled back and logged, and the rest of the batch continues.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from whatsapp_flows.flows.engine import DEFAULT_MAX_CHAIN_DEPTH
from whatsapp_flows.providers.base import ParsedChange, WhatsAppProvider
from whatsapp_flows.providers.meta_cloud.webhook import validate_signature
from whatsapp_flows.routing.locks import ConversationLocker
from whatsapp_flows.routing.tenant_resolver import TenantContext, TenantResolver
from whatsapp_flows.service.inbound_handler import InboundHandler
from whatsapp_flows.service.media import MediaResolver
from whatsapp_flows.service.template_sync import TemplateStatusSynchronizer

logger = logging.getLogger(__name__)


@dataclass
class RoutingReport:
    """Per-batch processing summary."""

    messages: int = 0
    statuses: int = 0
    template_updates: int = 0
    failed: int = 0
    skipped_changes: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)


class EventRouter:
    """Routes the changes of a webhook payload to their handlers."""

    def __init__(
        self,
        db: Session,
        provider: WhatsAppProvider,
        tenant_resolver: TenantResolver | None = None,
        media_resolver: MediaResolver | None = None,
        locker: ConversationLocker | None = None,
        max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH,
    ):
        self.db = db
        self.provider = provider
        self.tenant_resolver = tenant_resolver or TenantResolver(db)
        self.inbound = InboundHandler(
            db,
            provider,
            media_resolver=media_resolver,
            locker=locker,
            max_chain_depth=max_chain_depth,
        )
        self.templates = TemplateStatusSynchronizer(db)

    async def route(
        self,
        payload: dict[str, Any],
        tenant: TenantContext,
        body: bytes | None = None,
        signature: str | None = None,
    ) -> RoutingReport:
        """
        Process every change entry of a verified payload.

        Args:
            payload: Decoded webhook body (already signature-checked)
            tenant: Tenant the request was attributed to
            body: Raw request body, needed to attribute changes to other tenants
            signature: X-Hub-Signature-256 header value of the request

        Returns:
            RoutingReport; never raises for per-event failures
        """
        report = RoutingReport()

        for entry in payload.get("entry") or []:
            if not isinstance(entry, dict):
                report.skipped_changes += 1
                continue
            entry_id = str(entry.get("id") or "")

            changes = entry.get("changes") or []
            if not isinstance(changes, list):
                logger.warning("Webhook entry with malformed changes", extra={"entry_id": entry_id})
                report.skipped_changes += 1
                continue

            for change in changes:
                value = change.get("value") if isinstance(change, dict) else None
                if not isinstance(value, dict):
                    logger.warning("Webhook change without a value object", extra={"entry_id": entry_id})
                    report.skipped_changes += 1
                    continue

                try:
                    parsed = self.provider.parse_change(entry_id, value)
                except Exception as e:
                    logger.error(
                        f"Failed to parse webhook change: {e}",
                        exc_info=True,
                        extra={"entry_id": entry_id, "tenant_id": str(tenant.tenant_id)},
                    )
                    report.failed += 1
                    continue

                change_tenant = self._tenant_for_change(parsed, tenant, body, signature)
                if change_tenant is None:
                    report.skipped_changes += 1
                    continue

                await self._route_change(parsed, change_tenant, report)

        logger.info(
            "Webhook batch routed",
            extra={
                "tenant_id": str(tenant.tenant_id),
                "messages": report.messages,
                "statuses": report.statuses,
                "template_updates": report.template_updates,
                "failed": report.failed,
            },
        )
        return report

    async def _route_change(
        self,
        parsed: ParsedChange,
        tenant: TenantContext,
        report: RoutingReport,
    ) -> None:
        for message in parsed.messages:
            if await self._isolated(
                "message",
                lambda m=message: self.inbound.handle_message(tenant, m),
                report,
                message.message_id,
            ):
                report.messages += 1

        for status in parsed.statuses:
            if await self._isolated(
                "status",
                lambda s=status: self._sync(self.inbound.handle_delivery_status, s),
                report,
                status.message_id,
            ):
                report.statuses += 1

        for update in parsed.template_updates:
            if await self._isolated(
                "template_status",
                lambda u=update: self._sync(self.templates.apply, tenant.tenant_id, u),
                report,
                update.template_name,
            ):
                report.template_updates += 1

    async def _isolated(
        self,
        kind: str,
        handler: Callable[[], Awaitable[dict[str, Any]]],
        report: RoutingReport,
        reference: str | None,
    ) -> bool:
        """Run one event handler; failures are rolled back and logged."""
        try:
            result = await handler()
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to process {kind} event: {e}",
                exc_info=True,
                extra={"event_kind": kind, "reference": reference},
            )
            report.failed += 1
            return False

        report.results.append({"kind": kind, **result})
        return True

    @staticmethod
    async def _sync(func: Callable[..., dict[str, Any]], *args: Any) -> dict[str, Any]:
        return func(*args)

    def _tenant_for_change(
        self,
        parsed: ParsedChange,
        tenant: TenantContext,
        body: bytes | None,
        signature: str | None,
    ) -> TenantContext | None:
        """
        Attribute a change to a tenant.

        Changes for another phone number are re-resolved; template changes
        (no metadata) go by WABA id, falling back to the request tenant.
        A change only moves to another tenant when the request signature
        also verifies against that tenant's app secret.
        """
        if parsed.phone_number_id:
            if parsed.phone_number_id == tenant.phone_number_id:
                return tenant
            other = self.tenant_resolver.resolve_from_phone_number_id(parsed.phone_number_id)
            if other is None or other.tenant_id == tenant.tenant_id:
                return other
            return self._authenticated(other, tenant, body, signature)

        if parsed.entry_id and parsed.entry_id != (tenant.binding.waba_id or ""):
            binding = self.tenant_resolver.repo.get_binding_by_waba_id(parsed.entry_id)
            if binding is not None and binding.tenant_id != tenant.tenant_id:
                other = self.tenant_resolver.resolve_from_waba_id(parsed.entry_id)
                if other is None:
                    return None
                return self._authenticated(other, tenant, body, signature)

        return tenant

    @staticmethod
    def _authenticated(
        other: TenantContext,
        tenant: TenantContext,
        body: bytes | None,
        signature: str | None,
    ) -> TenantContext | None:
        if body is not None and validate_signature(body, signature, other.app_secret):
            return other

        logger.warning(
            "Change for another tenant not signed with its app secret, skipping",
            extra={
                "tenant_id": str(tenant.tenant_id),
                "target_tenant_id": str(other.tenant_id),
                "phone_number_id": other.phone_number_id,
            },
        )
        return None
