"""
WhatsApp Webhook Service

FastAPI app that receives WhatsApp webhooks from Meta Cloud API.

Responsibilities:
- Answer the webhook verification challenge per tenant
- Verify the payload signature with the tenant's app secret
- Resolve the tenant from phone_number_id (or WABA id / path tenant id)
- Route messages, delivery statuses and template updates
- Always answer 200 once a request is authenticated and attributed, so
  the provider does not disable the webhook over internal failures
"""

import json
import logging

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whatsapp_flows import __version__
from whatsapp_flows.api.dependencies import get_db, get_locker, get_provider, get_settings
from whatsapp_flows.core.logging import setup_logging
from whatsapp_flows.core.settings import Settings
from whatsapp_flows.providers.base import WhatsAppProvider
from whatsapp_flows.providers.meta_cloud.webhook import (
    extract_phone_number_id,
    extract_waba_id,
    has_entry_list,
)
from whatsapp_flows.routing.locks import ConversationLocker
from whatsapp_flows.routing.tenant_resolver import TenantResolver
from whatsapp_flows.service.media import MediaResolver
from whatsapp_flows.service.router import EventRouter

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
ACKNOWLEDGEMENT = "EVENT_RECEIVED"


def create_app() -> FastAPI:
    """Create the webhook application."""
    setup_logging()

    app = FastAPI(
        title="WhatsApp Flows Webhook",
        description="Receives WhatsApp webhooks and drives flow automation",
        version=__version__,
    )

    @app.on_event("shutdown")
    async def shutdown():
        """Close the provider's HTTP client."""
        provider = get_provider()
        close = getattr(provider, "close", None)
        if close is not None:
            await close()

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "service": "whatsapp-flows"}

    @app.get("/webhook/{tenant_id}")
    async def verify_webhook(
        tenant_id: str,
        request: Request,
        db: Session = Depends(get_db),
        provider: WhatsAppProvider = Depends(get_provider),
        settings: Settings = Depends(get_settings),
    ):
        """
        Handle Meta webhook verification.

        Meta sends a GET request with hub.mode, hub.verify_token, and hub.challenge.
        We must return hub.challenge if the token matches the tenant's.
        """
        params = request.query_params
        mode = params.get("hub.mode") or params.get("mode") or ""
        token = params.get("hub.verify_token") or params.get("verify_token") or ""
        challenge = params.get("hub.challenge") or params.get("challenge") or ""

        logger.info(
            "Webhook verification request",
            extra={"tenant_id": tenant_id, "mode": mode, "token_received": bool(token)},
        )

        try:
            tenant = TenantResolver(db, settings.WHATSAPP_ENCRYPTION_KEY).resolve_from_tenant_id(tenant_id)
        except SQLAlchemyError as e:
            logger.error(f"Storage error during tenant resolution: {e}", exc_info=True)
            raise HTTPException(status_code=503, detail="Storage unavailable")

        if tenant is not None:
            accepted = provider.verify_webhook_challenge(
                mode=mode,
                token=token,
                challenge=challenge,
                verify_token=tenant.verify_token or "",
            )
            if accepted:
                logger.info("Webhook verification successful", extra={"tenant_id": tenant_id})
                return PlainTextResponse(content=accepted)

        logger.warning("Webhook verification failed", extra={"tenant_id": tenant_id})
        raise HTTPException(status_code=403, detail="Verification failed")

    @app.post("/webhook")
    @app.post("/webhook/{tenant_id}")
    async def receive_webhook(
        request: Request,
        tenant_id: str | None = None,
        db: Session = Depends(get_db),
        provider: WhatsAppProvider = Depends(get_provider),
        locker: ConversationLocker | None = Depends(get_locker),
        settings: Settings = Depends(get_settings),
    ) -> Response:
        """
        Receive webhook events from Meta Cloud API.

        Flow:
        1. Require the signature header
        2. Decode the payload
        3. Resolve tenant (phone_number_id, WABA id, path tenant id)
        4. Validate the signature with the tenant's app secret
        5. Route every change; per-event failures do not fail the request
        """
        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature:
            logger.warning("Webhook without signature header")
            raise HTTPException(status_code=401, detail="Missing signature")

        body = await request.body()

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Invalid JSON payload")
            raise HTTPException(status_code=400, detail="Invalid JSON")

        if not has_entry_list(payload):
            logger.warning("Webhook payload without entry list")
            raise HTTPException(status_code=400, detail="Missing entry")

        resolver = TenantResolver(db, settings.WHATSAPP_ENCRYPTION_KEY)
        try:
            tenant = resolver.resolve(
                phone_number_id=extract_phone_number_id(payload),
                waba_id=extract_waba_id(payload),
                tenant_id=tenant_id,
            )
        except SQLAlchemyError as e:
            logger.error(f"Storage error during tenant resolution: {e}", exc_info=True)
            raise HTTPException(status_code=503, detail="Storage unavailable")

        if tenant is None:
            raise HTTPException(status_code=404, detail="Tenant not found")

        if not provider.validate_webhook_signature(body, signature, tenant.app_secret or ""):
            logger.warning(
                "Invalid webhook signature",
                extra={"tenant_id": str(tenant.tenant_id)},
            )
            raise HTTPException(status_code=401, detail="Invalid signature")

        router = EventRouter(
            db,
            provider,
            tenant_resolver=resolver,
            media_resolver=MediaResolver(provider, timeout=settings.MEDIA_FETCH_TIMEOUT_SECONDS),
            locker=locker,
            max_chain_depth=settings.FLOW_MAX_CHAIN_DEPTH,
        )
        await router.route(payload, tenant, body=body, signature=signature)

        return PlainTextResponse(content=ACKNOWLEDGEMENT)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8090)
