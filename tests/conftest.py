"""
Pytest fixtures for WhatsApp Flows tests.
"""

from uuid import UUID

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from whatsapp_flows.persistence.models import WhatsAppBase
from whatsapp_flows.persistence.repo import WhatsAppRepository
from whatsapp_flows.providers.stub import StubWhatsAppProvider
from whatsapp_flows.routing.tenant_resolver import TenantResolver

PHONE_NUMBER_ID = "PHONE_123"
WABA_ID = "WABA_123456"
APP_SECRET = "test_app_secret"
VERIFY_TOKEN = "test_verify_token"


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    WhatsAppBase.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def repo(db):
    return WhatsAppRepository(db)


@pytest.fixture
def sample_tenant_id():
    """Sample tenant UUID."""
    return UUID("12345678-1234-1234-1234-123456789012")


@pytest.fixture
def sample_phone():
    """Sample contact phone number."""
    return "5511888888888"


@pytest.fixture
def binding(db, repo, sample_tenant_id):
    """Connected binding for the sample tenant (secrets stored unencrypted)."""
    binding = repo.create_binding(
        tenant_id=sample_tenant_id,
        phone_number_id=PHONE_NUMBER_ID,
        display_number="+5511999999999",
        waba_id=WABA_ID,
        access_token_encrypted="test_access_token",
        app_secret_encrypted=APP_SECRET,
        config={"verify_token": VERIFY_TOKEN},
    )
    db.commit()
    return binding


@pytest.fixture
def tenant(db, binding):
    """Resolved tenant context for the sample tenant."""
    return TenantResolver(db).resolve_from_phone_number_id(PHONE_NUMBER_ID)


@pytest.fixture
def provider():
    """Stub provider recording outbound messages."""
    return StubWhatsAppProvider()


@pytest.fixture
def make_change_value():
    """Factory for the `value` object of a Meta webhook change."""

    def _make(messages=None, statuses=None, contact_name="John Doe", wa_id="5511888888888", **extra):
        value = {
            "messaging_product": "whatsapp",
            "metadata": {
                "display_phone_number": "5511999999999",
                "phone_number_id": PHONE_NUMBER_ID,
            },
        }
        if messages is not None:
            value["contacts"] = [{"profile": {"name": contact_name}, "wa_id": wa_id}] if contact_name else []
            value["messages"] = messages
        if statuses is not None:
            value["statuses"] = statuses
        value.update(extra)
        return value

    return _make


@pytest.fixture
def make_payload(make_change_value):
    """Factory for a full Meta webhook payload with one change."""

    def _make(messages=None, statuses=None, value=None, entry_id=WABA_ID, **kwargs):
        change_value = value if value is not None else make_change_value(messages=messages, statuses=statuses, **kwargs)
        return {
            "object": "whatsapp_business_account",
            "entry": [
                {
                    "id": entry_id,
                    "changes": [{"value": change_value, "field": "messages"}],
                }
            ],
        }

    return _make


@pytest.fixture
def text_message():
    """Factory for a raw Meta text message."""

    def _make(body, message_id="wamid.TEXT1", from_phone="5511888888888", timestamp="1704067200"):
        return {
            "from": from_phone,
            "id": message_id,
            "timestamp": timestamp,
            "text": {"body": body},
            "type": "text",
        }

    return _make
