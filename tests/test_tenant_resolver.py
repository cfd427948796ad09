"""
Tests for tenant resolution.
"""

from uuid import UUID

from cryptography.fernet import Fernet

from whatsapp_flows.persistence.models import BindingStatus
from whatsapp_flows.routing.tenant_resolver import (
    TenantResolver,
    decrypt_secret,
    encrypt_secret,
)

from conftest import APP_SECRET, PHONE_NUMBER_ID, VERIFY_TOKEN, WABA_ID

OTHER_TENANT_ID = UUID("87654321-4321-4321-4321-210987654321")


class TestTenantResolver:
    """Tests for TenantResolver."""

    def test_resolve_from_phone_number_id(self, db, binding, sample_tenant_id):
        """Test resolving a connected binding by phone_number_id."""
        context = TenantResolver(db).resolve_from_phone_number_id(PHONE_NUMBER_ID)

        assert context is not None
        assert context.tenant_id == sample_tenant_id
        assert context.phone_number_id == PHONE_NUMBER_ID
        assert context.access_token == "test_access_token"
        assert context.app_secret == APP_SECRET
        assert context.verify_token == VERIFY_TOKEN
        assert context.binding.id == binding.id

    def test_unknown_phone_number_id(self, db, binding):
        """Test an unmapped phone_number_id resolves to None."""
        assert TenantResolver(db).resolve_from_phone_number_id("UNKNOWN_PHONE") is None

    def test_disconnected_binding(self, db, repo):
        """Test a binding whose integration is not connected is not resolved."""
        repo.create_binding(
            tenant_id=OTHER_TENANT_ID,
            phone_number_id="PHONE_DISCONNECTED",
            display_number="+5511000000000",
            status=BindingStatus.DISCONNECTED,
        )
        db.commit()

        assert TenantResolver(db).resolve_from_phone_number_id("PHONE_DISCONNECTED") is None

    def test_resolve_from_waba_id(self, db, binding, sample_tenant_id):
        context = TenantResolver(db).resolve_from_waba_id(WABA_ID)

        assert context is not None
        assert context.tenant_id == sample_tenant_id

    def test_resolve_from_tenant_id(self, db, binding, sample_tenant_id):
        context = TenantResolver(db).resolve_from_tenant_id(str(sample_tenant_id))

        assert context is not None
        assert context.phone_number_id == PHONE_NUMBER_ID

    def test_malformed_path_tenant_id(self, db, binding):
        assert TenantResolver(db).resolve_from_tenant_id("not-a-uuid") is None

    def test_resolve_prefers_phone_number_id(self, db, binding, sample_tenant_id):
        """Test an unknown phone_number_id is not rescued by the other identifiers."""
        resolver = TenantResolver(db)

        assert resolver.resolve(phone_number_id="UNKNOWN", waba_id=WABA_ID, tenant_id=sample_tenant_id) is None
        assert resolver.resolve(phone_number_id=PHONE_NUMBER_ID).tenant_id == sample_tenant_id

    def test_resolve_falls_back_to_waba_then_path(self, db, binding, sample_tenant_id):
        """Test template-style events resolve through WABA id, then path tenant id."""
        resolver = TenantResolver(db)

        assert resolver.resolve(waba_id=WABA_ID).tenant_id == sample_tenant_id
        assert resolver.resolve(waba_id="UNKNOWN_WABA", tenant_id=sample_tenant_id).tenant_id == sample_tenant_id
        assert resolver.resolve() is None

    def test_verify_token_falls_back_to_app_secret(self, db, repo):
        repo.create_binding(
            tenant_id=OTHER_TENANT_ID,
            phone_number_id="PHONE_NO_TOKEN",
            display_number="+5511000000001",
            app_secret_encrypted="only_secret",
        )
        db.commit()

        context = TenantResolver(db).resolve_from_phone_number_id("PHONE_NO_TOKEN")

        assert context.verify_token == "only_secret"
        assert context.access_token is None


class TestSecretEncryption:
    """Tests for tenant secret encryption."""

    def test_encrypted_secrets_are_decrypted(self, db, repo):
        """Test secrets stored with Fernet are decrypted into the context."""
        key = Fernet.generate_key().decode()
        repo.create_binding(
            tenant_id=OTHER_TENANT_ID,
            phone_number_id="PHONE_ENC",
            display_number="+5511000000002",
            access_token_encrypted=encrypt_secret("real_token", key),
            app_secret_encrypted=encrypt_secret("real_secret", key),
        )
        db.commit()

        binding = repo.get_binding_by_phone_number_id("PHONE_ENC")
        assert binding.access_token_encrypted != "real_token"

        context = TenantResolver(db, encryption_key=key).resolve_from_phone_number_id("PHONE_ENC")

        assert context.access_token == "real_token"
        assert context.app_secret == "real_secret"

    def test_no_key_stores_plain(self):
        assert encrypt_secret("plain", None) == "plain"
        assert decrypt_secret("plain", None) == "plain"

    def test_wrong_key_returns_none(self):
        stored = encrypt_secret("value", Fernet.generate_key().decode())

        assert decrypt_secret(stored, Fernet.generate_key().decode()) is None

    def test_empty_value(self):
        assert decrypt_secret(None, "key") is None
        assert decrypt_secret("", "key") is None
