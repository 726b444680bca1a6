"""Unit tests for bootcamp_etl.credentials."""

from __future__ import annotations

import pytest

from bootcamp_etl.credentials import (
    CredentialError,
    StoredCredential,
    VerificationStatus,
    WerkzeugHasher,
    credential_for_update,
    provision_default_credential,
    set_password,
    verify_credentials,
)
from bootcamp_etl.identity import Identity, Role


@pytest.fixture
def participant(identities, hasher):
    return identities.create(Identity(
        email="asha@example.com",
        name="Asha Rao",
        mobile="9876543210",
        institution_name="Govt College",
        role=Role.PARTICIPANT,
        password_hash=provision_default_credential(hasher, "9876543210"),
    ))


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

class TestProvisionDefaultCredential:
    def test_hash_verifies_against_mobile(self, hasher):
        stored = provision_default_credential(hasher, "9876543210")
        assert stored != "9876543210"
        assert stored.startswith("pbkdf2:sha256:1000$")
        assert hasher.verify("9876543210", stored)

    def test_mobile_normalized_first(self, hasher):
        stored = provision_default_credential(hasher, "98765-43210")
        assert hasher.verify("9876543210", stored)

    def test_salted(self, hasher):
        assert provision_default_credential(hasher, "9876543210") != \
            provision_default_credential(hasher, "9876543210")

    def test_missing_mobile(self, hasher):
        with pytest.raises(CredentialError):
            provision_default_credential(hasher, "  ")


class TestCredentialForUpdate:
    def test_stored_credential_copied_forward(self, hasher):
        existing = hasher.hash("secret")
        assert credential_for_update(hasher, StoredCredential(existing)) == existing

    def test_plaintext_always_rehashed(self, hasher):
        existing = hasher.hash("secret")
        fresh = credential_for_update(hasher, "secret")
        assert fresh != existing
        assert hasher.verify("secret", fresh)

    def test_empty_plaintext(self, hasher):
        with pytest.raises(CredentialError):
            credential_for_update(hasher, "")

    def test_stored_credential_repr_hides_hash(self, hasher):
        assert "pbkdf2" not in repr(StoredCredential(hasher.hash("secret")))


class TestWerkzeugHasher:
    def test_empty_stored_hash_never_verifies(self, hasher):
        assert not hasher.verify("anything", "")

    def test_unknown_method_does_not_verify(self, hasher):
        assert not hasher.verify("secret", "md5$salt$abcdef")

    def test_default_method(self):
        assert WerkzeugHasher().method == "pbkdf2:sha256:600000"


# ---------------------------------------------------------------------------
# set_password / verify_credentials
# ---------------------------------------------------------------------------

class TestSetPassword:
    def test_updates_and_verifies(self, identities, hasher, participant):
        assert set_password(identities, hasher, "ASHA@example.com", "n3w-pass")
        stored = identities.find_by_email("asha@example.com")
        assert hasher.verify("n3w-pass", stored.password_hash)
        assert not hasher.verify("9876543210", stored.password_hash)

    def test_unknown_email(self, identities, hasher):
        assert not set_password(identities, hasher, "ghost@example.com", "x")


class TestVerifyCredentials:
    def test_default_credential_ok(self, identities, hasher, participant):
        result = verify_credentials(identities, hasher, "asha@example.com", "9876543210")
        assert result.ok
        assert result.default_credential_active

    def test_bad_password(self, identities, hasher, participant):
        result = verify_credentials(identities, hasher, "asha@example.com", "wrong")
        assert result.status is VerificationStatus.BAD_PASSWORD

    def test_not_found(self, identities, hasher):
        result = verify_credentials(identities, hasher, "ghost@example.com", "x")
        assert result.status is VerificationStatus.NOT_FOUND
        assert not result.ok

    def test_inactive(self, identities, hasher, participant):
        participant.is_active = False
        identities.save(participant)
        result = verify_credentials(identities, hasher, "asha@example.com", "9876543210")
        assert result.status is VerificationStatus.INACTIVE

    def test_changed_password_clears_default_flag(self, identities, hasher, participant):
        set_password(identities, hasher, "asha@example.com", "n3w-pass")
        result = verify_credentials(identities, hasher, "asha@example.com", "n3w-pass")
        assert result.ok
        assert not result.default_credential_active
