"""bootcamp_etl.credentials

Credential provisioning and verification.

Every imported identity gets a default credential derived from its
normalized mobile number.  Only the salted hash is stored; the plaintext is
never kept past the hashing call.

The hashing primitive is werkzeug.security with one configured method
(``password_hash_method`` in config/program.yml).  Re-hashing an existing
hash would lock the user out, so values that are already hashed are wrapped
in StoredCredential and copied forward untouched.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Union

from werkzeug.security import check_password_hash, generate_password_hash

from bootcamp_etl.config import DEFAULT_PASSWORD_HASH_METHOD
from bootcamp_etl.normalize import normalize_email, normalize_mobile

if TYPE_CHECKING:
    from bootcamp_etl.store import IdentityStore

log = logging.getLogger(__name__)


class CredentialError(Exception):
    """Raised when a credential cannot be provisioned or updated."""


# ---------------------------------------------------------------------------
# Hash collaborator
# ---------------------------------------------------------------------------

class CredentialHasher(Protocol):
    def hash(self, plaintext: str) -> str: ...

    def verify(self, plaintext: str, stored: str) -> bool: ...


class WerkzeugHasher:
    def __init__(self, method: str = DEFAULT_PASSWORD_HASH_METHOD) -> None:
        self.method = method

    def hash(self, plaintext: str) -> str:
        return generate_password_hash(plaintext, method=self.method)

    def verify(self, plaintext: str, stored: str) -> bool:
        if not stored:
            return False
        try:
            return check_password_hash(stored, plaintext)
        except ValueError:
            # Unknown hash method in a legacy row.
            log.warning("unverifiable stored credential (unknown hash method)")
            return False


@dataclass(frozen=True)
class StoredCredential:
    """An already-hashed credential being carried over from existing data."""

    hash: str

    def __repr__(self) -> str:
        return "StoredCredential(<hidden>)"


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

def provision_default_credential(hasher: CredentialHasher, mobile: str | None) -> str:
    """Return the stored form of the default credential for ``mobile``."""
    plaintext = normalize_mobile(mobile)
    if not plaintext:
        raise CredentialError("cannot provision a default credential without a mobile number")
    return hasher.hash(plaintext)


def credential_for_update(
    hasher: CredentialHasher, value: Union[StoredCredential, str],
) -> str:
    """Return the hash to persist for ``value``.

    A StoredCredential is copied forward unchanged.  Plaintext is always
    hashed, even when it equals the current password.
    """
    if isinstance(value, StoredCredential):
        if not value.hash:
            raise CredentialError("stored credential is empty")
        return value.hash
    if not value:
        raise CredentialError("password must not be empty")
    return hasher.hash(value)


def set_password(
    store: "IdentityStore",
    hasher: CredentialHasher,
    email: str,
    plaintext: str,
) -> bool:
    """Replace the credential of ``email`` and check the new one verifies.

    Returns False when no identity has that email.
    """
    identity = store.find_by_email(normalize_email(email) or "")
    if identity is None:
        return False
    identity.password_hash = credential_for_update(hasher, plaintext)
    store.save(identity)
    if not hasher.verify(plaintext, identity.password_hash):
        raise CredentialError(f"new credential for {identity.email} does not verify")
    log.info("password updated for %s", identity.email)
    return True


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

class VerificationStatus(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    BAD_PASSWORD = "bad_password"


@dataclass(frozen=True)
class VerificationResult:
    email: str
    status: VerificationStatus
    default_credential_active: bool = False

    @property
    def ok(self) -> bool:
        return self.status is VerificationStatus.OK


def verify_credentials(
    store: "IdentityStore",
    hasher: CredentialHasher,
    email: str,
    plaintext: str,
) -> VerificationResult:
    """Check a login attempt the way the platform's login would.

    ``default_credential_active`` reports whether the identity's mobile
    number still verifies, i.e. the user never changed the default.
    """
    key = normalize_email(email) or ""
    identity = store.find_by_email(key)
    if identity is None:
        return VerificationResult(key, VerificationStatus.NOT_FOUND)

    default_active = bool(identity.mobile) and hasher.verify(
        identity.mobile, identity.password_hash
    )
    if not identity.is_active:
        return VerificationResult(key, VerificationStatus.INACTIVE, default_active)
    if not hasher.verify(plaintext, identity.password_hash):
        return VerificationResult(key, VerificationStatus.BAD_PASSWORD, default_active)
    return VerificationResult(key, VerificationStatus.OK, default_active)
