"""bootcamp_etl.importer

Participant and mentor CSV import pipelines.

Per row:
  1. Record validator -> candidate record, or a rejection (FAILED)
  2. Identity resolver -> CREATE, or SKIP_DUPLICATE (SKIPPED, identity untouched)
  3. Credential provisioner -> hash of the normalized mobile number
  4. store.create inside the row's atomic scope

Rows are streamed; only the BatchReport grows with the file.  Re-running an
import over the same file creates nothing new.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, ContextManager, Iterable, Union

from bootcamp_etl.batch import BatchReport, ItemFailed, ItemFailure, ItemResult, run_batch
from bootcamp_etl.config import DEFAULT_MENTOR_INSTITUTION, DEFAULT_MOBILE_LENGTH
from bootcamp_etl.credentials import CredentialHasher, provision_default_credential
from bootcamp_etl.identity import Identity, ParticipantType, Role
from bootcamp_etl.records import (
    MentorRecord,
    ParticipantRecord,
    RawRow,
    Rejection,
    iter_csv_rows,
    validate_mentor_row,
    validate_participant_row,
)
from bootcamp_etl.resolve import DUPLICATE_REASON, Resolution, resolve_identity
from bootcamp_etl.shared import DuplicateKeyError

if TYPE_CHECKING:
    from bootcamp_etl.store import IdentityStore

log = logging.getLogger(__name__)

Candidate = Union[ParticipantRecord, MentorRecord, Rejection]
RejectCallback = Callable[[Candidate, ItemFailure], None]
Atomic = Callable[[str], ContextManager[Any]]


# ---------------------------------------------------------------------------
# Record -> Identity
# ---------------------------------------------------------------------------

def participant_identity(record: ParticipantRecord, password_hash: str) -> Identity:
    return Identity(
        email=record.email,
        name=record.name,
        mobile=record.mobile,
        institution_name=record.institution_name,
        role=Role.PARTICIPANT,
        participant_type=record.participant_type,
        password_hash=password_hash,
    )


def mentor_identity(record: MentorRecord, password_hash: str) -> Identity:
    return Identity(
        email=record.email,
        name=record.name,
        mobile=record.mobile,
        institution_name=record.institution_name,
        role=Role.MENTOR,
        description=record.description,
        skills=list(record.skills),
        password_hash=password_hash,
    )


# ---------------------------------------------------------------------------
# Row processing
# ---------------------------------------------------------------------------

def _import_one(
    store: "IdentityStore",
    hasher: CredentialHasher,
    candidate: Candidate,
) -> ItemResult:
    if isinstance(candidate, Rejection):
        raise ItemFailed(candidate.reason)

    if resolve_identity(store, candidate) is Resolution.SKIP_DUPLICATE:
        log.debug("line %d: %s already exists, skipping", candidate.line_number, candidate.email)
        return ItemResult.skipped(DUPLICATE_REASON)

    password_hash = provision_default_credential(hasher, candidate.mobile)
    if isinstance(candidate, ParticipantRecord):
        identity = participant_identity(candidate, password_hash)
    else:
        identity = mentor_identity(candidate, password_hash)

    try:
        store.create(identity)
    except DuplicateKeyError:
        # Inserted by someone else between the lookup and the create.
        return ItemResult.skipped(DUPLICATE_REASON)
    return ItemResult.success()


def _run_import(
    store: "IdentityStore",
    hasher: CredentialHasher,
    candidates: Iterable[Candidate],
    atomic: Atomic | None,
    on_reject: RejectCallback | None,
) -> BatchReport:
    return run_batch(
        candidates,
        lambda candidate: _import_one(store, hasher, candidate),
        identify=lambda candidate: candidate.identifier,
        atomic=atomic,
        on_failure=on_reject,
    )


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------

def import_participants(
    store: "IdentityStore",
    hasher: CredentialHasher,
    rows: Iterable[RawRow],
    mobile_length: int = DEFAULT_MOBILE_LENGTH,
    participant_type: ParticipantType = ParticipantType.BOOTCAMP,
    atomic: Atomic | None = None,
    on_reject: RejectCallback | None = None,
) -> BatchReport:
    """Import participant rows (email, name, collegeName, mobile).

    ``on_reject`` is called with the candidate and its failure for every row
    that was not created; ``candidate.source`` holds the original row.
    """
    candidates = (
        validate_participant_row(row, mobile_length, participant_type) for row in rows
    )
    return _run_import(store, hasher, candidates, atomic, on_reject)


def import_mentors(
    store: "IdentityStore",
    hasher: CredentialHasher,
    rows: Iterable[RawRow],
    mobile_length: int = DEFAULT_MOBILE_LENGTH,
    default_institution: str = DEFAULT_MENTOR_INSTITUTION,
    atomic: Atomic | None = None,
    on_reject: RejectCallback | None = None,
) -> BatchReport:
    """Import mentor rows (name, mobile, email, description, skills)."""
    candidates = (
        validate_mentor_row(row, mobile_length, default_institution) for row in rows
    )
    return _run_import(store, hasher, candidates, atomic, on_reject)


def import_participants_csv(
    store: "IdentityStore",
    hasher: CredentialHasher,
    csv_path: Path,
    **kwargs: Any,
) -> BatchReport:
    return import_participants(store, hasher, iter_csv_rows(csv_path), **kwargs)


def import_mentors_csv(
    store: "IdentityStore",
    hasher: CredentialHasher,
    csv_path: Path,
    **kwargs: Any,
) -> BatchReport:
    return import_mentors(store, hasher, iter_csv_rows(csv_path), **kwargs)
