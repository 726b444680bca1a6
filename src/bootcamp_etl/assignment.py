"""bootcamp_etl.assignment

Mentor <-> participant assignment ledger.

The relation is stored on both sides:
  participant side  Identity.assigned_mentor_id
  mentor side       Identity.assigned_participant_ids (mentor_participant rows)

and must agree: P.assigned_mentor_id == M  <=>  P in M.assigned_participant_ids.
Every write below touches both sides for exactly one participant, inside that
participant's atomic scope, so a failure leaves neither side changed.

Rules:
  - last assignment wins; the previous mentor loses the participant
  - unassign only clears a reference that points at the requesting mentor
  - repair treats the participant side as authoritative
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, ContextManager, Iterable, Union

from bootcamp_etl.batch import BatchReport, ItemFailed, ItemFailure, ItemResult, not_found, run_batch
from bootcamp_etl.identity import Identity, Role
from bootcamp_etl.records import AssignmentDirective, ParticipantRecord, ParticipantRef, Rejection

if TYPE_CHECKING:
    from bootcamp_etl.store import IdentityStore

log = logging.getLogger(__name__)

Atomic = Callable[[str], ContextManager[Any]]

ALREADY_ASSIGNED = "already assigned"
OTHER_MENTOR = "assigned to a different mentor; left unchanged"
NOT_ASSIGNED = "not assigned"

ParticipantRow = Union[ParticipantRef, ParticipantRecord, Rejection]


class MentorNotFoundError(Exception):
    """Raised before a batch starts when its single target mentor is unknown."""


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def _load_mentor(store: "IdentityStore", mentor_id: str) -> Identity:
    mentor = store.find_by_id(mentor_id)
    if mentor is None or not mentor.is_mentor:
        raise not_found("mentor", mentor_id)
    return mentor


def _load_participant(store: "IdentityStore", participant_id: str) -> Identity:
    participant = store.find_by_id(participant_id)
    if participant is None or not participant.is_participant:
        raise not_found("participant", participant_id)
    return participant


def _participant_by_email(store: "IdentityStore", email: str) -> Identity:
    participant = store.find_by_email(email)
    if participant is None or not participant.is_participant:
        raise not_found("participant", email)
    return participant


def _mentor_by_email(store: "IdentityStore", email: str) -> Identity:
    mentor = store.find_by_email(email)
    if mentor is None or not mentor.is_mentor:
        raise not_found("mentor", email)
    return mentor


# ---------------------------------------------------------------------------
# Single-participant writes
# ---------------------------------------------------------------------------

def _assign_one(store: "IdentityStore", mentor: Identity, participant: Identity) -> ItemResult:
    holders = store.mentors_holding(participant.id)
    if (
        participant.assigned_mentor_id == mentor.id
        and all(holder.id == mentor.id for holder in holders)
        and participant.id in mentor.assigned_participant_ids
    ):
        return ItemResult.success(ALREADY_ASSIGNED)

    note = None
    prior_id = participant.assigned_mentor_id
    if prior_id and prior_id != mentor.id:
        prior = store.find_by_id(prior_id)
        note = f"reassigned from {prior.email if prior else prior_id}"
        log.info("%s already has a different mentor assigned; %s", participant.email, note)

    for holder in holders:
        if holder.id != mentor.id:
            holder.assigned_participant_ids.discard(participant.id)
            store.save(holder)

    participant.assigned_mentor_id = mentor.id
    store.save(participant)
    mentor.assigned_participant_ids.add(participant.id)
    store.save(mentor)
    return ItemResult.success(note)


def _unassign_one(store: "IdentityStore", mentor: Identity, participant: Identity) -> ItemResult:
    note = None
    if participant.assigned_mentor_id == mentor.id:
        participant.assigned_mentor_id = None
        store.save(participant)
    elif participant.assigned_mentor_id is not None:
        note = OTHER_MENTOR
    elif participant.id not in mentor.assigned_participant_ids:
        note = NOT_ASSIGNED

    if participant.id in mentor.assigned_participant_ids:
        mentor.assigned_participant_ids.discard(participant.id)
        store.save(mentor)
    return ItemResult.success(note)


# ---------------------------------------------------------------------------
# Batch operations
# ---------------------------------------------------------------------------

def assign(
    store: "IdentityStore",
    mentor_id: str,
    participant_ids: Iterable[str],
    atomic: Atomic | None = None,
) -> BatchReport:
    """Assign every participant to ``mentor_id``, superseding any prior mentor."""

    def _op(participant_id: str) -> ItemResult:
        # Reloaded per item: a rolled-back item must not leak into the next one.
        mentor = _load_mentor(store, mentor_id)
        return _assign_one(store, mentor, _load_participant(store, participant_id))

    return run_batch(participant_ids, _op, identify=str, atomic=atomic)


def unassign(
    store: "IdentityStore",
    mentor_id: str,
    participant_ids: Iterable[str],
    atomic: Atomic | None = None,
) -> BatchReport:
    """Remove participants from ``mentor_id``; other mentors' members are left alone."""

    def _op(participant_id: str) -> ItemResult:
        mentor = _load_mentor(store, mentor_id)
        return _unassign_one(store, mentor, _load_participant(store, participant_id))

    return run_batch(participant_ids, _op, identify=str, atomic=atomic)


def reassign(
    store: "IdentityStore",
    participant_id: str,
    new_mentor_id: str,
    atomic: Atomic | None = None,
) -> BatchReport:
    return assign(store, new_mentor_id, [participant_id], atomic=atomic)


def list_unassigned(
    store: "IdentityStore",
    participants: Iterable[Identity] | None = None,
) -> list[Identity]:
    """Participants with no mentor reference that no mentor's set holds either."""
    if participants is None:
        participants = store.list_by_role(Role.PARTICIPANT)
    held: set[str] = set()
    for mentor in store.list_by_role(Role.MENTOR):
        held |= mentor.assigned_participant_ids
    return [
        p for p in participants
        if p.is_participant and p.assigned_mentor_id is None and p.id not in held
    ]


def assign_directives(
    store: "IdentityStore",
    directives: Iterable[Union[AssignmentDirective, Rejection]],
    atomic: Atomic | None = None,
    on_failure: Callable[[Union[AssignmentDirective, Rejection], ItemFailure], None] | None = None,
) -> BatchReport:
    """Apply (participantEmail, mentorEmail) rows, one assignment per row."""

    def _op(directive: Union[AssignmentDirective, Rejection]) -> ItemResult:
        if isinstance(directive, Rejection):
            raise ItemFailed(directive.reason)
        participant = _participant_by_email(store, directive.participant_email)
        mentor = _mentor_by_email(store, directive.mentor_email)
        return _assign_one(store, mentor, participant)

    return run_batch(
        directives, _op, identify=lambda d: d.identifier, atomic=atomic, on_failure=on_failure,
    )


def unassign_directives(
    store: "IdentityStore",
    directives: Iterable[Union[AssignmentDirective, Rejection]],
    atomic: Atomic | None = None,
    on_failure: Callable[[Union[AssignmentDirective, Rejection], ItemFailure], None] | None = None,
) -> BatchReport:
    def _op(directive: Union[AssignmentDirective, Rejection]) -> ItemResult:
        if isinstance(directive, Rejection):
            raise ItemFailed(directive.reason)
        participant = _participant_by_email(store, directive.participant_email)
        mentor = _mentor_by_email(store, directive.mentor_email)
        return _unassign_one(store, mentor, participant)

    return run_batch(
        directives, _op, identify=lambda d: d.identifier, atomic=atomic, on_failure=on_failure,
    )


def assign_all_to_mentor(
    store: "IdentityStore",
    mentor_email: str,
    records: Iterable[ParticipantRow],
    atomic: Atomic | None = None,
    on_failure: Callable[[ParticipantRow, ItemFailure], None] | None = None,
) -> BatchReport:
    """Assign every participant in a participant CSV to one mentor.

    Only the email of each row is used; rows may come from
    validate_participant_email_row or the full participant validator.

    Raises:
        MentorNotFoundError: ``mentor_email`` is not a mentor.  Nothing is
            written in that case.
    """
    mentor = store.find_by_email(mentor_email)
    if mentor is None or not mentor.is_mentor:
        raise MentorNotFoundError(f"mentor {mentor_email!r} not found")
    mentor_id = mentor.id

    def _op(record: ParticipantRow) -> ItemResult:
        if isinstance(record, Rejection):
            raise ItemFailed(record.reason)
        participant = _participant_by_email(store, record.email)
        return _assign_one(store, _load_mentor(store, mentor_id), participant)

    return run_batch(
        records, _op, identify=lambda r: r.identifier, atomic=atomic, on_failure=on_failure,
    )


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------

def _repair_one(store: "IdentityStore", participant_id: str) -> ItemResult:
    participant = _load_participant(store, participant_id)
    fixes: list[str] = []

    mentor = None
    if participant.assigned_mentor_id is not None:
        mentor = store.find_by_id(participant.assigned_mentor_id)
        if mentor is None or not mentor.is_mentor:
            fixes.append(f"cleared reference to non-mentor {participant.assigned_mentor_id}")
            participant.assigned_mentor_id = None
            store.save(participant)
            mentor = None

    for holder in store.mentors_holding(participant.id):
        if mentor is None or holder.id != mentor.id:
            holder.assigned_participant_ids.discard(participant.id)
            store.save(holder)
            fixes.append(f"removed stray membership in {holder.email}")

    if mentor is not None and participant.id not in mentor.assigned_participant_ids:
        mentor.assigned_participant_ids.add(participant.id)
        store.save(mentor)
        fixes.append(f"added missing membership in {mentor.email}")

    if not fixes:
        return ItemResult.success()
    for fix in fixes:
        log.warning("repair %s: %s", participant.email, fix)
    return ItemResult.success("; ".join(fixes))


def repair(store: "IdentityStore", atomic: Atomic | None = None) -> BatchReport:
    """Make both sides of every assignment agree with the participant side."""
    participant_ids = [p.id for p in store.list_by_role(Role.PARTICIPANT)]
    return run_batch(
        participant_ids, lambda pid: _repair_one(store, pid), identify=str, atomic=atomic,
    )
