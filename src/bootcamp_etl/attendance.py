"""bootcamp_etl.attendance

Attendance ledger: at most one record per (participant, calendar day).

  mark         upsert; an existing record keeps its id and takes the new status
  remove       delete if present; removing an unmarked day is a no-op
  bulk_mark    mark once per entry through the batch executor
  bulk_remove  remove once per participant through the batch executor

mark_directives / remove_directives are the CSV forms, keyed by email.

The ledger accepts any date.  The program day window (ProgramCalendar) is
policy for callers such as the CLI, which refuse days outside it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, ContextManager, Iterable, Union

from bootcamp_etl.batch import BatchReport, ItemFailed, ItemFailure, ItemResult, not_found, run_batch
from bootcamp_etl.identity import AttendanceStatus, Identity, Role
from bootcamp_etl.records import AttendanceDirective, Rejection

if TYPE_CHECKING:
    from bootcamp_etl.store import AttendanceStore, IdentityStore

log = logging.getLogger(__name__)

Directive = Union[AttendanceDirective, Rejection]


@dataclass
class AttendanceRecord:
    participant_id: str
    attendance_date: date
    status: AttendanceStatus
    id: str | None = None
    marked_by: str | None = None
    marked_at: datetime | None = None
    remarks: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "attendance_date": self.attendance_date.isoformat(),
            "status": self.status.value,
            "marked_by": self.marked_by,
            "marked_at": self.marked_at,
            "remarks": self.remarks,
        }


@dataclass(frozen=True)
class MarkResult:
    record: AttendanceRecord
    created: bool
    previous_status: AttendanceStatus | None = None


# ---------------------------------------------------------------------------
# Program day window
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProgramCalendar:
    """A fixed run of consecutive calendar days starting at ``start_date``."""

    start_date: date
    day_count: int

    @property
    def end_date(self) -> date:
        return self.start_date + timedelta(days=self.day_count - 1)

    def days(self) -> list[date]:
        return [self.start_date + timedelta(days=i) for i in range(self.day_count)]

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def day_number(self, day: date) -> int | None:
        """1-based program day, or None outside the window."""
        if not self.contains(day):
            return None
        return (day - self.start_date).days + 1

    def label(self, day: date) -> str:
        number = self.day_number(day)
        return f"Day {number}" if number is not None else day.isoformat()


# ---------------------------------------------------------------------------
# Single-record operations
# ---------------------------------------------------------------------------

def _load_participant(identities: "IdentityStore", participant_id: str) -> Identity:
    participant = identities.find_by_id(participant_id)
    if participant is None or not participant.is_participant:
        raise not_found("participant", participant_id)
    return participant


def _check_actor(actor: Identity | None, participant: Identity) -> None:
    if actor is None or actor.role is Role.ADMIN:
        return
    if actor.is_mentor:
        if participant.id not in actor.assigned_participant_ids:
            raise ItemFailed(
                f"not_assigned_to_mentor: {participant.email} is not assigned to {actor.email}"
            )
        return
    raise ItemFailed(f"not_permitted: {actor.role.value} {actor.email} cannot edit attendance")


def mark(
    identities: "IdentityStore",
    records: "AttendanceStore",
    participant_id: str,
    day: date,
    status: AttendanceStatus,
    actor: Identity | None = None,
    remarks: str | None = None,
) -> MarkResult:
    """Upsert the single attendance record for (participant, day)."""
    participant = _load_participant(identities, participant_id)
    _check_actor(actor, participant)
    status = AttendanceStatus(status)
    marked_by = actor.id if actor else None

    existing = records.find(participant_id, day)
    if existing is not None:
        previous = existing.status
        existing.status = status
        existing.marked_by = marked_by
        existing.remarks = remarks
        records.save(existing)
        return MarkResult(existing, created=False, previous_status=previous)

    record = records.create(AttendanceRecord(
        participant_id=participant_id,
        attendance_date=day,
        status=status,
        marked_by=marked_by,
        remarks=remarks,
    ))
    return MarkResult(record, created=True)


def remove(
    identities: "IdentityStore",
    records: "AttendanceStore",
    participant_id: str,
    day: date,
    actor: Identity | None = None,
) -> bool:
    """Delete the (participant, day) record.  Returns False if there was none."""
    _check_actor(actor, _load_participant(identities, participant_id))
    existing = records.find(participant_id, day)
    if existing is None:
        return False
    records.delete(existing.id)
    return True


# ---------------------------------------------------------------------------
# Bulk forms
# ---------------------------------------------------------------------------

def _mark_outcome(result: MarkResult) -> ItemResult:
    if result.created or result.previous_status is None:
        return ItemResult.success()
    if result.previous_status is result.record.status:
        return ItemResult.success("already marked")
    return ItemResult.success(
        f"status changed {result.previous_status.value} -> {result.record.status.value}"
    )


def bulk_mark(
    identities: "IdentityStore",
    records: "AttendanceStore",
    day: date,
    entries: Iterable[tuple[str, AttendanceStatus]],
    actor: Identity | None = None,
    atomic: Callable[[str], ContextManager[Any]] | None = None,
    identify: Callable[[tuple[str, AttendanceStatus]], str] | None = None,
) -> BatchReport:
    def _op(entry: tuple[str, AttendanceStatus]) -> ItemResult:
        participant_id, status = entry
        return _mark_outcome(
            mark(identities, records, participant_id, day, status, actor=actor)
        )

    return run_batch(
        entries,
        _op,
        identify=identify or (lambda entry: entry[0]),
        atomic=atomic,
    )


def bulk_remove(
    identities: "IdentityStore",
    records: "AttendanceStore",
    day: date,
    participant_ids: Iterable[str],
    actor: Identity | None = None,
    atomic: Callable[[str], ContextManager[Any]] | None = None,
) -> BatchReport:
    def _op(participant_id: str) -> ItemResult:
        if remove(identities, records, participant_id, day, actor=actor):
            return ItemResult.success()
        return ItemResult.success("no record to remove")

    return run_batch(participant_ids, _op, identify=str, atomic=atomic)


def _participant_id_for(identities: "IdentityStore", email: str) -> str:
    participant = identities.find_by_email(email)
    if participant is None or not participant.is_participant:
        raise not_found("participant", email)
    return participant.id


def mark_directives(
    identities: "IdentityStore",
    records: "AttendanceStore",
    day: date,
    directives: Iterable[Directive],
    default_status: AttendanceStatus | None = None,
    actor: Identity | None = None,
    atomic: Callable[[str], ContextManager[Any]] | None = None,
    on_failure: Callable[[Directive, ItemFailure], None] | None = None,
) -> BatchReport:
    """bulk_mark over (participantEmail, status) rows.

    ``default_status`` applies to rows that carry no status of their own.
    """

    def _op(directive: Directive) -> ItemResult:
        if isinstance(directive, Rejection):
            raise ItemFailed(directive.reason)
        status = directive.status or default_status
        if status is None:
            raise ItemFailed("missing_status")
        participant_id = _participant_id_for(identities, directive.participant_email)
        return _mark_outcome(
            mark(identities, records, participant_id, day, status, actor=actor)
        )

    return run_batch(
        directives, _op, identify=lambda d: d.identifier, atomic=atomic, on_failure=on_failure,
    )


def remove_directives(
    identities: "IdentityStore",
    records: "AttendanceStore",
    day: date,
    directives: Iterable[Directive],
    actor: Identity | None = None,
    atomic: Callable[[str], ContextManager[Any]] | None = None,
    on_failure: Callable[[Directive, ItemFailure], None] | None = None,
) -> BatchReport:
    def _op(directive: Directive) -> ItemResult:
        if isinstance(directive, Rejection):
            raise ItemFailed(directive.reason)
        participant_id = _participant_id_for(identities, directive.participant_email)
        if remove(identities, records, participant_id, day, actor=actor):
            return ItemResult.success()
        return ItemResult.success("no record to remove")

    return run_batch(
        directives, _op, identify=lambda d: d.identifier, atomic=atomic, on_failure=on_failure,
    )


# ---------------------------------------------------------------------------
# Read view
# ---------------------------------------------------------------------------

def day_matrix(
    records: "AttendanceStore",
    participant_ids: Iterable[str],
    days: Iterable[date],
) -> dict[str, dict[date, AttendanceStatus]]:
    """Return {participant_id: {day: status}}; unmarked days are absent keys."""
    pids = list(participant_ids)
    matrix: dict[str, dict[date, AttendanceStatus]] = {pid: {} for pid in pids}
    for record in records.list_for(pids, list(days)):
        matrix.setdefault(record.participant_id, {})[record.attendance_date] = record.status
    return matrix
