"""Unit test fixtures.

In-memory stand-ins for the PostgreSQL stores.  Reads hand out copies, so a
caller's mutations only land on save(), and ``atomic`` snapshots every store
it covers and restores them when the block raises, like a SAVEPOINT.
"""

from __future__ import annotations

import contextlib
import copy
import uuid
from datetime import date, datetime

import pytest

from bootcamp_etl.attendance import AttendanceRecord
from bootcamp_etl.credentials import WerkzeugHasher
from bootcamp_etl.identity import Identity, ParticipantType, Role
from bootcamp_etl.shared import DuplicateKeyError, StoreError


# ---------------------------------------------------------------------------
# Fake stores
# ---------------------------------------------------------------------------

class FakeIdentityStore:
    def __init__(self) -> None:
        self.rows: dict[str, Identity] = {}
        # email -> exception raised by create/save for that email
        self.failures: dict[str, Exception] = {}
        self.saves = 0

    def _fail_for(self, email: str) -> None:
        if email in self.failures:
            raise self.failures[email]

    def find_by_email(self, email: str) -> Identity | None:
        for identity in self.rows.values():
            if identity.email == email:
                return copy.deepcopy(identity)
        return None

    def find_by_id(self, identity_id: str) -> Identity | None:
        identity = self.rows.get(identity_id)
        return copy.deepcopy(identity) if identity else None

    def create(self, identity: Identity) -> Identity:
        self._fail_for(identity.email)
        if any(row.email == identity.email for row in self.rows.values()):
            raise DuplicateKeyError(f"identity with email {identity.email!r} already exists")
        identity.id = str(uuid.uuid4())
        identity.registered_at = datetime(2025, 8, 1, 9, 0)
        self.rows[identity.id] = copy.deepcopy(identity)
        return identity

    def save(self, identity: Identity) -> None:
        self._fail_for(identity.email)
        if identity.id not in self.rows:
            raise StoreError(f"identity {identity.id} no longer exists")
        self.rows[identity.id] = copy.deepcopy(identity)
        self.saves += 1

    def list_by_role(self, role: Role) -> list[Identity]:
        return sorted(
            (copy.deepcopy(i) for i in self.rows.values() if i.role is role),
            key=lambda i: i.email,
        )

    def mentors_holding(self, participant_id: str) -> list[Identity]:
        return sorted(
            (
                copy.deepcopy(i) for i in self.rows.values()
                if i.is_mentor and participant_id in i.assigned_participant_ids
            ),
            key=lambda i: i.email,
        )

    # Only the identity rows; see fake_atomic for multi-store scopes.
    def atomic(self, name: str = "item"):
        return fake_atomic(self)(name)


class FakeAttendanceStore:
    def __init__(self) -> None:
        self.rows: dict[str, AttendanceRecord] = {}

    def find(self, participant_id: str, day: date) -> AttendanceRecord | None:
        for record in self.rows.values():
            if record.participant_id == participant_id and record.attendance_date == day:
                return copy.deepcopy(record)
        return None

    def create(self, record: AttendanceRecord) -> AttendanceRecord:
        if self.find(record.participant_id, record.attendance_date) is not None:
            raise DuplicateKeyError("attendance already exists")
        record.id = str(uuid.uuid4())
        record.marked_at = datetime(2025, 8, 4, 10, 0)
        self.rows[record.id] = copy.deepcopy(record)
        return record

    def save(self, record: AttendanceRecord) -> None:
        if record.id not in self.rows:
            raise StoreError(f"attendance record {record.id} no longer exists")
        self.rows[record.id] = copy.deepcopy(record)

    def delete(self, record_id: str) -> None:
        self.rows.pop(record_id, None)

    def list_for(self, participant_ids, days) -> list[AttendanceRecord]:
        pids, wanted = set(participant_ids), set(days)
        return [
            copy.deepcopy(r) for r in self.rows.values()
            if r.participant_id in pids and r.attendance_date in wanted
        ]


def fake_atomic(*stores):
    @contextlib.contextmanager
    def _scope(name: str = "item"):
        snapshots = [copy.deepcopy(store.rows) for store in stores]
        try:
            yield
        except BaseException:
            for store, snapshot in zip(stores, snapshots):
                store.rows = snapshot
            raise

    return _scope


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def identities() -> FakeIdentityStore:
    return FakeIdentityStore()


@pytest.fixture
def attendance_store() -> FakeAttendanceStore:
    return FakeAttendanceStore()


@pytest.fixture
def atomic(identities, attendance_store):
    return fake_atomic(identities, attendance_store)


@pytest.fixture
def hasher() -> WerkzeugHasher:
    # Low iteration count keeps the suite fast; the method string format is
    # the same one config/program.yml uses.
    return WerkzeugHasher("pbkdf2:sha256:1000")


@pytest.fixture
def add_participant(identities):
    def _add(email: str, name: str = "Test Participant", mobile: str = "9876543210") -> Identity:
        return identities.create(Identity(
            email=email,
            name=name,
            mobile=mobile,
            institution_name="Test College",
            role=Role.PARTICIPANT,
            participant_type=ParticipantType.BOOTCAMP,
            password_hash="stored-hash",
        ))

    return _add


@pytest.fixture
def add_mentor(identities):
    def _add(email: str, name: str = "Test Mentor", role: Role = Role.MENTOR) -> Identity:
        return identities.create(Identity(
            email=email,
            name=name,
            mobile="9123456780",
            institution_name="Not Specified",
            role=role,
            password_hash="stored-hash",
        ))

    return _add
