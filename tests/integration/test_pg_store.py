"""Integration tests for the PostgreSQL identity and attendance stores.

These tests run against an ephemeral PostgreSQL database with the full
schema applied via the db_conn fixture in conftest.py.
"""

from __future__ import annotations

from datetime import date

import pytest

from bootcamp_etl.attendance import AttendanceRecord
from bootcamp_etl.identity import AttendanceStatus, Identity, ParticipantType, Role
from bootcamp_etl.shared import DuplicateKeyError, StorageUnavailableError, StoreError
from bootcamp_etl.store import PgAttendanceStore, PgIdentityStore

DAY = date(2025, 8, 6)


def _identity(email: str, role: Role = Role.PARTICIPANT, **kwargs) -> Identity:
    return Identity(
        email=email,
        name=kwargs.pop("name", "Test Person"),
        mobile=kwargs.pop("mobile", "9876543210"),
        institution_name=kwargs.pop("institution_name", "Test College"),
        role=role,
        participant_type=ParticipantType.BOOTCAMP if role is Role.PARTICIPANT else None,
        password_hash="pbkdf2:sha256:1000$salt$hash",
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Identity store
# ---------------------------------------------------------------------------

class TestPgIdentityStore:
    def test_create_and_find(self, db_conn):
        conn, _ = db_conn
        store = PgIdentityStore(conn)
        created = store.create(_identity("asha@example.com", name="Asha Rao"))

        assert created.id is not None
        assert created.registered_at is not None
        by_email = store.find_by_email("asha@example.com")
        by_id = store.find_by_id(created.id)
        assert by_email.id == by_id.id == created.id
        assert by_email.name == "Asha Rao"
        assert by_email.participant_type is ParticipantType.BOOTCAMP
        assert by_email.password_hash == "pbkdf2:sha256:1000$salt$hash"

    def test_duplicate_email_keeps_transaction_usable(self, db_conn):
        conn, _ = db_conn
        store = PgIdentityStore(conn)
        store.create(_identity("dup@example.com"))
        with pytest.raises(DuplicateKeyError):
            store.create(_identity("dup@example.com", name="Other"))

        # Same transaction still accepts statements.
        store.create(_identity("next@example.com"))
        conn.commit()
        assert conn.execute("SELECT count(*) FROM identity").fetchone()[0] == 2

    def test_unnormalized_email_rejected_by_schema(self, db_conn):
        conn, _ = db_conn
        store = PgIdentityStore(conn)
        with pytest.raises(StoreError):
            with store.atomic():
                store.create(_identity("Mixed@Example.com"))

    def test_invalid_uuid_is_not_found(self, db_conn):
        conn, _ = db_conn
        store = PgIdentityStore(conn)
        assert store.find_by_id("not-a-uuid") is None
        assert store.mentors_holding("not-a-uuid") == []

    def test_mentor_skills_and_set_round_trip(self, db_conn):
        conn, _ = db_conn
        store = PgIdentityStore(conn)
        p1 = store.create(_identity("p1@example.com"))
        p2 = store.create(_identity("p2@example.com"))
        mentor = store.create(_identity(
            "m1@example.com", Role.MENTOR, skills=["Python", "SQL"], description="Backend",
        ))

        mentor.assigned_participant_ids = {p1.id, p2.id}
        store.save(mentor)
        loaded = store.find_by_id(mentor.id)
        assert loaded.skills == ["Python", "SQL"]
        assert loaded.assigned_participant_ids == {p1.id, p2.id}

        loaded.assigned_participant_ids.discard(p1.id)
        store.save(loaded)
        assert store.find_by_id(mentor.id).assigned_participant_ids == {p2.id}
        assert [m.email for m in store.mentors_holding(p2.id)] == ["m1@example.com"]
        assert store.mentors_holding(p1.id) == []

    def test_list_by_role_ordered_by_email(self, db_conn):
        conn, _ = db_conn
        store = PgIdentityStore(conn)
        store.create(_identity("b@example.com"))
        store.create(_identity("a@example.com"))
        store.create(_identity("m@example.com", Role.MENTOR))
        assert [p.email for p in store.list_by_role(Role.PARTICIPANT)] == [
            "a@example.com", "b@example.com",
        ]

    def test_save_missing_identity(self, db_conn):
        conn, _ = db_conn
        store = PgIdentityStore(conn)
        ghost = _identity("ghost@example.com", id="00000000-0000-0000-0000-000000000000")
        with pytest.raises(StoreError):
            store.save(ghost)


class TestAtomic:
    def test_rollback_on_error_keeps_earlier_work(self, db_conn):
        conn, _ = db_conn
        store = PgIdentityStore(conn)
        store.create(_identity("kept@example.com"))

        with pytest.raises(RuntimeError):
            with store.atomic("row"):
                store.create(_identity("dropped@example.com"))
                raise RuntimeError("boom")

        conn.commit()
        emails = [r[0] for r in conn.execute("SELECT email FROM identity ORDER BY email")]
        assert emails == ["kept@example.com"]

    def test_closed_connection_is_unavailable(self, db_conn):
        conn, _ = db_conn
        store = PgIdentityStore(conn)
        conn.close()
        with pytest.raises(StorageUnavailableError):
            store.find_by_email("a@example.com")


# ---------------------------------------------------------------------------
# Attendance store
# ---------------------------------------------------------------------------

class TestPgAttendanceStore:
    def _participant(self, conn) -> Identity:
        return PgIdentityStore(conn).create(_identity("p1@example.com"))

    def test_create_find_save_delete(self, db_conn):
        conn, _ = db_conn
        participant = self._participant(conn)
        store = PgAttendanceStore(conn)

        record = store.create(AttendanceRecord(
            participant_id=participant.id,
            attendance_date=DAY,
            status=AttendanceStatus.PRESENT,
        ))
        assert record.id is not None
        assert record.marked_at is not None

        record.status = AttendanceStatus.ABSENT
        record.remarks = "left early"
        store.save(record)
        found = store.find(participant.id, DAY)
        assert found.id == record.id
        assert found.status is AttendanceStatus.ABSENT
        assert found.remarks == "left early"

        store.delete(record.id)
        assert store.find(participant.id, DAY) is None

    def test_one_record_per_participant_per_day(self, db_conn):
        conn, _ = db_conn
        participant = self._participant(conn)
        store = PgAttendanceStore(conn)
        store.create(AttendanceRecord(participant.id, DAY, AttendanceStatus.PRESENT))
        with pytest.raises(DuplicateKeyError):
            store.create(AttendanceRecord(participant.id, DAY, AttendanceStatus.ABSENT))

    def test_list_for(self, db_conn):
        conn, _ = db_conn
        participant = self._participant(conn)
        store = PgAttendanceStore(conn)
        store.create(AttendanceRecord(participant.id, date(2025, 8, 4), AttendanceStatus.PRESENT))
        store.create(AttendanceRecord(participant.id, date(2025, 8, 5), AttendanceStatus.ABSENT))
        store.create(AttendanceRecord(participant.id, date(2025, 8, 9), AttendanceStatus.PRESENT))

        records = store.list_for(
            [participant.id, "not-a-uuid"], [date(2025, 8, 4), date(2025, 8, 5)],
        )
        assert [(r.attendance_date, r.status) for r in records] == [
            (date(2025, 8, 4), AttendanceStatus.PRESENT),
            (date(2025, 8, 5), AttendanceStatus.ABSENT),
        ]
        assert store.list_for([], [DAY]) == []
