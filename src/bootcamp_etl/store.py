"""bootcamp_etl.store

Storage collaborator.  The ledgers and importers only ever talk to the
IdentityStore / AttendanceStore protocols; PgIdentityStore and
PgAttendanceStore implement them over one shared psycopg connection.

Transaction model: the caller owns the connection's transaction (commit or
rollback at the end of a run).  ``atomic()`` opens a SAVEPOINT so one batch
item's writes, e.g. both sides of an assignment, land together or not at all.

Tables (see migrations/):
  identity            one row per account, unique normalized email,
                      participant side of the assignment (assigned_mentor_id)
  mentor_participant  mentor side of the assignment, one row per member
  attendance          unique (participant_id, attendance_date)
"""

from __future__ import annotations

import contextlib
import itertools
import uuid
from datetime import date
from typing import ContextManager, Iterator, Protocol

import psycopg

from bootcamp_etl.attendance import AttendanceRecord
from bootcamp_etl.identity import AttendanceStatus, Identity, ParticipantType, Role
from bootcamp_etl.shared import DuplicateKeyError, StorageUnavailableError, StoreError


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class IdentityStore(Protocol):
    def find_by_email(self, email: str) -> Identity | None: ...

    def find_by_id(self, identity_id: str) -> Identity | None: ...

    def create(self, identity: Identity) -> Identity: ...

    def save(self, identity: Identity) -> None: ...

    def list_by_role(self, role: Role) -> list[Identity]: ...

    def mentors_holding(self, participant_id: str) -> list[Identity]: ...

    def atomic(self, name: str = "item") -> ContextManager[None]: ...


class AttendanceStore(Protocol):
    def find(self, participant_id: str, day: date) -> AttendanceRecord | None: ...

    def create(self, record: AttendanceRecord) -> AttendanceRecord: ...

    def save(self, record: AttendanceRecord) -> None: ...

    def delete(self, record_id: str) -> None: ...

    def list_for(
        self, participant_ids: list[str], days: list[date],
    ) -> list[AttendanceRecord]: ...


# ---------------------------------------------------------------------------
# Connection plumbing
# ---------------------------------------------------------------------------

class _PgBase:
    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn
        self._sp_counter = itertools.count()

    @contextlib.contextmanager
    def _translated(self) -> Iterator[None]:
        try:
            yield
        except psycopg.errors.UniqueViolation as exc:
            raise DuplicateKeyError(str(exc).strip()) from exc
        except psycopg.OperationalError as exc:
            if self.conn.closed or self.conn.broken:
                raise StorageUnavailableError(str(exc).strip()) from exc
            raise StoreError(str(exc).strip()) from exc
        except psycopg.Error as exc:
            raise StoreError(str(exc).strip()) from exc

    def _execute(self, sql: str, params: tuple | None = None) -> psycopg.Cursor:
        if self.conn.closed or self.conn.broken:
            raise StorageUnavailableError("database connection is closed")
        with self._translated():
            return self.conn.execute(sql, params)

    @contextlib.contextmanager
    def atomic(self, name: str = "item") -> Iterator[None]:
        """Run the block under a SAVEPOINT; roll it back if the block raises."""
        sp = f"sp_{next(self._sp_counter)}"
        self._execute(f"SAVEPOINT {sp}")
        try:
            yield
        except BaseException:
            try:
                self._execute(f"ROLLBACK TO SAVEPOINT {sp}")
                self._execute(f"RELEASE SAVEPOINT {sp}")
            except StoreError as exc:
                raise StorageUnavailableError(
                    f"could not roll back {name!r}: {exc}"
                ) from exc
            raise
        self._execute(f"RELEASE SAVEPOINT {sp}")


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# Identity store
# ---------------------------------------------------------------------------

_IDENTITY_COLS = (
    "id", "email", "name", "mobile", "institution_name", "role",
    "participant_type", "is_active", "password_hash", "description",
    "skills", "registered_at", "assigned_mentor_id",
)
_IDENTITY_SELECT = "SELECT " + ", ".join(_IDENTITY_COLS) + " FROM identity"


class PgIdentityStore(_PgBase):
    """Identities plus both sides of the mentor assignment."""

    def _row_to_identity(self, row: tuple) -> Identity:
        data = dict(zip(_IDENTITY_COLS, row))
        identity = Identity(
            id=str(data["id"]),
            email=data["email"],
            name=data["name"],
            mobile=data["mobile"],
            institution_name=data["institution_name"],
            role=Role(data["role"]),
            participant_type=(
                ParticipantType(data["participant_type"]) if data["participant_type"] else None
            ),
            is_active=data["is_active"],
            password_hash=data["password_hash"],
            description=data["description"] or "",
            skills=list(data["skills"] or []),
            registered_at=data["registered_at"],
            assigned_mentor_id=_str_or_none(data["assigned_mentor_id"]),
        )
        if identity.is_mentor:
            identity.assigned_participant_ids = self._stored_mentor_set(identity.id)
        return identity

    def _stored_mentor_set(self, mentor_id: str) -> set[str]:
        rows = self._execute(
            "SELECT participant_id FROM mentor_participant WHERE mentor_id = %s",
            (mentor_id,),
        ).fetchall()
        return {str(r[0]) for r in rows}

    def find_by_email(self, email: str) -> Identity | None:
        row = self._execute(f"{_IDENTITY_SELECT} WHERE email = %s", (email,)).fetchone()
        return self._row_to_identity(row) if row else None

    def find_by_id(self, identity_id: str) -> Identity | None:
        if not _is_uuid(identity_id):
            return None
        row = self._execute(f"{_IDENTITY_SELECT} WHERE id = %s", (identity_id,)).fetchone()
        return self._row_to_identity(row) if row else None

    def create(self, identity: Identity) -> Identity:
        """INSERT a new identity.  Raises DuplicateKeyError if the email exists.

        ON CONFLICT keeps the surrounding transaction usable after a collision.
        """
        row = self._execute(
            """
            INSERT INTO identity
              (email, name, mobile, institution_name, role, participant_type,
               is_active, password_hash, description, skills)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (email) DO NOTHING
            RETURNING id, registered_at
            """,
            (
                identity.email, identity.name, identity.mobile,
                identity.institution_name, identity.role.value,
                identity.participant_type.value if identity.participant_type else None,
                identity.is_active, identity.password_hash,
                identity.description, list(identity.skills),
            ),
        ).fetchone()
        if row is None:
            raise DuplicateKeyError(f"identity with email {identity.email!r} already exists")
        identity.id = str(row[0])
        identity.registered_at = row[1]
        if identity.is_mentor and identity.assigned_participant_ids:
            self._sync_mentor_set(identity)
        return identity

    def save(self, identity: Identity) -> None:
        """UPDATE an existing identity; for mentors also sync mentor_participant."""
        if identity.id is None:
            raise StoreError(f"cannot save unsaved identity {identity.email!r}")
        cur = self._execute(
            """
            UPDATE identity
            SET email = %s, name = %s, mobile = %s, institution_name = %s,
                role = %s, participant_type = %s, is_active = %s,
                password_hash = %s, description = %s, skills = %s,
                assigned_mentor_id = %s, updated_at = now()
            WHERE id = %s
            """,
            (
                identity.email, identity.name, identity.mobile,
                identity.institution_name, identity.role.value,
                identity.participant_type.value if identity.participant_type else None,
                identity.is_active, identity.password_hash, identity.description,
                list(identity.skills), identity.assigned_mentor_id, identity.id,
            ),
        )
        if cur.rowcount == 0:
            raise StoreError(f"identity {identity.id} no longer exists")
        if identity.is_mentor:
            self._sync_mentor_set(identity)

    def _sync_mentor_set(self, mentor: Identity) -> None:
        stored = self._stored_mentor_set(mentor.id)
        for pid in sorted(stored - mentor.assigned_participant_ids):
            self._execute(
                "DELETE FROM mentor_participant WHERE mentor_id = %s AND participant_id = %s",
                (mentor.id, pid),
            )
        for pid in sorted(mentor.assigned_participant_ids - stored):
            self._execute(
                """
                INSERT INTO mentor_participant (mentor_id, participant_id)
                VALUES (%s, %s)
                ON CONFLICT (mentor_id, participant_id) DO NOTHING
                """,
                (mentor.id, pid),
            )

    def list_by_role(self, role: Role) -> list[Identity]:
        rows = self._execute(
            f"{_IDENTITY_SELECT} WHERE role = %s ORDER BY email", (role.value,)
        ).fetchall()
        return [self._row_to_identity(r) for r in rows]

    def mentors_holding(self, participant_id: str) -> list[Identity]:
        if not _is_uuid(participant_id):
            return []
        rows = self._execute(
            f"""
            {_IDENTITY_SELECT}
            WHERE id IN (
                SELECT mentor_id FROM mentor_participant WHERE participant_id = %s
            )
            ORDER BY email
            """,
            (participant_id,),
        ).fetchall()
        return [self._row_to_identity(r) for r in rows]


# ---------------------------------------------------------------------------
# Attendance store
# ---------------------------------------------------------------------------

_ATTENDANCE_COLS = (
    "id", "participant_id", "attendance_date", "status",
    "marked_by", "marked_at", "remarks",
)
_ATTENDANCE_SELECT = "SELECT " + ", ".join(_ATTENDANCE_COLS) + " FROM attendance"


class PgAttendanceStore(_PgBase):
    @staticmethod
    def _row_to_record(row: tuple) -> AttendanceRecord:
        data = dict(zip(_ATTENDANCE_COLS, row))
        return AttendanceRecord(
            id=str(data["id"]),
            participant_id=str(data["participant_id"]),
            attendance_date=data["attendance_date"],
            status=AttendanceStatus(data["status"]),
            marked_by=_str_or_none(data["marked_by"]),
            marked_at=data["marked_at"],
            remarks=data["remarks"],
        )

    def find(self, participant_id: str, day: date) -> AttendanceRecord | None:
        if not _is_uuid(participant_id):
            return None
        row = self._execute(
            f"{_ATTENDANCE_SELECT} WHERE participant_id = %s AND attendance_date = %s",
            (participant_id, day),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def create(self, record: AttendanceRecord) -> AttendanceRecord:
        row = self._execute(
            """
            INSERT INTO attendance
              (participant_id, attendance_date, status, marked_by, remarks)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (participant_id, attendance_date) DO NOTHING
            RETURNING id, marked_at
            """,
            (
                record.participant_id, record.attendance_date,
                record.status.value, record.marked_by, record.remarks,
            ),
        ).fetchone()
        if row is None:
            raise DuplicateKeyError(
                f"attendance for {record.participant_id} on "
                f"{record.attendance_date.isoformat()} already exists"
            )
        record.id = str(row[0])
        record.marked_at = row[1]
        return record

    def save(self, record: AttendanceRecord) -> None:
        cur = self._execute(
            """
            UPDATE attendance
            SET status = %s, marked_by = %s, remarks = %s, marked_at = now()
            WHERE id = %s
            """,
            (record.status.value, record.marked_by, record.remarks, record.id),
        )
        if cur.rowcount == 0:
            raise StoreError(f"attendance record {record.id} no longer exists")

    def delete(self, record_id: str) -> None:
        self._execute("DELETE FROM attendance WHERE id = %s", (record_id,))

    def list_for(
        self, participant_ids: list[str], days: list[date],
    ) -> list[AttendanceRecord]:
        pids = [pid for pid in participant_ids if _is_uuid(pid)]
        if not pids or not days:
            return []
        rows = self._execute(
            f"""
            {_ATTENDANCE_SELECT}
            WHERE participant_id = ANY(%s::uuid[]) AND attendance_date = ANY(%s::date[])
            ORDER BY participant_id, attendance_date
            """,
            (pids, list(days)),
        ).fetchall()
        return [self._row_to_record(r) for r in rows]
