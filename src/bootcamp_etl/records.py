"""bootcamp_etl.records

Record validator: turns one raw CSV row into a typed candidate record or a
Rejection carrying a reason.  Nothing in here raises for a bad row.

Row contracts (fixed field order, header line is informational only):

    participant   email, name, collegeName, mobile               (>= 4 fields)
    participant   email (rest ignored, assign_single_mentor)     (>= 1 field)
    mentor        name, mobile, email, description, skills       (>= 5 fields)
    assignment    participantEmail, mentorEmail                  (>= 2 fields)
    attendance    participantEmail[, status]                     (>= 1 field)
"""

from __future__ import annotations

import csv
import dataclasses
import functools
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, TypeVar, Union

from bootcamp_etl.config import DEFAULT_MENTOR_INSTITUTION, DEFAULT_MOBILE_LENGTH
from bootcamp_etl.identity import AttendanceStatus, ParticipantType
from bootcamp_etl.normalize import (
    is_valid_email,
    is_valid_mobile,
    normalize_email,
    normalize_mobile,
    normalize_space,
    split_skills,
    trim,
)
from bootcamp_etl.shared import InputReadError


# ---------------------------------------------------------------------------
# Row contracts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RowContract:
    kind: str
    fields: tuple[str, ...]
    min_fields: int


PARTICIPANT_CONTRACT = RowContract(
    "participant", ("email", "name", "collegeName", "mobile"), 4,
)
PARTICIPANT_EMAIL_CONTRACT = RowContract("participant", ("email",), 1)
MENTOR_CONTRACT = RowContract(
    "mentor", ("name", "mobile", "email", "description", "skills"), 5,
)
ASSIGNMENT_CONTRACT = RowContract(
    "assignment", ("participantEmail", "mentorEmail"), 2,
)
ATTENDANCE_CONTRACT = RowContract(
    "attendance", ("participantEmail", "status"), 1,
)


# ---------------------------------------------------------------------------
# Tagged records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawRow:
    line_number: int
    fields: list[str]

    def as_dict(self, contract: RowContract) -> dict[str, str]:
        """Map fields onto the contract names, for reject-file output."""
        out = {"line": str(self.line_number)}
        for idx, name in enumerate(contract.fields):
            out[name] = self.fields[idx] if idx < len(self.fields) else ""
        return out


@dataclass(frozen=True)
class ParticipantRecord:
    line_number: int
    email: str
    name: str
    institution_name: str
    mobile: str
    participant_type: ParticipantType = ParticipantType.BOOTCAMP
    source: RawRow | None = field(default=None, compare=False, repr=False)

    @property
    def identifier(self) -> str:
        return self.email


@dataclass(frozen=True)
class ParticipantRef:
    """A participant row read for its email only."""

    line_number: int
    email: str
    source: RawRow | None = field(default=None, compare=False, repr=False)

    @property
    def identifier(self) -> str:
        return self.email


@dataclass(frozen=True)
class MentorRecord:
    line_number: int
    name: str
    mobile: str
    email: str
    description: str
    institution_name: str
    skills: tuple[str, ...] = field(default_factory=tuple)
    source: RawRow | None = field(default=None, compare=False, repr=False)

    @property
    def identifier(self) -> str:
        return self.email


@dataclass(frozen=True)
class AssignmentDirective:
    line_number: int
    participant_email: str
    mentor_email: str
    source: RawRow | None = field(default=None, compare=False, repr=False)

    @property
    def identifier(self) -> str:
        return f"{self.participant_email} -> {self.mentor_email}"


@dataclass(frozen=True)
class AttendanceDirective:
    line_number: int
    participant_email: str
    status: AttendanceStatus | None
    source: RawRow | None = field(default=None, compare=False, repr=False)

    @property
    def identifier(self) -> str:
        return self.participant_email


@dataclass(frozen=True)
class Rejection:
    line_number: int
    identifier: str
    reason: str
    source: RawRow | None = field(default=None, compare=False, repr=False)


CandidateRecord = Union[ParticipantRecord, MentorRecord]
ValidationResult = Union[
    ParticipantRecord, ParticipantRef, MentorRecord, AssignmentDirective, AttendanceDirective,
    Rejection,
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _field(fields: list[str], idx: int) -> str | None:
    return fields[idx] if idx < len(fields) else None


def _identifier(row: RawRow, email_idx: int) -> str:
    return trim(_field(row.fields, email_idx)) or f"line {row.line_number}"


def _check_shape(row: RawRow, contract: RowContract, email_idx: int) -> Rejection | None:
    if len(row.fields) < contract.min_fields:
        return Rejection(
            row.line_number,
            _identifier(row, email_idx),
            f"too_few_fields: expected >={contract.min_fields}, got {len(row.fields)}",
        )
    return None


def _check_email(row: RawRow, raw: str | None, email_idx: int) -> str | Rejection:
    email = normalize_email(raw)
    if not is_valid_email(email):
        return Rejection(row.line_number, _identifier(row, email_idx), f"invalid_email: {raw!r}")
    return email  # type: ignore[return-value]


def _check_mobile(
    row: RawRow, raw: str | None, email: str, mobile_length: int,
) -> str | Rejection:
    mobile = normalize_mobile(raw)
    if not is_valid_mobile(mobile, mobile_length):
        return Rejection(row.line_number, email, f"invalid_mobile: {raw!r}")
    return mobile  # type: ignore[return-value]


V = TypeVar("V", bound=Callable[..., ValidationResult])


def _with_source(validator: V) -> V:
    """Attach the raw row to whatever the validator returns."""

    @functools.wraps(validator)
    def wrapper(row: RawRow, *args, **kwargs):
        return dataclasses.replace(validator(row, *args, **kwargs), source=row)

    return wrapper  # type: ignore[return-value]


def source_row(result: ValidationResult, contract: RowContract) -> dict[str, str]:
    """The original row of a validated result, shaped for the reject file."""
    if result.source is not None:
        return result.source.as_dict(contract)
    return {"line": str(result.line_number)}


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------

@_with_source
def validate_participant_row(
    row: RawRow,
    mobile_length: int = DEFAULT_MOBILE_LENGTH,
    participant_type: ParticipantType = ParticipantType.BOOTCAMP,
) -> ParticipantRecord | Rejection:
    rejected = _check_shape(row, PARTICIPANT_CONTRACT, 0)
    if rejected:
        return rejected
    f = row.fields

    email = _check_email(row, f[0], 0)
    if isinstance(email, Rejection):
        return email
    name = normalize_space(f[1])
    if not name:
        return Rejection(row.line_number, email, "missing_name")
    college = normalize_space(f[2])
    if not college:
        return Rejection(row.line_number, email, "missing_college_name")
    mobile = _check_mobile(row, f[3], email, mobile_length)
    if isinstance(mobile, Rejection):
        return mobile

    return ParticipantRecord(
        line_number=row.line_number,
        email=email,
        name=name,
        institution_name=college,
        mobile=mobile,
        participant_type=participant_type,
    )


@_with_source
def validate_participant_email_row(row: RawRow) -> ParticipantRef | Rejection:
    """Only the email column of a participant row; the rest is not checked."""
    rejected = _check_shape(row, PARTICIPANT_EMAIL_CONTRACT, 0)
    if rejected:
        return rejected
    email = _check_email(row, row.fields[0], 0)
    if isinstance(email, Rejection):
        return email
    return ParticipantRef(row.line_number, email)


@_with_source
def validate_mentor_row(
    row: RawRow,
    mobile_length: int = DEFAULT_MOBILE_LENGTH,
    default_institution: str = DEFAULT_MENTOR_INSTITUTION,
) -> MentorRecord | Rejection:
    rejected = _check_shape(row, MENTOR_CONTRACT, 2)
    if rejected:
        return rejected
    f = row.fields

    email = _check_email(row, f[2], 2)
    if isinstance(email, Rejection):
        return email
    name = normalize_space(f[0])
    if not name:
        return Rejection(row.line_number, email, "missing_name")
    mobile = _check_mobile(row, f[1], email, mobile_length)
    if isinstance(mobile, Rejection):
        return mobile

    return MentorRecord(
        line_number=row.line_number,
        name=name,
        mobile=mobile,
        email=email,
        description=normalize_space(f[3]) or "",
        institution_name=default_institution,
        skills=tuple(split_skills(f[4])),
    )


@_with_source
def validate_assignment_row(row: RawRow) -> AssignmentDirective | Rejection:
    rejected = _check_shape(row, ASSIGNMENT_CONTRACT, 0)
    if rejected:
        return rejected
    participant_email = _check_email(row, row.fields[0], 0)
    if isinstance(participant_email, Rejection):
        return participant_email
    mentor_email = normalize_email(row.fields[1])
    if not is_valid_email(mentor_email):
        return Rejection(
            row.line_number, participant_email, f"invalid_email: {row.fields[1]!r}",
        )
    return AssignmentDirective(row.line_number, participant_email, mentor_email)  # type: ignore[arg-type]


@_with_source
def validate_attendance_row(
    row: RawRow, require_status: bool = True, read_status: bool = True,
) -> AttendanceDirective | Rejection:
    """Email plus optional status.

    With ``read_status`` off (removal rows) the status column is not looked
    at, so whatever it holds cannot reject the row.
    """
    rejected = _check_shape(row, ATTENDANCE_CONTRACT, 0)
    if rejected:
        return rejected
    email = _check_email(row, row.fields[0], 0)
    if isinstance(email, Rejection):
        return email
    if not read_status:
        return AttendanceDirective(row.line_number, email, None)

    raw_status = trim(_field(row.fields, 1))
    if raw_status is None:
        if require_status:
            return Rejection(row.line_number, email, "missing_status")
        return AttendanceDirective(row.line_number, email, None)
    try:
        status = AttendanceStatus(raw_status.lower())
    except ValueError:
        return Rejection(row.line_number, email, f"invalid_status: {raw_status!r}")
    return AttendanceDirective(row.line_number, email, status)


# ---------------------------------------------------------------------------
# CSV reading
# ---------------------------------------------------------------------------

def iter_csv_rows(path: Path) -> Iterator[RawRow]:
    """Yield data rows of a delimited file, skipping the header and blank lines.

    Rows are streamed one at a time; line numbers are 1-based and count the
    header, so they match what an operator sees in a spreadsheet.

    Raises:
        InputReadError: The file is not valid UTF-8 or not parseable CSV.
    """
    with path.open(newline="", encoding="utf-8-sig") as fh:
        reader = csv.reader(fh)
        try:
            next(reader, None)
            for fields in reader:
                if not any(value.strip() for value in fields):
                    continue
                yield RawRow(reader.line_num, [value.strip() for value in fields])
        except (UnicodeDecodeError, csv.Error) as exc:
            raise InputReadError(
                f"{path.name}: unreadable after line {reader.line_num}: {exc}"
            ) from exc
