"""bootcamp_etl.identity

The one identity model shared by every import, ledger and CLI mode, plus
the closed enumerations the row contracts validate against.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class Role(str, enum.Enum):
    PARTICIPANT = "participant"
    MENTOR = "mentor"
    ADMIN = "admin"


class ParticipantType(str, enum.Enum):
    BOOTCAMP = "bootcamp"
    HACKATHON = "hackathon"


class AttendanceStatus(str, enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"


@dataclass
class Identity:
    """A participant, mentor or admin account keyed by normalized email.

    ``password_hash`` is excluded from ``repr`` and from ``to_dict``; it only
    ever travels between the credential provisioner and the store.
    """

    email: str
    name: str
    mobile: str
    institution_name: str
    role: Role
    password_hash: str = field(repr=False, default="")
    id: str | None = None
    participant_type: ParticipantType | None = None
    is_active: bool = True
    description: str = ""
    skills: list[str] = field(default_factory=list)
    registered_at: datetime | None = None
    assigned_mentor_id: str | None = None
    assigned_participant_ids: set[str] = field(default_factory=set)

    @property
    def is_participant(self) -> bool:
        return self.role is Role.PARTICIPANT

    @property
    def is_mentor(self) -> bool:
        return self.role is Role.MENTOR

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "mobile": self.mobile,
            "institution_name": self.institution_name,
            "role": self.role.value,
            "participant_type": self.participant_type.value if self.participant_type else None,
            "is_active": self.is_active,
            "description": self.description,
            "skills": list(self.skills),
            "registered_at": self.registered_at,
            "assigned_mentor_id": self.assigned_mentor_id,
            "assigned_participant_ids": sorted(self.assigned_participant_ids),
        }
