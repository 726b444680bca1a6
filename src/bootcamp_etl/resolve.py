"""Identity resolver: decide whether a validated record creates a new identity.

The normalized email is the only identity key.  An existing identity is never
modified by an import; its row is reported as a benign duplicate.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Union

from bootcamp_etl.records import MentorRecord, ParticipantRecord

if TYPE_CHECKING:
    from bootcamp_etl.store import IdentityStore


class Resolution(str, enum.Enum):
    CREATE = "create"
    SKIP_DUPLICATE = "skip_duplicate"


DUPLICATE_REASON = "duplicate: identity with this email already exists"


def resolve_identity(
    store: "IdentityStore",
    record: Union[ParticipantRecord, MentorRecord],
) -> Resolution:
    """Storage errors from the lookup propagate to the batch executor."""
    if store.find_by_email(record.email) is not None:
        return Resolution.SKIP_DUPLICATE
    return Resolution.CREATE
