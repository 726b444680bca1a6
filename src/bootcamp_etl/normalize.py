"""Normalization functions for identity CSV ingestion.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re
from datetime import date, datetime

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MOBILE_SEPARATORS_RE = re.compile(r"[\s\-]")
_SKILL_SPLIT_RE = re.compile(r"[;|]")
_DATE_FORMAT = "%Y-%m-%d"


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_email  (the identity key)
# ---------------------------------------------------------------------------

def normalize_email(value: str | None) -> str | None:
    """Lowercase and trim an email address."""
    v = trim(value)
    if v is None:
        return None
    return v.lower()


def is_valid_email(value: str | None) -> bool:
    return bool(value) and _EMAIL_RE.match(value) is not None


# ---------------------------------------------------------------------------
# Rule 4: normalize_mobile
# ---------------------------------------------------------------------------

def normalize_mobile(value: str | None) -> str | None:
    """Drop spaces and hyphens from a mobile number.

    No other rewriting happens: the result is the default credential, so it
    has to stay the string the user will type at login.
    """
    v = trim(value)
    if v is None:
        return None
    v = _MOBILE_SEPARATORS_RE.sub("", v)
    return v if v else None


def is_valid_mobile(value: str | None, length: int) -> bool:
    """Exactly ``length`` ASCII digits; other Unicode digits cannot be typed at login."""
    return bool(value) and len(value) == length and value.isascii() and value.isdigit()


# ---------------------------------------------------------------------------
# Rule 5: split_skills
# ---------------------------------------------------------------------------

def split_skills(value: str | None) -> list[str]:
    """Split a ';' or '|' separated skill list, dropping empties and repeats.

    Order of first appearance is kept; repeats are matched case-insensitively.
    """
    v = trim(value)
    if v is None:
        return []
    seen: set[str] = set()
    skills: list[str] = []
    for token in _SKILL_SPLIT_RE.split(v):
        skill = normalize_space(token)
        if not skill or skill.lower() in seen:
            continue
        seen.add(skill.lower())
        skills.append(skill)
    return skills


# ---------------------------------------------------------------------------
# Rule 6: parse_day
# ---------------------------------------------------------------------------

def parse_day(value: str | date | None) -> date | None:
    """Parse '%Y-%m-%d' into a date; datetimes are truncated to their day."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    v = trim(value)
    if v is None:
        return None
    try:
        return datetime.strptime(v, _DATE_FORMAT).date()
    except ValueError:
        return None
