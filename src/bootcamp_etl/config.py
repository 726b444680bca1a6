"""bootcamp_etl.config

YAML program configuration.

Responsibilities:
  - Load and validate config/program.yml
  - Expose the program day window, the mobile-number length used by the
    record validator, and the password-hash work factor

Usage:
    from pathlib import Path
    from bootcamp_etl.config import load_program_config

    cfg = load_program_config(Path("config/program.yml"))
    cfg.calendar().days()
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

import yaml

from bootcamp_etl.normalize import parse_day

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_PROGRAM_START = date(2025, 8, 4)
DEFAULT_PROGRAM_DAY_COUNT = 12
DEFAULT_MOBILE_LENGTH = 10
DEFAULT_PASSWORD_HASH_METHOD = "pbkdf2:sha256:600000"
DEFAULT_MENTOR_INSTITUTION = "Not Specified"

KNOWN_KEYS = frozenset({
    "program_start_date",
    "program_day_count",
    "mobile_length",
    "password_hash_method",
    "mentor_default_institution",
})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when a program config file fails validation."""


# ---------------------------------------------------------------------------
# ProgramConfig dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProgramConfig:
    program_start_date: date = DEFAULT_PROGRAM_START
    program_day_count: int = DEFAULT_PROGRAM_DAY_COUNT
    mobile_length: int = DEFAULT_MOBILE_LENGTH
    password_hash_method: str = DEFAULT_PASSWORD_HASH_METHOD
    mentor_default_institution: str = DEFAULT_MENTOR_INSTITUTION

    def calendar(self):
        from bootcamp_etl.attendance import ProgramCalendar
        return ProgramCalendar(self.program_start_date, self.program_day_count)


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_program_config(yaml_path: Path | None) -> ProgramConfig:
    """Load, validate, and return a ProgramConfig from a YAML file.

    A missing path (None or nonexistent file) yields the defaults.

    Raises:
        ConfigValidationError: If the file content is not a valid config.
    """
    if yaml_path is None or not yaml_path.exists():
        return ProgramConfig()
    raw = yaml_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"{yaml_path}: invalid YAML: {exc}") from exc
    return parse_program_config(data or {})


def parse_program_config(data: Any) -> ProgramConfig:
    if not isinstance(data, dict):
        raise ConfigValidationError("program config must be a mapping")
    unknown = set(data) - KNOWN_KEYS
    if unknown:
        raise ConfigValidationError(f"unknown config keys: {sorted(unknown)}")

    kwargs: dict[str, Any] = {}

    if "program_start_date" in data:
        start = parse_day(data["program_start_date"])
        if start is None:
            raise ConfigValidationError(
                f"program_start_date must be YYYY-MM-DD, got {data['program_start_date']!r}"
            )
        kwargs["program_start_date"] = start

    for key in ("program_day_count", "mobile_length"):
        if key in data:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigValidationError(f"{key} must be a positive integer, got {value!r}")
            kwargs[key] = value

    for key in ("password_hash_method", "mentor_default_institution"):
        if key in data:
            value = data[key]
            if not isinstance(value, str) or not value.strip():
                raise ConfigValidationError(f"{key} must be a non-empty string")
            kwargs[key] = value.strip()

    return ProgramConfig(**kwargs)
