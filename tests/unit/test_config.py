"""Unit tests for bootcamp_etl.config."""

from __future__ import annotations

import textwrap
from datetime import date
from pathlib import Path

import pytest

from bootcamp_etl.config import (
    ConfigValidationError,
    ProgramConfig,
    load_program_config,
    parse_program_config,
)

PROJECT_ROOT = Path(__file__).parent.parent.parent


# ---------------------------------------------------------------------------
# load_program_config
# ---------------------------------------------------------------------------

class TestLoadProgramConfig:
    def test_shipped_config_matches_defaults(self):
        cfg = load_program_config(PROJECT_ROOT / "config" / "program.yml")
        assert cfg == ProgramConfig()

    def test_missing_file_gives_defaults(self, tmp_path: Path):
        assert load_program_config(tmp_path / "nope.yml") == ProgramConfig()

    def test_none_gives_defaults(self):
        assert load_program_config(None) == ProgramConfig()

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        path = tmp_path / "program.yml"
        path.write_text("", encoding="utf-8")
        assert load_program_config(path) == ProgramConfig()

    def test_overrides(self, tmp_path: Path):
        path = tmp_path / "program.yml"
        path.write_text(textwrap.dedent("""\
            program_start_date: 2026-01-05
            program_day_count: 5
            mobile_length: 8
        """), encoding="utf-8")
        cfg = load_program_config(path)
        assert cfg.program_start_date == date(2026, 1, 5)
        assert cfg.program_day_count == 5
        assert cfg.mobile_length == 8
        assert cfg.password_hash_method == "pbkdf2:sha256:600000"

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "program.yml"
        path.write_text("program_day_count: [1, 2\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError, match="invalid YAML"):
            load_program_config(path)


# ---------------------------------------------------------------------------
# parse_program_config
# ---------------------------------------------------------------------------

class TestParseProgramConfig:
    def test_string_date(self):
        cfg = parse_program_config({"program_start_date": "2025-08-04"})
        assert cfg.program_start_date == date(2025, 8, 4)

    def test_bad_date(self):
        with pytest.raises(ConfigValidationError, match="program_start_date"):
            parse_program_config({"program_start_date": "4th August"})

    @pytest.mark.parametrize("value", [0, -3, "12", True, 1.5])
    def test_day_count_must_be_positive_int(self, value):
        with pytest.raises(ConfigValidationError, match="program_day_count"):
            parse_program_config({"program_day_count": value})

    def test_blank_hash_method(self):
        with pytest.raises(ConfigValidationError, match="password_hash_method"):
            parse_program_config({"password_hash_method": "  "})

    def test_unknown_key(self):
        with pytest.raises(ConfigValidationError, match="unknown config keys"):
            parse_program_config({"program_days": 12})

    def test_not_a_mapping(self):
        with pytest.raises(ConfigValidationError, match="mapping"):
            parse_program_config(["program_day_count", 12])


# ---------------------------------------------------------------------------
# ProgramConfig.calendar
# ---------------------------------------------------------------------------

class TestCalendar:
    def test_default_window(self):
        calendar = ProgramConfig().calendar()
        days = calendar.days()
        assert len(days) == 12
        assert days[0] == date(2025, 8, 4)
        assert days[-1] == date(2025, 8, 15)
        assert calendar.end_date == date(2025, 8, 15)
