"""bootcamp_etl.cli

Unified bootcamp data CLI.

Every mode runs on one psycopg connection with autocommit off.  Each batch
item gets its own SAVEPOINT; the whole run is committed at the end, or rolled
back on --dry-run, on a storage error, or when the batch was stopped.

Usage:
    bootcamp-etl --mode import_participants --db-dsn "$DSN" --csv-path users.csv
    bootcamp-etl --mode assign_single_mentor --db-dsn "$DSN" \\
        --csv-path users.csv --mentor-email mentor@example.com
    bootcamp-etl --mode mark_attendance --db-dsn "$DSN" \\
        --csv-path day3.csv --date 2025-08-06
    bootcamp-etl --mode show_attendance --db-dsn "$DSN"
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable

import click
import psycopg

from bootcamp_etl.assignment import (
    MentorNotFoundError,
    assign_all_to_mentor,
    assign_directives,
    list_unassigned,
    repair,
    unassign_directives,
)
from bootcamp_etl.attendance import day_matrix, mark_directives, remove_directives
from bootcamp_etl.batch import BatchReport, ItemFailure, Outcome, build_batch_report
from bootcamp_etl.config import ConfigValidationError, ProgramConfig, load_program_config
from bootcamp_etl.credentials import (
    CredentialError,
    WerkzeugHasher,
    set_password,
    verify_credentials,
)
from bootcamp_etl.identity import AttendanceStatus, Identity, ParticipantType, Role
from bootcamp_etl.importer import import_mentors, import_participants
from bootcamp_etl.normalize import normalize_email, parse_day
from bootcamp_etl.records import (
    ASSIGNMENT_CONTRACT,
    ATTENDANCE_CONTRACT,
    MENTOR_CONTRACT,
    PARTICIPANT_CONTRACT,
    RowContract,
    ValidationResult,
    iter_csv_rows,
    source_row,
    validate_assignment_row,
    validate_attendance_row,
    validate_participant_email_row,
)
from bootcamp_etl.shared import RejectWriter, write_run_report
from bootcamp_etl.store import PgAttendanceStore, PgIdentityStore

log = logging.getLogger(__name__)

CSV_MODES = {
    "import_participants",
    "import_mentors",
    "assign_mentors",
    "assign_single_mentor",
    "unassign_mentors",
    "mark_attendance",
    "remove_attendance",
}
ATTENDANCE_MODES = {"mark_attendance", "remove_attendance"}
CREDENTIAL_MODES = {"set_password", "verify_credentials"}


@click.command()
@click.option(
    "--mode",
    required=True,
    type=click.Choice([
        "import_participants", "import_mentors",
        "assign_mentors", "assign_single_mentor", "unassign_mentors",
        "repair_assignments", "list_unassigned",
        "mark_attendance", "remove_attendance", "show_attendance",
        "set_password", "verify_credentials",
    ]),
    help="Operation to run",
)
@click.option("--db-dsn", required=True, help="PostgreSQL DSN")
@click.option(
    "--config",
    "config_path",
    default="config/program.yml",
    show_default=True,
    type=click.Path(),
    help="Program config YAML; defaults apply when the file is absent",
)
@click.option("--csv-path", default=None, type=click.Path(), help="[import_*|assign_*|unassign_*|*_attendance] Input CSV")
@click.option(
    "--participant-type",
    default="bootcamp",
    type=click.Choice([t.value for t in ParticipantType]),
    show_default=True,
    help="[import_participants] Type given to every imported participant",
)
@click.option("--mentor-email", default=None, help="[assign_single_mentor] Mentor receiving every participant in the CSV")
@click.option("--date", "day_str", default=None, help="[*_attendance] Program day, YYYY-MM-DD")
@click.option(
    "--status",
    default=None,
    type=click.Choice([s.value for s in AttendanceStatus]),
    help="[mark_attendance] Status for rows that carry none",
)
@click.option("--marked-by-email", default=None, help="[*_attendance] Mentor or admin recorded as marking; mentors may only mark their own participants")
@click.option(
    "--allow-outside-window",
    is_flag=True,
    default=False,
    help="[*_attendance] Accept a --date outside the program day window",
)
@click.option("--email", default=None, help="[set_password|verify_credentials] Account email")
@click.option(
    "--password-env",
    default="BOOTCAMP_PASSWORD",
    show_default=True,
    help="[set_password|verify_credentials] Env var name holding the password",
)
# shared flags
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default=None,
    type=click.Path(),
    help="Reject CSV path (default ./artifacts/rejects/<mode>_rejects.csv)",
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    show_default=True,
)
def main(
    mode: str,
    db_dsn: str,
    config_path: str,
    csv_path: str | None,
    participant_type: str,
    mentor_email: str | None,
    day_str: str | None,
    status: str | None,
    marked_by_email: str | None,
    allow_outside_window: bool,
    email: str | None,
    password_env: str,
    dry_run: bool,
    rejects_path: str | None,
    run_id: str | None,
    log_level: str,
) -> None:
    """Unified bootcamp participant / mentor / attendance CLI."""
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    # -- pre-batch validation: nothing below touches the database -----------
    try:
        config = load_program_config(Path(config_path))
    except ConfigValidationError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)

    if mode in CSV_MODES:
        _validate_csv_path(csv_path, mode, run_id)
    if mode == "assign_single_mentor":
        _validate_required(mode, {"--mentor-email": mentor_email}, run_id)
    day = None
    if mode in ATTENDANCE_MODES:
        day = _validate_day(day_str, config, allow_outside_window, run_id)
    password = None
    if mode in CREDENTIAL_MODES:
        _validate_required(mode, {"--email": email}, run_id)
        password = os.environ.get(password_env, "")
        if not password:
            click.echo(f"[{run_id}] FATAL: env var {password_env} must be set", err=True)
            sys.exit(1)

    try:
        conn = psycopg.connect(db_dsn, autocommit=False)
    except psycopg.Error as exc:
        click.echo(f"[{run_id}] FATAL: cannot connect to database: {exc}", err=True)
        sys.exit(1)

    identities = PgIdentityStore(conn)
    attendance = PgAttendanceStore(conn)
    hasher = WerkzeugHasher(config.password_hash_method)
    rejects = RejectWriter(
        Path(rejects_path) if rejects_path else Path(f"./artifacts/rejects/{mode}_rejects.csv")
    )

    # -- single-account modes ------------------------------------------------
    if mode in CREDENTIAL_MODES:
        try:
            _run_credential_mode(mode, conn, identities, hasher, email, password, dry_run, run_id)
        finally:
            conn.close()
        return

    if mode == "list_unassigned":
        try:
            unassigned = list_unassigned(identities)
            conn.rollback()
        finally:
            conn.close()
        for participant in unassigned:
            click.echo(f"{participant.email}\t{participant.name}\t{participant.institution_name}")
        click.echo(f"[{run_id}] {len(unassigned)} unassigned participant(s).")
        return

    if mode == "show_attendance":
        calendar = config.calendar()
        days = calendar.days()
        try:
            participants = sorted(
                identities.list_by_role(Role.PARTICIPANT), key=lambda p: p.email,
            )
            matrix = day_matrix(attendance, [p.id for p in participants], days)
            conn.rollback()
        finally:
            conn.close()
        click.echo("\t".join(["email"] + [calendar.label(day) for day in days]))
        for participant in participants:
            marked = matrix.get(participant.id, {})
            cells = [marked[day].value if day in marked else "-" for day in days]
            click.echo("\t".join([participant.email] + cells))
        click.echo(f"[{run_id}] {len(participants)} participant(s) over {len(days)} day(s).")
        return

    # -- batch modes -----------------------------------------------------------
    path = Path(csv_path) if csv_path else None
    try:
        report = _run_batch_mode(
            mode, identities, attendance, hasher, config, rejects,
            path=path,
            participant_type=ParticipantType(participant_type),
            mentor_email=normalize_email(mentor_email),
            day=day,
            default_status=AttendanceStatus(status) if status else None,
            marked_by_email=normalize_email(marked_by_email),
            run_id=run_id,
        )
        failed_run = report.storage_errors > 0 or report.stopped
        if dry_run or failed_run:
            conn.rollback()
            if dry_run:
                click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
            else:
                click.echo(f"[{run_id}] Run failed; all changes rolled back.", err=True)
        else:
            conn.commit()
            click.echo(f"[{run_id}] Committed.")
    except MentorNotFoundError as exc:
        conn.rollback()
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
        rejects.close()

    click.echo(build_batch_report(report, f"{mode} report", dry_run=dry_run))
    if rejects.rows_written:
        click.echo(f"[{run_id}] {rejects.rows_written} rejected row(s) written to {rejects.path}")

    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {"csv_path": csv_path, "config_path": config_path, "date": day.isoformat() if day else None},
        report.to_dict(),
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    click.echo(json.dumps(report.to_dict(), indent=2, default=str))

    if report.stopped:
        click.echo(f"[{run_id}] Batch stopped: {report.fatal_error}", err=True)
        sys.exit(1)
    if report.storage_errors > 0:
        click.echo(
            f"[{run_id}] Run completed with {report.storage_errors} storage error(s), exiting non-zero",
            err=True,
        )
        sys.exit(1)
    click.echo(f"[{run_id}] Done.")


# ---------------------------------------------------------------------------
# Mode runners
# ---------------------------------------------------------------------------

def _reject_callback(
    rejects: RejectWriter, contract: RowContract,
) -> Callable[[ValidationResult, ItemFailure], None]:
    """Write FAILED rows to the reject CSV; skipped duplicates need no re-run."""

    def _write(result: ValidationResult, failure: ItemFailure) -> None:
        if failure.outcome is Outcome.FAILED:
            rejects.write(source_row(result, contract), failure.reason)

    return _write


def _run_batch_mode(
    mode: str,
    identities: PgIdentityStore,
    attendance: PgAttendanceStore,
    hasher: WerkzeugHasher,
    config: ProgramConfig,
    rejects: RejectWriter,
    path: Path | None,
    participant_type: ParticipantType,
    mentor_email: str | None,
    day: date | None,
    default_status: AttendanceStatus | None,
    marked_by_email: str | None,
    run_id: str,
) -> BatchReport:
    atomic = identities.atomic

    if mode == "import_participants":
        return import_participants(
            identities, hasher, iter_csv_rows(path),
            mobile_length=config.mobile_length,
            participant_type=participant_type,
            atomic=atomic,
            on_reject=_reject_callback(rejects, PARTICIPANT_CONTRACT),
        )
    if mode == "import_mentors":
        return import_mentors(
            identities, hasher, iter_csv_rows(path),
            mobile_length=config.mobile_length,
            default_institution=config.mentor_default_institution,
            atomic=atomic,
            on_reject=_reject_callback(rejects, MENTOR_CONTRACT),
        )
    if mode == "assign_mentors":
        return assign_directives(
            identities,
            (validate_assignment_row(row) for row in iter_csv_rows(path)),
            atomic=atomic,
            on_failure=_reject_callback(rejects, ASSIGNMENT_CONTRACT),
        )
    if mode == "unassign_mentors":
        return unassign_directives(
            identities,
            (validate_assignment_row(row) for row in iter_csv_rows(path)),
            atomic=atomic,
            on_failure=_reject_callback(rejects, ASSIGNMENT_CONTRACT),
        )
    if mode == "assign_single_mentor":
        click.echo(f"[{run_id}] Assigning every participant in {path.name} to {mentor_email}")
        return assign_all_to_mentor(
            identities,
            mentor_email,
            (validate_participant_email_row(row) for row in iter_csv_rows(path)),
            atomic=atomic,
            on_failure=_reject_callback(rejects, PARTICIPANT_CONTRACT),
        )
    if mode == "repair_assignments":
        return repair(identities, atomic=atomic)

    actor = _load_actor(identities, marked_by_email, run_id)
    calendar = config.calendar()
    click.echo(f"[{run_id}] Attendance for {day.isoformat()} ({calendar.label(day)})")
    if mode == "mark_attendance":
        return mark_directives(
            identities, attendance, day,
            (
                validate_attendance_row(row, require_status=default_status is None)
                for row in iter_csv_rows(path)
            ),
            default_status=default_status,
            actor=actor,
            atomic=atomic,
            on_failure=_reject_callback(rejects, ATTENDANCE_CONTRACT),
        )
    return remove_directives(
        identities, attendance, day,
        (validate_attendance_row(row, read_status=False) for row in iter_csv_rows(path)),
        actor=actor,
        atomic=atomic,
        on_failure=_reject_callback(rejects, ATTENDANCE_CONTRACT),
    )


def _run_credential_mode(
    mode: str,
    conn: psycopg.Connection,
    identities: PgIdentityStore,
    hasher: WerkzeugHasher,
    email: str,
    password: str,
    dry_run: bool,
    run_id: str,
) -> None:
    if mode == "verify_credentials":
        result = verify_credentials(identities, hasher, email, password)
        conn.rollback()
        click.echo(
            f"[{run_id}] {result.email}: {result.status.value} "
            f"(default credential active: {result.default_credential_active})"
        )
        if not result.ok:
            sys.exit(1)
        return

    try:
        updated = set_password(identities, hasher, email, password)
    except CredentialError as exc:
        conn.rollback()
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    if not updated:
        conn.rollback()
        click.echo(f"[{run_id}] FATAL: no account with email {email!r}", err=True)
        sys.exit(1)
    if dry_run:
        conn.rollback()
        click.echo(f"[{run_id}] [dry-run] Password change rolled back.")
    else:
        conn.commit()
        click.echo(f"[{run_id}] Password updated for {normalize_email(email)}.")


def _load_actor(
    identities: PgIdentityStore, marked_by_email: str | None, run_id: str,
) -> Identity | None:
    if marked_by_email is None:
        return None
    actor = identities.find_by_email(marked_by_email)
    if actor is None or actor.role not in (Role.MENTOR, Role.ADMIN):
        click.echo(
            f"[{run_id}] FATAL: --marked-by-email {marked_by_email!r} is not a mentor or admin",
            err=True,
        )
        sys.exit(1)
    return actor


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _validate_required(mode: str, required: dict[str, Any], run_id: str) -> None:
    missing = [k for k, v in required.items() if v is None]
    if missing:
        click.echo(
            f"[{run_id}] FATAL: {mode} mode requires: {', '.join(missing)}",
            err=True,
        )
        sys.exit(1)


def _validate_csv_path(csv_path: str | None, mode: str, run_id: str) -> None:
    _validate_required(mode, {"--csv-path": csv_path}, run_id)
    if not Path(csv_path).is_file():
        click.echo(f"[{run_id}] FATAL: CSV file not found: {csv_path}", err=True)
        sys.exit(1)


def _validate_day(
    day_str: str | None,
    config: ProgramConfig,
    allow_outside_window: bool,
    run_id: str,
) -> date:
    day = parse_day(day_str)
    if day is None:
        click.echo(f"[{run_id}] FATAL: --date must be YYYY-MM-DD, got {day_str!r}", err=True)
        sys.exit(1)
    calendar = config.calendar()
    if not calendar.contains(day) and not allow_outside_window:
        click.echo(
            f"[{run_id}] FATAL: {day.isoformat()} is outside the program window "
            f"{calendar.start_date.isoformat()}..{calendar.end_date.isoformat()} "
            "(use --allow-outside-window to override)",
            err=True,
        )
        sys.exit(1)
    return day


if __name__ == "__main__":
    main()
