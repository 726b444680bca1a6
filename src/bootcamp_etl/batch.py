"""bootcamp_etl.batch

Batch executor shared by the import, assignment and attendance pipelines.

Items are processed sequentially in input order.  Each item runs through the
caller's operation inside an optional atomic scope (a SAVEPOINT when backed
by PostgreSQL) and ends as exactly one of SUCCESS, SKIPPED or FAILED.  A
fault in item i never stops items i+1..N; the only thing that stops a batch
early is StorageUnavailableError or an InputReadError from the item stream,
recorded on the report as ``fatal_error``.  The report is returned in every case.
"""

from __future__ import annotations

import contextlib
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Iterable, TypeVar

import psycopg

from bootcamp_etl.shared import InputReadError, StorageUnavailableError, StoreError

log = logging.getLogger(__name__)

T = TypeVar("T")

NOT_FOUND = "NOT_FOUND"


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

class Outcome(str, enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class ItemFailed(Exception):
    """Raised by an item operation to fail that item with a reason."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ItemSkipped(Exception):
    """Raised by an item operation to skip that item with a reason."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def not_found(what: str, key: str) -> ItemFailed:
    return ItemFailed(f"{NOT_FOUND}: {what} {key!r}")


@dataclass(frozen=True)
class ItemResult:
    outcome: Outcome = Outcome.SUCCESS
    reason: str | None = None
    note: str | None = None

    @classmethod
    def success(cls, note: str | None = None) -> "ItemResult":
        return cls(Outcome.SUCCESS, None, note)

    @classmethod
    def skipped(cls, reason: str) -> "ItemResult":
        return cls(Outcome.SKIPPED, reason)


@dataclass(frozen=True)
class ItemFailure:
    identifier: str
    outcome: Outcome
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {
            "identifier": self.identifier,
            "outcome": self.outcome.value,
            "reason": self.reason,
        }


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

@dataclass
class BatchReport:
    total: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    storage_errors: int = 0
    fatal_error: str | None = None

    def record(self, identifier: str, result: ItemResult) -> None:
        self.total += 1
        if result.outcome is Outcome.SUCCESS:
            self.succeeded += 1
        elif result.outcome is Outcome.SKIPPED:
            self.skipped += 1
            self.failures.append(ItemFailure(identifier, Outcome.SKIPPED, result.reason or ""))
        else:
            self.failed += 1
            self.failures.append(ItemFailure(identifier, Outcome.FAILED, result.reason or ""))
        if result.note:
            self.notes.append(f"{identifier}: {result.note}")

    def merge(self, other: "BatchReport") -> None:
        self.total += other.total
        self.succeeded += other.succeeded
        self.skipped += other.skipped
        self.failed += other.failed
        self.failures.extend(other.failures)
        self.notes.extend(other.notes)
        self.storage_errors += other.storage_errors
        self.fatal_error = self.fatal_error or other.fatal_error

    @property
    def stopped(self) -> bool:
        return self.fatal_error is not None

    def failed_items(self) -> list[ItemFailure]:
        return [f for f in self.failures if f.outcome is Outcome.FAILED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "failures": [f.to_dict() for f in self.failures],
            "notes": list(self.notes),
            "storage_errors": self.storage_errors,
            "fatal_error": self.fatal_error,
        }


def build_batch_report(report: BatchReport, title: str, dry_run: bool = False) -> str:
    lines = [
        "=" * 60,
        title,
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  items:       {report.total}",
        f"  succeeded:   {report.succeeded}",
        f"  skipped:     {report.skipped}",
        f"  failed:      {report.failed}",
        f"  storage errors: {report.storage_errors}",
    ]
    if report.fatal_error:
        lines.append(f"  STOPPED: {report.fatal_error}")
    if report.failures:
        lines.append(f"\nNot applied ({len(report.failures)}):")
        for failure in report.failures[:50]:
            lines.append(f"  [{failure.outcome.value}] {failure.identifier} - {failure.reason}")
        if len(report.failures) > 50:
            lines.append(f"  ... and {len(report.failures) - 50} more")
    if report.notes:
        lines.append(f"\nNotes ({len(report.notes)}):")
        for note in report.notes[:20]:
            lines.append(f"  {note}")
        if len(report.notes) > 20:
            lines.append(f"  ... and {len(report.notes) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

def _no_scope(_identifier: str) -> ContextManager[None]:
    return contextlib.nullcontext()


def run_batch(
    items: Iterable[T],
    operation: Callable[[T], ItemResult | None],
    identify: Callable[[T], str],
    atomic: Callable[[str], ContextManager[Any]] | None = None,
    report: BatchReport | None = None,
    on_failure: Callable[[T, ItemFailure], None] | None = None,
) -> BatchReport:
    """Drive every item through ``operation`` and return the outcome report.

    Args:
        items: Any iterable; consumed lazily, one item at a time.
        operation: Per-item function.  Returns an ItemResult (None means
            plain success) or raises ItemFailed / ItemSkipped.
        identify: Maps an item to the identifier shown in the report.
        atomic: Optional per-item scope factory, e.g. ``store.atomic``.
            Writes of an item that does not succeed are rolled back.
        report: Existing report to append to (pre-batch rejections etc.).
        on_failure: Called for every non-success, e.g. to write a reject row.
    """
    report = report if report is not None else BatchReport()
    scope = atomic or _no_scope
    iterator = iter(items)

    while True:
        try:
            item = next(iterator)
        except StopIteration:
            break
        except InputReadError as exc:
            report.fatal_error = f"input unreadable: {exc}"
            log.error("batch stopped: %s", report.fatal_error)
            break

        identifier = identify(item)
        try:
            with scope(identifier):
                result = operation(item) or ItemResult.success()
                if result.outcome is Outcome.SKIPPED:
                    raise ItemSkipped(result.reason or "")
        except ItemSkipped as exc:
            result = ItemResult(Outcome.SKIPPED, exc.reason)
        except ItemFailed as exc:
            result = ItemResult(Outcome.FAILED, exc.reason)
        except StorageUnavailableError as exc:
            report.record(identifier, ItemResult(Outcome.FAILED, f"storage unavailable: {exc}"))
            report.storage_errors += 1
            report.fatal_error = f"storage unavailable at {identifier!r}: {exc}"
            log.error("batch stopped: %s", report.fatal_error)
            if on_failure:
                on_failure(item, report.failures[-1])
            break
        except (StoreError, psycopg.Error) as exc:
            result = ItemResult(Outcome.FAILED, f"storage error: {exc}")
            report.storage_errors += 1
            log.warning("storage error on %s: %s", identifier, exc)
        except Exception as exc:
            result = ItemResult(Outcome.FAILED, f"unexpected error: {exc!r}")
            log.exception("unexpected error on %s", identifier)

        report.record(identifier, result)
        if result.outcome is not Outcome.SUCCESS and on_failure:
            on_failure(item, report.failures[-1])

    return report
