"""Monthly physical-vs-system inventory reconciliation.

The workflow has three phases:

- SETUP: the operator picks the reconciliation month.
- COUNTING: a physical count is recorded per lot, together with a
  discrepancy reason for every lot whose count differs from the system.
- REVIEW: the aggregate summary is shown and the session is committed.

`ReconciliationEngine` owns the single in-progress session and is the only
place that mutates it. Committing writes corrected quantities back through an
`InventoryStore`. Store writes are independent per lot, so a commit is not
strictly atomic: when a subset of writes fails the engine raises
`PartialCommitError` naming the lots on each side, finalizes the lots that
were written and keeps the failed ones pending for another `commit()`.
"""

from __future__ import annotations

import calendar
import logging
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt

from ..core.config import settings
from .errors import (
    ConflictError,
    InvalidInputError,
    PartialCommitError,
    PhaseError,
    ReconciliationError,
    StoreError,
    StoreUnavailableError,
    UnknownLotError,
    ValidationError,
)
from .store import InventoryStore, LotSnapshot


LOG = logging.getLogger(__name__)

# Constants
DISCREPANCY_REASONS = (
    "Administrative error",
    "Damage/spillage",
    "Expired doses removed",
    "Theft/loss",
    "Transfer to other facility",
    "Counting error",
    "Other",
)
MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
COUNT_RE = re.compile(r"^\d+$")

STATUS_PENDING = "pending"
STATUS_RECONCILED = "reconciled"
STATUS_SURPLUS = "surplus"
STATUS_SHORTAGE = "shortage"


class Phase(str, Enum):
    SETUP = "SETUP"
    COUNTING = "COUNTING"
    REVIEW = "REVIEW"


@dataclass
class ReconciliationEntry:
    """Working record for one lot; `difference` and `reconciled` are derived."""

    lot: LotSnapshot
    physical_count: Optional[int] = None
    discrepancy_reason: Optional[str] = None

    @property
    def counted(self) -> bool:
        return self.physical_count is not None

    @property
    def difference(self) -> Optional[int]:
        if self.physical_count is None:
            return None
        return self.physical_count - self.lot.system_count

    @property
    def reconciled(self) -> bool:
        return self.counted and self.difference == 0

    @property
    def has_discrepancy(self) -> bool:
        return self.counted and self.difference != 0

    @property
    def variance_status(self) -> str:
        diff = self.difference
        if diff is None:
            return STATUS_PENDING
        if diff == 0:
            return STATUS_RECONCILED
        return STATUS_SURPLUS if diff > 0 else STATUS_SHORTAGE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lot_id": self.lot.id,
            "vaccine_id": self.lot.vaccine_id,
            "lot_number": self.lot.lot_number,
            "system_count": self.lot.system_count,
            "physical_count": self.physical_count,
            "difference": self.difference,
            "discrepancy_reason": self.discrepancy_reason,
            "reconciled": self.reconciled,
            "variance_status": self.variance_status,
        }


@dataclass(frozen=True)
class ReconciliationSummary:
    total_items: int
    items_with_counts: int
    items_reconciled: int
    items_with_discrepancies: int
    progress_percent: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_items": self.total_items,
            "items_with_counts": self.items_with_counts,
            "items_reconciled": self.items_reconciled,
            "items_with_discrepancies": self.items_with_discrepancies,
            "progress_percent": self.progress_percent,
        }


@dataclass
class ReconciliationSession:
    month: Optional[str]
    entries: Dict[int, ReconciliationEntry]
    phase: Phase = Phase.SETUP
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # lot id -> difference posted to the store, across commit attempts
    posted: Dict[int, int] = field(default_factory=dict)

    @property
    def month_label(self) -> Optional[str]:
        return month_label(self.month)


@dataclass(frozen=True)
class CommitResult:
    updated_count: int
    total_variance: int
    updated_lot_ids: List[int]
    month: Optional[str]
    committed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updated_count": self.updated_count,
            "total_variance": self.total_variance,
            "updated_lot_ids": list(self.updated_lot_ids),
            "month": self.month,
            "committed_at": self.committed_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------

def parse_month(value: Any) -> Optional[str]:
    """Return a normalized `YYYY-MM` month, or None for an empty value."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInputError(f"Month must be a string in YYYY-MM format, got {value!r}")
    text = value.strip()
    if not text:
        return None
    if not MONTH_RE.match(text):
        raise InvalidInputError(f"Month must be in YYYY-MM format, got {value!r}")
    return text


def month_label(month: Optional[str]) -> Optional[str]:
    """'2024-01' -> 'January 2024'."""
    if not month:
        return None
    m = MONTH_RE.match(month)
    if not m:
        return None
    return f"{calendar.month_name[int(m.group(2))]} {m.group(1)}"


def parse_count(value: Any) -> int:
    """Parse a physical count, rejecting anything that is not an integer >= 0."""
    if isinstance(value, bool):
        raise InvalidInputError(f"Physical count must be a whole number, got {value!r}")
    if isinstance(value, int):
        count = value
    elif isinstance(value, float) and value.is_integer():
        count = int(value)
    elif isinstance(value, str) and COUNT_RE.match(value.strip()):
        count = int(value.strip())
    else:
        raise InvalidInputError(f"Physical count must be a whole number, got {value!r}")
    if count < 0:
        raise InvalidInputError(f"Physical count cannot be negative, got {count}")
    return count


def _current_month() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ReconciliationEngine:
    """Runs the SETUP -> COUNTING -> REVIEW workflow against an inventory store."""

    def __init__(self, store: InventoryStore):
        self._store = store
        self._session: Optional[ReconciliationSession] = None

    @property
    def session(self) -> Optional[ReconciliationSession]:
        return self._session

    def close(self) -> None:
        self.abandon()

    # -- store I/O ----------------------------------------------------------

    def _call_with_timeout(self, fn: Callable[..., Any], *args: Any) -> Any:
        # one worker per call: a call that never returns only holds its own thread
        timeout = float(settings.STORE_TIMEOUT_SECONDS)
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="inventory-store")
        try:
            future = pool.submit(fn, *args)
            return future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            raise StoreUnavailableError(f"Inventory store did not respond within {timeout:g}s") from exc
        finally:
            pool.shutdown(wait=False)

    def _call_store(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Bounded store call, retried when the failure is transient."""
        retryer = Retrying(
            stop=stop_after_attempt(max(1, int(settings.STORE_RETRY_ATTEMPTS))),
            retry=retry_if_exception_type(StoreUnavailableError),
            before_sleep=before_sleep_log(LOG, logging.WARNING),
            reraise=True,
        )
        return retryer(self._call_with_timeout, fn, *args)

    # -- session lifecycle --------------------------------------------------

    def start_session(self, month: Optional[str] = None) -> ReconciliationSession:
        """Read the inventory and open a fresh session in SETUP.

        Any session in progress is discarded. `month` defaults to the
        current calendar month.
        """
        selected = parse_month(month) if month is not None else _current_month()
        lots = self._call_store(self._store.list_all)

        entries: Dict[int, ReconciliationEntry] = {}
        for lot in lots:
            if lot.id in entries:
                raise ReconciliationError(f"Inventory returned lot {lot.id} more than once")
            entries[lot.id] = ReconciliationEntry(lot=lot)

        self._session = ReconciliationSession(month=selected, entries=entries)
        LOG.info("Reconciliation session started for %s with %d lot(s)", selected, len(entries))
        return self._session

    def abandon(self) -> None:
        """Drop the session in progress; nothing has been written yet."""
        if self._session is not None:
            LOG.info("Reconciliation session for %s abandoned", self._session.month)
        self._session = None

    def _require_session(self, *phases: Phase) -> ReconciliationSession:
        session = self._session
        if session is None:
            raise PhaseError("No reconciliation session in progress")
        if phases and session.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise PhaseError(f"Operation requires phase {allowed}; session is in {session.phase.value}")
        return session

    def _entry(self, session: ReconciliationSession, lot_id: Any) -> ReconciliationEntry:
        if isinstance(lot_id, bool):
            raise UnknownLotError(lot_id)
        if isinstance(lot_id, int):
            key = lot_id
        elif isinstance(lot_id, str) and COUNT_RE.match(lot_id.strip()):
            key = int(lot_id.strip())
        else:
            raise UnknownLotError(lot_id)
        entry = session.entries.get(key)
        if entry is None:
            raise UnknownLotError(lot_id)
        return entry

    # -- phase transitions --------------------------------------------------

    def select_month(self, month: Optional[str]) -> ReconciliationSession:
        session = self._require_session(Phase.SETUP)
        session.month = parse_month(month)
        return session

    def begin_counting(self) -> ReconciliationSession:
        session = self._require_session(Phase.SETUP)
        if not session.month:
            raise ValidationError(["Please select a reconciliation month"])
        session.phase = Phase.COUNTING
        return session

    def return_to_setup(self) -> ReconciliationSession:
        session = self._require_session(Phase.COUNTING)
        session.phase = Phase.SETUP
        return session

    def begin_review(self) -> ReconciliationSession:
        session = self._require_session(Phase.COUNTING)
        if self.compute_summary().items_with_counts == 0:
            raise ValidationError(["Record at least one physical count before review"])
        session.phase = Phase.REVIEW
        return session

    def return_to_counting(self) -> ReconciliationSession:
        session = self._require_session(Phase.REVIEW)
        session.phase = Phase.COUNTING
        return session

    # -- counting -----------------------------------------------------------

    def set_physical_count(self, lot_id: Any, count: Any) -> ReconciliationEntry:
        session = self._require_session(Phase.COUNTING)
        entry = self._entry(session, lot_id)
        entry.physical_count = parse_count(count)
        return entry

    def clear_physical_count(self, lot_id: Any) -> ReconciliationEntry:
        session = self._require_session(Phase.COUNTING)
        entry = self._entry(session, lot_id)
        entry.physical_count = None
        return entry

    def set_discrepancy_reason(self, lot_id: Any, reason: Optional[str]) -> ReconciliationEntry:
        """Record why a lot's count differs.

        The reason is kept even if the count is later corrected to match the
        system; it is only required while the difference is nonzero.
        """
        session = self._require_session(Phase.COUNTING)
        entry = self._entry(session, lot_id)
        if reason is not None and not isinstance(reason, str):
            raise InvalidInputError(f"Discrepancy reason must be text, got {reason!r}")
        entry.discrepancy_reason = (reason or "").strip() or None
        return entry

    # -- read-only views ----------------------------------------------------

    def compute_summary(self) -> ReconciliationSummary:
        session = self._require_session()
        entries = list(session.entries.values())
        total = len(entries)
        counted = sum(1 for e in entries if e.counted)
        # half-up rounding, integer math
        progress = (counted * 200 + total) // (2 * total) if total else 0
        return ReconciliationSummary(
            total_items=total,
            items_with_counts=counted,
            items_reconciled=sum(1 for e in entries if e.reconciled),
            items_with_discrepancies=sum(1 for e in entries if e.has_discrepancy),
            progress_percent=progress,
        )

    def discrepancies(self) -> List[ReconciliationEntry]:
        session = self._require_session()
        return [e for e in session.entries.values() if e.has_discrepancy]

    def validate_for_commit(self) -> List[str]:
        session = self._require_session()
        violations: List[str] = []
        if not session.month:
            violations.append("Please select a reconciliation month")

        missing = sum(1 for e in session.entries.values() if not e.counted)
        if missing:
            violations.append(f"{missing} items are missing physical counts")

        unexplained = sum(1 for e in session.entries.values() if e.has_discrepancy and not e.discrepancy_reason)
        if unexplained:
            violations.append(f"{unexplained} items with discrepancies need explanations")
        return violations

    # -- commit -------------------------------------------------------------

    def _write_lot(self, entry: ReconciliationEntry, timestamp: datetime) -> Any:
        """Write one lot's count, guarded by the version it was read at.

        A conflict right after a timed-out attempt may be our own write that
        landed late; the lot is re-read and the write counts as done when the
        store holds our count at exactly the next version. Otherwise the
        re-read snapshot is attached to the error for the caller.
        """
        lot_id = entry.lot.id
        expected = entry.lot.version
        try:
            return self._call_store(self._store.update, lot_id, entry.physical_count, timestamp, expected)
        except ConflictError as exc:
            current = self._call_store(self._store.get_by_id, lot_id)
            if current.system_count == entry.physical_count and current.version == expected + 1:
                LOG.info("Write for lot %s was applied before its acknowledgement timed out", lot_id)
                return current
            exc.current = current
            raise

    def commit(self) -> CommitResult:
        """Post every lot with a nonzero difference to the inventory store.

        Lots whose count matches the system are not written.
        """
        session = self._require_session(Phase.REVIEW)
        violations = self.validate_for_commit()
        if violations:
            raise ValidationError(violations)

        pending = [e for e in session.entries.values() if e.has_discrepancy]
        timestamp = datetime.now(timezone.utc)
        written: Dict[int, Any] = {}
        failures: Dict[int, str] = {}

        if pending:
            workers = max(1, min(int(settings.COMMIT_WORKERS), len(pending)))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {pool.submit(self._write_lot, e, timestamp): e for e in pending}
                for fut in as_completed(futures):
                    lot_id = futures[fut].lot.id
                    try:
                        written[lot_id] = fut.result()
                    except ConflictError as exc:
                        LOG.warning("Reconciliation write for lot %s failed: %s", lot_id, exc)
                        failures[lot_id] = str(exc)
                        if exc.current is not None:
                            # compare the count against what the store holds now
                            futures[fut].lot = exc.current
                    except StoreError as exc:
                        LOG.warning("Reconciliation write for lot %s failed: %s", lot_id, exc)
                        failures[lot_id] = str(exc)
                    except Exception as exc:
                        LOG.exception("Unexpected error writing lot %s", lot_id)
                        failures[lot_id] = str(exc) or exc.__class__.__name__

        for lot_id, stored in written.items():
            entry = session.entries[lot_id]
            session.posted[lot_id] = session.posted.get(lot_id, 0) + entry.difference
            self._finalize(entry, stored)

        total_variance = sum(session.posted.values())
        if failures:
            LOG.warning(
                "Reconciliation for %s partially committed: updated %s, failed %s",
                session.month, sorted(written), sorted(failures),
            )
            raise PartialCommitError(
                written.keys(), failures.keys(), failures,
                posted=session.posted.keys(), total_variance=total_variance,
            )

        result = CommitResult(
            updated_count=len(session.posted),
            total_variance=int(total_variance),
            updated_lot_ids=sorted(session.posted),
            month=session.month,
            committed_at=timestamp,
        )
        LOG.info(
            "Reconciliation for %s committed: %d lot(s) updated, total variance %+d",
            session.month, result.updated_count, result.total_variance,
        )
        self._session = None
        return result

    @staticmethod
    def _finalize(entry: ReconciliationEntry, stored: Any) -> None:
        # the posted count becomes the new system count
        if isinstance(stored, LotSnapshot) and stored.id == entry.lot.id:
            entry.lot = replace(stored, system_count=entry.physical_count)
        else:
            entry.lot = replace(entry.lot, system_count=entry.physical_count, version=entry.lot.version + 1)
        entry.discrepancy_reason = None


__all__ = [
    "DISCREPANCY_REASONS",
    "Phase",
    "ReconciliationEntry",
    "ReconciliationSummary",
    "ReconciliationSession",
    "CommitResult",
    "ReconciliationEngine",
    "parse_count",
    "parse_month",
    "month_label",
]
