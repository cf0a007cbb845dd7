"""Exceptions raised by the reconciliation pipeline and the inventory store."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional


class ReconciliationError(Exception):
    """Base class for reconciliation workflow failures."""


class InvalidInputError(ReconciliationError):
    """A count, reason or month supplied by the operator is malformed."""


class UnknownLotError(ReconciliationError):
    def __init__(self, lot_id):
        self.lot_id = lot_id
        super().__init__(f"Lot {lot_id} is not part of the current reconciliation")


class PhaseError(ReconciliationError):
    """The requested operation is not allowed in the session's current phase."""


class ValidationError(ReconciliationError):
    """Carries every violation found, never just the first."""

    def __init__(self, violations: Iterable[str]):
        self.violations: List[str] = list(violations)
        super().__init__(", ".join(self.violations))


class PartialCommitError(ReconciliationError):
    """Some per-lot writes of a commit failed.

    `succeeded` and `failed` are sorted lot id lists for this attempt;
    `failures` maps each failed lot id to the error message reported by the
    store. `posted` and `total_variance` cover every lot written so far in
    the session, including earlier partial attempts.
    """

    def __init__(
        self,
        succeeded: Iterable[int],
        failed: Iterable[int],
        failures: Optional[Dict[int, str]] = None,
        posted: Optional[Iterable[int]] = None,
        total_variance: int = 0,
    ):
        self.succeeded: List[int] = sorted(succeeded)
        self.failed: List[int] = sorted(failed)
        self.failures: Dict[int, str] = dict(failures or {})
        self.posted: List[int] = sorted(posted) if posted is not None else list(self.succeeded)
        self.total_variance = int(total_variance)
        super().__init__(
            f"Reconciliation partially committed: {len(self.succeeded)} lot(s) updated, "
            f"{len(self.failed)} lot(s) failed ({', '.join(str(i) for i in self.failed)})"
        )


class StoreError(Exception):
    """Base class for inventory store failures."""


class StoreUnavailableError(StoreError):
    """Transport-level failure talking to the store; safe to retry."""


class NotFoundError(StoreError):
    def __init__(self, lot_id):
        self.lot_id = lot_id
        super().__init__(f"Inventory item with ID {lot_id} not found")


class ConflictError(StoreError):
    """The lot changed in the store since it was read."""

    def __init__(self, lot_id, expected_version, actual_version):
        self.lot_id = lot_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        # snapshot re-read after the conflict, when the caller fetched one
        self.current = None
        super().__init__(
            f"Inventory item {lot_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


__all__ = [
    "ReconciliationError",
    "InvalidInputError",
    "UnknownLotError",
    "PhaseError",
    "ValidationError",
    "PartialCommitError",
    "StoreError",
    "StoreUnavailableError",
    "NotFoundError",
    "ConflictError",
]
