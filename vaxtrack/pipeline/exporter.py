"""Export helpers: build an XLSX worksheet from a reconciliation session.

Two sheets are written: `summary` (one row) and `entries` (one row per lot,
in session order) with presentation headers.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import pandas as pd

from ..core.storage import export_path, export_to_excel
from .reconciliation import ReconciliationEngine


LOG = logging.getLogger(__name__)

ENTRY_HEADERS = {
    "lot_id": "Lot ID",
    "vaccine_id": "Vaccine",
    "lot_number": "Lot Number",
    "system_count": "System Count",
    "physical_count": "Physical Count",
    "difference": "Difference",
    "variance_status": "Status",
    "discrepancy_reason": "Discrepancy Reason",
}

STATUS_LABELS = {
    "pending": "Not counted",
    "reconciled": "Reconciled",
    "surplus": "Surplus",
    "shortage": "Shortage",
}


def build_session_frames(engine: ReconciliationEngine) -> Dict[str, pd.DataFrame]:
    """Return the `summary` and `entries` DataFrames for the current session."""
    session = engine.session
    if session is None:
        raise ValueError("No reconciliation session in progress")

    summary = engine.compute_summary().to_dict()
    summary_df = pd.DataFrame.from_records(
        [
            {
                "month": session.month,
                "month_label": session.month_label,
                "phase": session.phase.value,
                "started_at": session.started_at.isoformat(),
                **summary,
            }
        ]
    )

    records = [e.to_dict() for e in session.entries.values()]
    entries_df = pd.DataFrame.from_records(records, columns=list(ENTRY_HEADERS))
    entries_df["variance_status"] = entries_df["variance_status"].map(lambda s: STATUS_LABELS.get(s, s))
    entries_df = entries_df.rename(columns=ENTRY_HEADERS)

    return {"summary": summary_df, "entries": entries_df}


def generate_session_xlsx(engine: ReconciliationEngine) -> Dict[str, Any]:
    """Write the current session to `storage/exports/reconciliation_<month>.xlsx`."""
    frames = build_session_frames(engine)
    month = engine.session.month or "unscheduled"
    filename = f"reconciliation_{month}.xlsx"
    path = export_to_excel(frames, export_path(filename))
    LOG.debug("Reconciliation worksheet written to %s", path)
    return {"path": path, "filename": filename, "rows": len(frames["entries"])}


__all__ = ["build_session_frames", "generate_session_xlsx", "ENTRY_HEADERS"]
