"""API endpoints for the monthly inventory reconciliation workflow.

A single reconciliation session is held by a process-wide engine. Domain
errors are translated to HTTP errors here and their details (violation lists,
succeeded/failed lots) are passed through unchanged.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse
from pydantic import BaseModel

from ..pipeline.errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    PartialCommitError,
    PhaseError,
    ReconciliationError,
    StoreError,
    StoreUnavailableError,
    UnknownLotError,
    ValidationError,
)
from ..pipeline.exporter import generate_session_xlsx
from ..pipeline.reconciliation import (
    DISCREPANCY_REASONS,
    Phase,
    ReconciliationEngine,
)
from ..pipeline.store import SqliteInventoryStore

router = APIRouter()

LOG = logging.getLogger(__name__)

_ENGINE: Optional[ReconciliationEngine] = None


def get_engine() -> ReconciliationEngine:
    """Return the process-wide engine, creating it on first use."""
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = ReconciliationEngine(SqliteInventoryStore())
    return _ENGINE


def reset_engine() -> None:
    """Drop the process-wide engine and any session it holds."""
    global _ENGINE
    if _ENGINE is not None:
        _ENGINE.close()
    _ENGINE = None


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "violations": exc.violations},
        )
    if isinstance(exc, PartialCommitError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": str(exc),
                "succeeded": exc.succeeded,
                "failed": exc.failed,
                "failures": {str(k): v for k, v in exc.failures.items()},
                "posted": exc.posted,
                "total_variance": exc.total_variance,
            },
        )
    if isinstance(exc, (UnknownLotError, NotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidInputError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, (PhaseError, ConflictError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, StoreUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _session_payload(engine: ReconciliationEngine) -> Optional[Dict[str, Any]]:
    session = engine.session
    if session is None:
        return None
    return {
        "month": session.month,
        "month_label": session.month_label,
        "phase": session.phase.value,
        "started_at": session.started_at.isoformat(),
        "entries": [e.to_dict() for e in session.entries.values()],
        "summary": engine.compute_summary().to_dict(),
        "violations": engine.validate_for_commit(),
    }


class SessionStart(BaseModel):
    month: Optional[str] = None


class MonthIn(BaseModel):
    month: Optional[str] = None


class PhaseIn(BaseModel):
    phase: str


class CountIn(BaseModel):
    # validated by the engine so that the reject policy applies to every input
    count: Any = None


class ReasonIn(BaseModel):
    reason: Optional[str] = None


_TRANSITIONS = {
    (Phase.SETUP, Phase.COUNTING): "begin_counting",
    (Phase.COUNTING, Phase.SETUP): "return_to_setup",
    (Phase.COUNTING, Phase.REVIEW): "begin_review",
    (Phase.REVIEW, Phase.COUNTING): "return_to_counting",
}


@router.get("/reconciliation/reasons")
def get_reconciliation_reasons():
    """Return the standard discrepancy reasons and variance status labels."""
    statuses = [
        {"key": "pending", "label": "Not counted", "description": "No physical count recorded yet"},
        {"key": "reconciled", "label": "Reconciled", "description": "Physical count matches the system count"},
        {"key": "surplus", "label": "Surplus", "description": "More doses counted than recorded"},
        {"key": "shortage", "label": "Shortage", "description": "Fewer doses counted than recorded"},
    ]
    return {"reasons": list(DISCREPANCY_REASONS), "statuses": statuses}


@router.post("/reconciliation/session")
def start_session(payload: Optional[SessionStart] = None):
    """Open a new session from the current inventory, replacing any in progress."""
    engine = get_engine()
    try:
        engine.start_session(payload.month if payload else None)
    except (ReconciliationError, StoreError) as exc:
        raise _http_error(exc) from exc
    return {"session": _session_payload(engine)}


@router.get("/reconciliation/session")
def get_session():
    engine = get_engine()
    if engine.session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No reconciliation session in progress")
    return {"session": _session_payload(engine)}


@router.delete("/reconciliation/session")
def abandon_session():
    """Abandon the session; nothing is written to the inventory."""
    get_engine().abandon()
    return {"session": None}


@router.put("/reconciliation/session/month")
def select_month(payload: MonthIn):
    engine = get_engine()
    try:
        engine.select_month(payload.month)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {"session": _session_payload(engine)}


@router.post("/reconciliation/session/phase")
def change_phase(payload: PhaseIn):
    """Move the session to `phase` (SETUP, COUNTING or REVIEW)."""
    engine = get_engine()
    try:
        target = Phase(str(payload.phase).strip().upper())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown phase: {payload.phase}")

    try:
        session = engine.session
        if session is None:
            raise PhaseError("No reconciliation session in progress")
        if session.phase != target:
            method = _TRANSITIONS.get((session.phase, target))
            if method is None:
                raise PhaseError(f"Cannot move from {session.phase.value} to {target.value}")
            getattr(engine, method)()
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {"session": _session_payload(engine)}


@router.put("/reconciliation/session/entries/{lot_id}/count")
def set_physical_count(lot_id: int, payload: CountIn):
    engine = get_engine()
    try:
        entry = engine.set_physical_count(lot_id, payload.count)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {"entry": entry.to_dict(), "summary": engine.compute_summary().to_dict()}


@router.delete("/reconciliation/session/entries/{lot_id}/count")
def clear_physical_count(lot_id: int):
    engine = get_engine()
    try:
        entry = engine.clear_physical_count(lot_id)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {"entry": entry.to_dict(), "summary": engine.compute_summary().to_dict()}


@router.put("/reconciliation/session/entries/{lot_id}/reason")
def set_discrepancy_reason(lot_id: int, payload: ReasonIn):
    engine = get_engine()
    try:
        entry = engine.set_discrepancy_reason(lot_id, payload.reason)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {"entry": entry.to_dict()}


@router.get("/reconciliation/summary")
def get_summary():
    engine = get_engine()
    try:
        return {"summary": engine.compute_summary().to_dict()}
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.get("/reconciliation/validation")
def get_validation():
    """Return the violations that currently block a commit (empty when valid)."""
    engine = get_engine()
    try:
        violations = engine.validate_for_commit()
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {"valid": not violations, "violations": violations}


@router.get("/reconciliation/discrepancies")
def get_discrepancies():
    engine = get_engine()
    try:
        items = [e.to_dict() for e in engine.discrepancies()]
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {"items": items}


@router.post("/reconciliation/commit")
def commit_reconciliation():
    """Commit the session and open a fresh one from the updated inventory.

    A failure to reload after a successful commit does not hide the commit
    result: `session` is null and `session_error` carries the reason.
    """
    engine = get_engine()
    try:
        result = engine.commit()
    except (ReconciliationError, StoreError) as exc:
        raise _http_error(exc) from exc

    body: Dict[str, Any] = {"commit": result.to_dict()}
    try:
        engine.start_session()
        body["session"] = _session_payload(engine)
    except StoreError as exc:
        LOG.exception("Reconciliation committed but the inventory could not be reloaded")
        body["session"] = None
        body["session_error"] = str(exc)
    return body


@router.get("/reconciliation/export")
def export_session():
    """Download the current session as an XLSX worksheet."""
    engine = get_engine()
    if engine.session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No reconciliation session in progress")
    try:
        out = generate_session_xlsx(engine)
    except Exception as exc:
        LOG.exception("Failed to export reconciliation worksheet")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return FileResponse(
        out["path"],
        filename=out["filename"],
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )


@router.get("/health")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}


__all__ = ["router", "get_engine", "reset_engine"]
