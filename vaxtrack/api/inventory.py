"""API endpoints for inventory lots."""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from typing import Optional

from ..core.config import settings
from ..core.db import init_db, get_connection
from ..pipeline.errors import ConflictError, NotFoundError, StoreUnavailableError
from ..pipeline.store import SqliteInventoryStore
from ..repo.schema import create_tables
from ..repo.inventory import (
    create_inventory_item,
    delete_inventory_item,
    get_inventory_item,
    list_expiring,
    list_inventory_items,
    list_low_stock,
)

router = APIRouter()


def _init_db_conn():
    init_db()
    conn = get_connection()
    create_tables(conn)
    cur = conn.cursor()
    return conn, cur


class InventoryItemCreate(BaseModel):
    vaccine_id: str
    lot_number: str
    quantity_on_hand: int
    expiration_date: Optional[str] = None
    location: Optional[str] = None
    minimum_stock: int = 0
    vaccine_family: Optional[str] = None


class InventoryItemUpdate(BaseModel):
    quantity_on_hand: int
    expected_version: Optional[int] = None


@router.get("/inventory")
def list_inventory():
    """Return all inventory lots."""
    conn, cur = _init_db_conn()
    try:
        return {"items": list_inventory_items(conn)}
    finally:
        conn.close()


@router.post("/inventory")
def create_inventory(payload: InventoryItemCreate):
    """Create a lot. Vaccine, lot number and a positive quantity are required."""
    if not payload.vaccine_id.strip() or not payload.lot_number.strip() or payload.quantity_on_hand <= 0:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Missing required fields")
    if payload.minimum_stock < 0:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="minimum_stock cannot be negative")

    conn, cur = _init_db_conn()
    try:
        item_id = create_inventory_item(
            conn,
            payload.vaccine_id.strip(),
            payload.lot_number.strip(),
            payload.quantity_on_hand,
            expiration_date=payload.expiration_date,
            location=payload.location,
            minimum_stock=payload.minimum_stock,
            vaccine_family=payload.vaccine_family,
        )
        return {"item_id": item_id, "item": get_inventory_item(conn, item_id)}
    finally:
        conn.close()


@router.get("/inventory/low-stock")
def low_stock_inventory():
    """Lots at or below their minimum stock."""
    conn, cur = _init_db_conn()
    try:
        return {"items": list_low_stock(conn)}
    finally:
        conn.close()


@router.get("/inventory/expiring")
def expiring_inventory(days: int | None = None):
    """Lots expiring within `days` days (defaults to the configured window)."""
    window = settings.EXPIRING_DAYS_DEFAULT if days is None else days
    if window < 0:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="days cannot be negative")
    conn, cur = _init_db_conn()
    try:
        return {"items": list_expiring(conn, window), "days": window}
    finally:
        conn.close()


@router.get("/inventory/{item_id}")
def get_inventory(item_id: int):
    conn, cur = _init_db_conn()
    try:
        item = get_inventory_item(conn, item_id)
    finally:
        conn.close()
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Inventory item with ID {item_id} not found")
    return {"item": item}


@router.put("/inventory/{item_id}")
def update_inventory(item_id: int, payload: InventoryItemUpdate):
    """Set a lot's quantity on hand.

    Goes through the same versioned write the reconciliation commit uses, so
    a stale `expected_version` is refused with 409 instead of overwriting a
    newer count.
    """
    if payload.quantity_on_hand < 0:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="quantity_on_hand cannot be negative")
    try:
        lot = SqliteInventoryStore().update(
            item_id,
            payload.quantity_on_hand,
            datetime.now(timezone.utc),
            payload.expected_version,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    conn, cur = _init_db_conn()
    try:
        return {"item": get_inventory_item(conn, lot.id)}
    finally:
        conn.close()


@router.delete("/inventory/{item_id}")
def delete_inventory(item_id: int):
    conn, cur = _init_db_conn()
    try:
        deleted = delete_inventory_item(conn, item_id)
    finally:
        conn.close()
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Inventory item with ID {item_id} not found")
    return {"message": "Item deleted successfully"}


__all__ = ["router"]
