"""Repository helpers for inventory lots.

Plain functions over a sqlite3 connection. Rows are returned as dicts with
the column names of `inventory_items`; callers own the connection.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import sqlite3


COLUMNS = (
    "id",
    "vaccine_id",
    "lot_number",
    "quantity_on_hand",
    "expiration_date",
    "location",
    "minimum_stock",
    "vaccine_family",
    "last_updated",
    "version",
)

_SELECT_SQL = f"SELECT {', '.join(COLUMNS)} FROM inventory_items"


def _row_to_dict(row: Any) -> Dict[str, Any]:
    return dict(zip(COLUMNS, row))


def list_inventory_items(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    """Return every lot ordered by id."""
    cur = conn.cursor()
    cur.execute(f"{_SELECT_SQL} ORDER BY id ASC")
    return [_row_to_dict(r) for r in cur.fetchall()]


def get_inventory_item(conn: sqlite3.Connection, item_id: int) -> Optional[Dict[str, Any]]:
    """Return the lot with `item_id` or None."""
    cur = conn.cursor()
    cur.execute(f"{_SELECT_SQL} WHERE id = ?", (int(item_id),))
    row = cur.fetchone()
    return _row_to_dict(row) if row else None


def create_inventory_item(
    conn: sqlite3.Connection,
    vaccine_id: str,
    lot_number: str,
    quantity_on_hand: int,
    expiration_date: str | None = None,
    location: str | None = None,
    minimum_stock: int = 0,
    vaccine_family: str | None = None,
    last_updated: str | None = None,
) -> int:
    """Insert a new lot and return the inserted id.

    The function commits the transaction.
    """
    if last_updated is None:
        last_updated = date.today().isoformat()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO inventory_items
        (vaccine_id, lot_number, quantity_on_hand, expiration_date, location, minimum_stock, vaccine_family, last_updated, version)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1)
        """,
        (
            vaccine_id,
            lot_number,
            int(quantity_on_hand),
            expiration_date,
            location,
            int(minimum_stock or 0),
            vaccine_family,
            last_updated,
        ),
    )
    conn.commit()
    return int(cur.lastrowid)


def update_quantity(
    conn: sqlite3.Connection,
    item_id: int,
    quantity_on_hand: int,
    last_updated: str,
    expected_version: int | None = None,
) -> int:
    """Overwrite `quantity_on_hand` for a lot and bump its version.

    When `expected_version` is given the row is only written if its stored
    version still matches. Returns the number of rows changed (0 or 1).
    """
    cur = conn.cursor()
    if expected_version is None:
        cur.execute(
            "UPDATE inventory_items SET quantity_on_hand = ?, last_updated = ?, version = version + 1 WHERE id = ?",
            (int(quantity_on_hand), last_updated, int(item_id)),
        )
    else:
        cur.execute(
            "UPDATE inventory_items SET quantity_on_hand = ?, last_updated = ?, version = version + 1 WHERE id = ? AND version = ?",
            (int(quantity_on_hand), last_updated, int(item_id), int(expected_version)),
        )
    conn.commit()
    return cur.rowcount


def delete_inventory_item(conn: sqlite3.Connection, item_id: int) -> bool:
    """Delete a lot. Returns True when a row was removed."""
    cur = conn.cursor()
    cur.execute("DELETE FROM inventory_items WHERE id = ?", (int(item_id),))
    conn.commit()
    return cur.rowcount > 0


def list_low_stock(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    """Lots at or below their minimum stock level."""
    cur = conn.cursor()
    cur.execute(f"{_SELECT_SQL} WHERE quantity_on_hand <= minimum_stock ORDER BY id ASC")
    return [_row_to_dict(r) for r in cur.fetchall()]


def list_expiring(conn: sqlite3.Connection, days: int = 30, today: date | None = None) -> List[Dict[str, Any]]:
    """Lots whose expiration date falls on or before `today + days`.

    Lots without an expiration date are never returned.
    """
    cutoff = (today or datetime.now(timezone.utc).date()) + timedelta(days=int(days))
    cur = conn.cursor()
    cur.execute(
        f"{_SELECT_SQL} WHERE expiration_date IS NOT NULL AND expiration_date <> '' AND date(expiration_date) <= date(?) ORDER BY expiration_date ASC, id ASC",
        (cutoff.isoformat(),),
    )
    return [_row_to_dict(r) for r in cur.fetchall()]


__all__ = [
    "COLUMNS",
    "list_inventory_items",
    "get_inventory_item",
    "create_inventory_item",
    "update_quantity",
    "delete_inventory_item",
    "list_low_stock",
    "list_expiring",
]
