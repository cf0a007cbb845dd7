"""Database schema for repository layer.

Defines SQL for the `inventory_items` table and helpers to create tables.
"""
from __future__ import annotations

from typing import Any
import sqlite3


INVENTORY_ITEMS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS inventory_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    vaccine_id TEXT NOT NULL,
    lot_number TEXT NOT NULL,
    quantity_on_hand INTEGER NOT NULL DEFAULT 0,
    expiration_date TEXT,
    location TEXT,
    minimum_stock INTEGER NOT NULL DEFAULT 0,
    vaccine_family TEXT,
    last_updated TEXT,
    version INTEGER NOT NULL DEFAULT 1
);
"""


def create_tables(conn: sqlite3.Connection | Any) -> None:
    """Create required tables on the given SQLite connection.

    The function will execute DDL statements and commit the transaction.
    """
    cur = conn.cursor()
    cur.execute(INVENTORY_ITEMS_TABLE_SQL)
    conn.commit()


__all__ = ["INVENTORY_ITEMS_TABLE_SQL", "create_tables"]
