"""Inventory store used by the reconciliation engine.

`InventoryStore` is the contract the engine consumes; `SqliteInventoryStore`
implements it on top of the `inventory_items` table. Each call opens its own
connection so calls can be issued from worker threads.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol

from ..core.db import get_connection, init_db
from ..repo.inventory import get_inventory_item, list_inventory_items, update_quantity
from ..repo.schema import create_tables
from .errors import ConflictError, NotFoundError, StoreUnavailableError


LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class LotSnapshot:
    """Read-only view of one inventory lot at the time it was read."""

    id: int
    vaccine_id: str
    lot_number: str
    system_count: int
    version: int = 1
    expiration_date: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "LotSnapshot":
        return cls(
            id=int(row["id"]),
            vaccine_id=row.get("vaccine_id") or "",
            lot_number=row.get("lot_number") or "",
            system_count=int(row.get("quantity_on_hand") or 0),
            version=int(row.get("version") or 1),
            expiration_date=row.get("expiration_date"),
            location=row.get("location"),
        )


class InventoryStore(Protocol):
    def list_all(self) -> List[LotSnapshot]:
        ...

    def get_by_id(self, lot_id: int) -> LotSnapshot:
        ...

    def update(
        self,
        lot_id: int,
        new_quantity: int,
        timestamp: datetime,
        expected_version: Optional[int] = None,
    ) -> LotSnapshot:
        ...


class SqliteInventoryStore:
    """`InventoryStore` backed by the configured SQLite database."""

    def _connect(self) -> sqlite3.Connection:
        conn = None
        try:
            init_db()
            conn = get_connection()
            create_tables(conn)
        except (sqlite3.Error, OSError) as exc:
            if conn is not None:
                conn.close()
            raise StoreUnavailableError(f"Inventory database unavailable: {exc}") from exc
        return conn

    def list_all(self) -> List[LotSnapshot]:
        conn = self._connect()
        try:
            return [LotSnapshot.from_row(r) for r in list_inventory_items(conn)]
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Failed to read inventory: {exc}") from exc
        finally:
            conn.close()

    def get_by_id(self, lot_id: int) -> LotSnapshot:
        conn = self._connect()
        try:
            row = get_inventory_item(conn, lot_id)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Failed to read inventory item {lot_id}: {exc}") from exc
        finally:
            conn.close()
        if row is None:
            raise NotFoundError(lot_id)
        return LotSnapshot.from_row(row)

    def update(
        self,
        lot_id: int,
        new_quantity: int,
        timestamp: datetime,
        expected_version: Optional[int] = None,
    ) -> LotSnapshot:
        """Overwrite a lot's quantity on hand.

        Raises `NotFoundError` when the lot no longer exists and
        `ConflictError` when `expected_version` no longer matches.
        """
        conn = self._connect()
        try:
            changed = update_quantity(conn, lot_id, new_quantity, timestamp.isoformat(), expected_version)
            if changed == 0:
                row = get_inventory_item(conn, lot_id)
                if row is None:
                    raise NotFoundError(lot_id)
                raise ConflictError(lot_id, expected_version, row.get("version"))
            row = get_inventory_item(conn, lot_id)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Failed to update inventory item {lot_id}: {exc}") from exc
        finally:
            conn.close()
        LOG.debug("Inventory item %s set to %s (version %s)", lot_id, new_quantity, row.get("version"))
        return LotSnapshot.from_row(row)


__all__ = ["LotSnapshot", "InventoryStore", "SqliteInventoryStore"]
