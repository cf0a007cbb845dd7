from datetime import datetime, timezone

import pytest

from vaxtrack.core.config import settings
from vaxtrack.core.db import init_db, get_connection
from vaxtrack.repo import schema
from vaxtrack.repo.inventory import create_inventory_item, get_inventory_item
from vaxtrack.pipeline.errors import ConflictError, NotFoundError, StoreUnavailableError
from vaxtrack.pipeline.store import SqliteInventoryStore


def _seed(tmp_path, monkeypatch, quantities):
    monkeypatch.setattr(settings, "DB_PATH", str(tmp_path / "test.db"))
    init_db()
    conn = get_connection()
    try:
        schema.create_tables(conn)
        return [create_inventory_item(conn, f"VAX-{i}", f"LOT{i}", q) for i, q in enumerate(quantities)]
    finally:
        conn.close()


def test_list_all_returns_snapshots(tmp_path, monkeypatch):
    ids = _seed(tmp_path, monkeypatch, [250, 150])
    snapshots = SqliteInventoryStore().list_all()
    assert [s.id for s in snapshots] == ids
    assert [s.system_count for s in snapshots] == [250, 150]
    assert snapshots[0].lot_number == "LOT0"
    assert snapshots[0].version == 1


def test_update_writes_quantity_and_timestamp(tmp_path, monkeypatch):
    ids = _seed(tmp_path, monkeypatch, [250])
    ts = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)

    updated = SqliteInventoryStore().update(ids[0], 245, ts, expected_version=1)
    assert updated.system_count == 245
    assert updated.version == 2

    conn = get_connection()
    try:
        row = get_inventory_item(conn, ids[0])
    finally:
        conn.close()
    assert row["quantity_on_hand"] == 245
    assert row["last_updated"] == ts.isoformat()


def test_update_missing_lot_raises_not_found(tmp_path, monkeypatch):
    _seed(tmp_path, monkeypatch, [])
    store = SqliteInventoryStore()
    with pytest.raises(NotFoundError):
        store.update(42, 1, datetime.now(timezone.utc))
    with pytest.raises(NotFoundError):
        store.get_by_id(42)


def test_update_with_stale_version_raises_conflict(tmp_path, monkeypatch):
    ids = _seed(tmp_path, monkeypatch, [100])
    store = SqliteInventoryStore()
    store.update(ids[0], 90, datetime.now(timezone.utc), expected_version=1)

    with pytest.raises(ConflictError) as excinfo:
        store.update(ids[0], 80, datetime.now(timezone.utc), expected_version=1)
    assert excinfo.value.actual_version == 2
    assert store.get_by_id(ids[0]).system_count == 90


def test_unreadable_database_is_unavailable(tmp_path, monkeypatch):
    # a directory cannot be opened as a database file
    bad = tmp_path / "not_a_db"
    bad.mkdir()
    monkeypatch.setattr(settings, "DB_PATH", str(bad))
    with pytest.raises(StoreUnavailableError):
        SqliteInventoryStore().list_all()
