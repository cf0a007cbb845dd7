import pytest
from fastapi.testclient import TestClient
from fastapi import FastAPI

from vaxtrack.api import reconciliation as recon_api
from vaxtrack.core.config import settings
from vaxtrack.core.db import init_db, get_connection
from vaxtrack.repo.schema import create_tables
from vaxtrack.repo.inventory import create_inventory_item, get_inventory_item, update_quantity


app = FastAPI()
app.include_router(recon_api.router)
client = TestClient(app)


@pytest.fixture
def lot_ids(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setattr(settings, "STORAGE_PATH", str(tmp_path / "storage"))
    recon_api.reset_engine()

    init_db()
    conn = get_connection()
    try:
        create_tables(conn)
        ids = [
            create_inventory_item(conn, "COVID-19 Pfizer", "PF001", 250),
            create_inventory_item(conn, "Influenza Quad", "FLU002", 150),
            create_inventory_item(conn, "Hepatitis B", "HEP003", 75),
        ]
    finally:
        conn.close()
    yield ids
    recon_api.reset_engine()


def _quantity(lot_id):
    conn = get_connection()
    try:
        return get_inventory_item(conn, lot_id)["quantity_on_hand"]
    finally:
        conn.close()


def test_full_workflow_commits_and_reloads(lot_ids):
    resp = client.post("/reconciliation/session", json={"month": "2024-01"})
    assert resp.status_code == 200
    session = resp.json()["session"]
    assert session["phase"] == "SETUP"
    assert session["month_label"] == "January 2024"
    assert [e["system_count"] for e in session["entries"]] == [250, 150, 75]

    assert client.post("/reconciliation/session/phase", json={"phase": "COUNTING"}).status_code == 200

    for lot_id, count in zip(lot_ids, [245, 150, 75]):
        resp = client.put(f"/reconciliation/session/entries/{lot_id}/count", json={"count": count})
        assert resp.status_code == 200
    assert resp.json()["summary"]["progress_percent"] == 100

    validation = client.get("/reconciliation/validation").json()
    assert validation == {"valid": False, "violations": ["1 items with discrepancies need explanations"]}

    discrepancies = client.get("/reconciliation/discrepancies").json()["items"]
    assert [d["lot_id"] for d in discrepancies] == [lot_ids[0]]
    assert discrepancies[0]["difference"] == -5

    assert client.post("/reconciliation/session/phase", json={"phase": "REVIEW"}).status_code == 200

    resp = client.post("/reconciliation/commit")
    assert resp.status_code == 422
    assert resp.json()["detail"]["violations"] == ["1 items with discrepancies need explanations"]

    client.post("/reconciliation/session/phase", json={"phase": "COUNTING"})
    resp = client.put(f"/reconciliation/session/entries/{lot_ids[0]}/reason", json={"reason": "Counting error"})
    assert resp.json()["entry"]["discrepancy_reason"] == "Counting error"
    client.post("/reconciliation/session/phase", json={"phase": "REVIEW"})

    resp = client.post("/reconciliation/commit")
    assert resp.status_code == 200
    body = resp.json()
    assert body["commit"]["updated_count"] == 1
    assert body["commit"]["total_variance"] == -5
    assert body["session"]["phase"] == "SETUP"
    assert body["session"]["entries"][0]["system_count"] == 245

    assert _quantity(lot_ids[0]) == 245
    assert _quantity(lot_ids[1]) == 150


def test_input_errors_map_to_http_statuses(lot_ids):
    assert client.get("/reconciliation/session").status_code == 404
    assert client.get("/reconciliation/summary").status_code == 409

    client.post("/reconciliation/session", json={"month": "2024-01"})

    # counting is not open yet
    assert client.put(f"/reconciliation/session/entries/{lot_ids[0]}/count", json={"count": 3}).status_code == 409
    assert client.put("/reconciliation/session/month", json={"month": "Jan"}).status_code == 422
    assert client.post("/reconciliation/session/phase", json={"phase": "DONE"}).status_code == 422
    assert client.post("/reconciliation/session/phase", json={"phase": "REVIEW"}).status_code == 409

    client.post("/reconciliation/session/phase", json={"phase": "COUNTING"})
    assert client.put("/reconciliation/session/entries/999/count", json={"count": 3}).status_code == 404
    resp = client.put(f"/reconciliation/session/entries/{lot_ids[0]}/count", json={"count": -4})
    assert resp.status_code == 422
    assert "negative" in resp.json()["detail"]
    assert client.put(f"/reconciliation/session/entries/{lot_ids[0]}/count", json={"count": "abc"}).status_code == 422

    # review needs at least one count
    resp = client.post("/reconciliation/session/phase", json={"phase": "REVIEW"})
    assert resp.status_code == 422


def test_conflicting_write_is_reported_per_lot(lot_ids):
    client.post("/reconciliation/session", json={"month": "2024-01"})
    client.post("/reconciliation/session/phase", json={"phase": "COUNTING"})
    for lot_id, count in zip(lot_ids, [240, 140, 75]):
        client.put(f"/reconciliation/session/entries/{lot_id}/count", json={"count": count})
    for lot_id in lot_ids[:2]:
        client.put(f"/reconciliation/session/entries/{lot_id}/reason", json={"reason": "Other"})
    client.post("/reconciliation/session/phase", json={"phase": "REVIEW"})

    # another workflow touches lot 2 after the snapshot was taken
    conn = get_connection()
    try:
        update_quantity(conn, lot_ids[1], 149, "2024-01-31T10:00:00")
    finally:
        conn.close()

    resp = client.post("/reconciliation/commit")
    assert resp.status_code == 502
    detail = resp.json()["detail"]
    assert detail["succeeded"] == [lot_ids[0]]
    assert detail["failed"] == [lot_ids[1]]
    assert str(lot_ids[1]) in detail["failures"]
    assert detail["posted"] == [lot_ids[0]]
    assert detail["total_variance"] == -10

    assert _quantity(lot_ids[0]) == 240
    assert _quantity(lot_ids[1]) == 149

    session = client.get("/reconciliation/session").json()["session"]
    assert session["phase"] == "REVIEW"
    assert session["entries"][1]["physical_count"] == 140
    assert session["entries"][0]["reconciled"] is True
    # the failed lot now compares against what the store holds
    assert session["entries"][1]["system_count"] == 149
    assert session["entries"][1]["difference"] == -9

    resp = client.post("/reconciliation/commit")
    assert resp.status_code == 200
    commit = resp.json()["commit"]
    assert commit["updated_lot_ids"] == sorted(lot_ids[:2])
    assert commit["total_variance"] == -19
    assert _quantity(lot_ids[1]) == 140


def test_abandon_reasons_and_export(lot_ids):
    reasons = client.get("/reconciliation/reasons").json()
    assert "Counting error" in reasons["reasons"]
    assert {s["key"] for s in reasons["statuses"]} == {"pending", "reconciled", "surplus", "shortage"}

    assert client.get("/reconciliation/export").status_code == 404

    client.post("/reconciliation/session", json={"month": "2024-01"})
    resp = client.get("/reconciliation/export")
    assert resp.status_code == 200
    assert "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet" in resp.headers.get("content-type", "")

    assert client.delete("/reconciliation/session").json() == {"session": None}
    assert client.get("/reconciliation/session").status_code == 404
    assert _quantity(lot_ids[0]) == 250

    assert client.get("/health").json() == {"status": "ok"}
