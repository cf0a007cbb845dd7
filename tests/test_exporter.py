from pathlib import Path

import pandas as pd

from vaxtrack.core.config import settings
from vaxtrack.pipeline.exporter import build_session_frames, generate_session_xlsx
from vaxtrack.pipeline.reconciliation import ReconciliationEngine
from vaxtrack.pipeline.store import LotSnapshot


class StaticStore:
    def __init__(self, lots):
        self.lots = lots

    def list_all(self):
        return list(self.lots)


def _engine():
    engine = ReconciliationEngine(
        StaticStore(
            [
                LotSnapshot(id=1, vaccine_id="COVID-19 Pfizer", lot_number="PF001", system_count=250),
                LotSnapshot(id=2, vaccine_id="Influenza Quad", lot_number="FLU002", system_count=150),
            ]
        )
    )
    engine.start_session("2024-01")
    engine.begin_counting()
    engine.set_physical_count(1, 245)
    engine.set_discrepancy_reason(1, "Counting error")
    return engine


def test_build_session_frames():
    engine = _engine()
    try:
        frames = build_session_frames(engine)
    finally:
        engine.close()

    summary = frames["summary"]
    assert summary.loc[0, "month_label"] == "January 2024"
    assert summary.loc[0, "items_with_counts"] == 1
    assert summary.loc[0, "progress_percent"] == 50

    entries = frames["entries"]
    assert list(entries["Lot Number"]) == ["PF001", "FLU002"]
    assert list(entries["Status"]) == ["Shortage", "Not counted"]
    assert entries.loc[0, "Difference"] == -5
    assert entries.loc[0, "Discrepancy Reason"] == "Counting error"


def test_generate_session_xlsx_writes_two_sheets(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "STORAGE_PATH", str(tmp_path / "storage"))
    engine = _engine()
    try:
        out = generate_session_xlsx(engine)
    finally:
        engine.close()

    p = Path(out["path"])
    assert p.exists()
    assert out["filename"] == "reconciliation_2024-01.xlsx"
    assert out["rows"] == 2

    sheets = pd.read_excel(p, sheet_name=None)
    assert set(sheets) == {"summary", "entries"}
    assert len(sheets["entries"]) == 2
