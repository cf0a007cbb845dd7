"""File storage helpers.

Resolves export locations under the configured `STORAGE_PATH` and writes
DataFrames to Excel workbooks.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Union

import pandas as pd

from .config import settings


def export_path(filename: str) -> Path:
    """Return `STORAGE_PATH/exports/<filename>`, creating the directory."""
    out_dir = Path(settings.STORAGE_PATH) / "exports"
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir / filename


def export_to_excel(sheets: Dict[str, pd.DataFrame], path: Union[str, Path]) -> str:
    """Write each DataFrame in `sheets` to its own sheet of the workbook at `path`.

    Ensures the parent directory exists. Returns the absolute path to the
    written file as a string.
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with pd.ExcelWriter(file_path, engine="openpyxl") as writer:
        for sheet_name, df in sheets.items():
            df.to_excel(writer, sheet_name=sheet_name, index=False)

    return str(file_path.resolve())


__all__ = ["export_path", "export_to_excel"]
