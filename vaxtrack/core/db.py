"""Database helpers.

Provides a minimal `get_connection` and `init_db` functions.
"""
from __future__ import annotations

import sqlite3
from pathlib import Path

from .config import settings


def get_connection() -> sqlite3.Connection:
    """Return a new sqlite3 connection using configured DB path."""
    return sqlite3.connect(str(settings.DB_PATH))


def init_db() -> None:
    """Ensure the database file and its parent directory exist.

    Tables are created separately by `repo.schema.create_tables`.
    """
    db_path = Path(settings.DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    if not db_path.exists():
        # Connecting will create the sqlite file on disk.
        conn = sqlite3.connect(str(db_path))
        conn.close()


__all__ = ["get_connection", "init_db"]
