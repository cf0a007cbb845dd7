#!/usr/bin/env python3
"""Load the demo vaccine inventory into the configured database.

Usage:
  python scripts/seed_inventory.py [--reset]

With `--reset` every existing lot is deleted first; otherwise lots are only
inserted when the table is empty.
"""
import sys

from vaxtrack.core.db import init_db, get_connection
from vaxtrack.repo.schema import create_tables
from vaxtrack.repo.inventory import create_inventory_item, list_inventory_items


DEMO_LOTS = [
    {"vaccine_id": "COVID-19 Pfizer", "lot_number": "PF001", "quantity_on_hand": 250, "expiration_date": "2024-12-31",
     "location": "Freezer A", "minimum_stock": 50, "vaccine_family": "COVID-19", "last_updated": "2024-01-15"},
    {"vaccine_id": "Influenza Quad", "lot_number": "FLU002", "quantity_on_hand": 150, "expiration_date": "2024-10-31",
     "location": "Refrigerator B", "minimum_stock": 100, "vaccine_family": "Influenza", "last_updated": "2024-01-14"},
    {"vaccine_id": "Hepatitis B", "lot_number": "HEP003", "quantity_on_hand": 75, "expiration_date": "2024-08-15",
     "location": "Refrigerator A", "minimum_stock": 25, "vaccine_family": "Hepatitis", "last_updated": "2024-01-13"},
    {"vaccine_id": "MMR", "lot_number": "MMR004", "quantity_on_hand": 200, "expiration_date": "2024-11-30",
     "location": "Refrigerator B", "minimum_stock": 50, "vaccine_family": "MMR", "last_updated": "2024-01-12"},
    {"vaccine_id": "Tdap", "lot_number": "TDA005", "quantity_on_hand": 30, "expiration_date": "2024-09-30",
     "location": "Refrigerator A", "minimum_stock": 40, "vaccine_family": "Tetanus", "last_updated": "2024-01-11"},
]


def main(reset: bool = False) -> int:
    init_db()
    conn = get_connection()
    try:
        create_tables(conn)
        if reset:
            conn.execute("DELETE FROM inventory_items")
            conn.commit()
        elif list_inventory_items(conn):
            print("Inventory already populated; use --reset to reload the demo lots")
            return 0
        for lot in DEMO_LOTS:
            create_inventory_item(conn, **lot)
    finally:
        conn.close()
    print(f"Loaded {len(DEMO_LOTS)} demo lots")
    return len(DEMO_LOTS)


if __name__ == "__main__":
    main(reset="--reset" in sys.argv[1:])
