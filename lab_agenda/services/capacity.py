"""Capacity ledger: the only code that touches ``slots.reserved``.

Both helpers run on the caller's connection, inside the transaction that also
writes the booking row, so seat counts and booking state commit together.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime

from lab_agenda.services.database import ISO_FMT


def try_reserve(conn: sqlite3.Connection, slot_id: str, *, now: datetime | None = None) -> bool:
    """Take one seat if the slot is active, in the future and not full."""

    now_iso = (now or datetime.now()).strftime(ISO_FMT)
    cur = conn.execute(
        """
        UPDATE slots
        SET reserved = reserved + 1,
            updated_at = datetime('now')
        WHERE id = ?
          AND active = 1
          AND reserved < total_capacity
          AND starts_at > ?
        """,
        (slot_id, now_iso),
    )
    return cur.rowcount == 1


def release(conn: sqlite3.Connection, slot_id: str) -> None:
    """Give one seat back; never drops below zero."""

    conn.execute(
        """
        UPDATE slots
        SET reserved = MAX(reserved - 1, 0),
            updated_at = datetime('now')
        WHERE id = ?
        """,
        (slot_id,),
    )


def seats(conn: sqlite3.Connection, slot_id: str) -> tuple[int, int] | None:
    row = conn.execute("SELECT reserved, total_capacity FROM slots WHERE id=?", (slot_id,)).fetchone()
    if not row:
        return None
    return row["reserved"], row["total_capacity"]
