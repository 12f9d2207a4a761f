"""Patient schedule conflict detection."""

from __future__ import annotations

import sqlite3
from typing import Any, Mapping


def find_conflict(
    conn: sqlite3.Connection,
    patient_id: str,
    slot: Mapping[str, Any],
    *,
    exclude_booking_id: str | None = None,
) -> sqlite3.Row | None:
    """Return the patient's first open booking overlapping ``slot`` on the same day.

    Overlap is half-open: ``existing.start < candidate.end AND existing.end >
    candidate.start``, so back-to-back appointments do not clash while a second
    booking on the very same slot does.
    """

    starts_at = slot["starts_at"]
    ends_at = slot["ends_at"]
    params: list[Any] = [patient_id, starts_at[:10], ends_at, starts_at]
    sql = """
        SELECT b.id, b.slot_id, b.status, s.starts_at, s.ends_at,
               s.service_id, sv.name AS service_name
        FROM bookings b
        JOIN slots s ON s.id = b.slot_id
        LEFT JOIN services sv ON sv.id = s.service_id
        WHERE b.patient_id = ?
          AND b.status != 'CANCELLED'
          AND substr(s.starts_at, 1, 10) = ?
          AND s.starts_at < ?
          AND s.ends_at > ?
    """
    if exclude_booking_id:
        sql += " AND b.id != ?"
        params.append(exclude_booking_id)
    sql += " ORDER BY s.starts_at ASC LIMIT 1"
    return conn.execute(sql, params).fetchone()


def has_conflict(
    conn: sqlite3.Connection,
    patient_id: str,
    slot: Mapping[str, Any],
    *,
    exclude_booking_id: str | None = None,
) -> bool:
    return find_conflict(conn, patient_id, slot, exclude_booking_id=exclude_booking_id) is not None
