"""Booking transactor: create, cancel, reschedule and status transitions.

Every mutation runs in one write transaction that combines the booking row
change with the matching capacity ledger update. Events are published only
after the transaction has committed.
"""

from __future__ import annotations

import sqlite3
import time
import uuid
from datetime import date, datetime
from typing import Any

from flask import current_app

from lab_agenda.services.capacity import release, seats, try_reserve
from lab_agenda.services.conflicts import find_conflict
from lab_agenda.services.database import ISO_FMT, db, write_transaction
from lab_agenda.services.errors import (
    AlreadyCancelled,
    BookingInPast,
    InvalidRange,
    InvalidStatusTransition,
    NotFound,
    ScheduleConflict,
    SlotFull,
    SlotInactive,
    SlotInPast,
    Timeout,
)
from lab_agenda.services.events import (
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    BOOKING_CREATED,
    BOOKING_NO_SHOW,
    BOOKING_RESCHEDULED,
    BookingEvent,
    publish,
)
from lab_agenda.services.slots import fetch_slot, format_time_range

SCHEDULED = "SCHEDULED"
CONFIRMED = "CONFIRMED"
CANCELLED = "CANCELLED"
COMPLETED = "COMPLETED"
NO_SHOW = "NO_SHOW"

STATUSES = (SCHEDULED, CONFIRMED, CANCELLED, COMPLETED, NO_SHOW)
TERMINAL_STATUSES = frozenset({CANCELLED, COMPLETED, NO_SHOW})
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    SCHEDULED: frozenset({CONFIRMED, CANCELLED, COMPLETED, NO_SHOW}),
    CONFIRMED: frozenset({CANCELLED, COMPLETED, NO_SHOW}),
}

_RETRY_BASE_DELAY = 0.05

_BOOKING_SELECT = """
    SELECT b.*, s.starts_at, s.ends_at, s.service_id, s.location_id,
           sv.name AS service_name, l.name AS location_name
    FROM bookings b
    JOIN slots s ON s.id = b.slot_id
    LEFT JOIN services sv ON sv.id = s.service_id
    LEFT JOIN locations l ON l.id = s.location_id
"""


def _now_iso(now: datetime | None) -> str:
    return (now or datetime.now()).strftime(ISO_FMT)


def _day(value: str | date, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise InvalidRange(f"invalid_date:{field}", field=field, value=value) from exc


def _booking_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "slot_id": row["slot_id"],
        "patient_id": row["patient_id"],
        "status": row["status"],
        "notes": row["notes"],
        "cancellation_reason": row["cancellation_reason"],
        "cancelled_by": row["cancelled_by"],
        "starts_at": row["starts_at"],
        "ends_at": row["ends_at"],
        "time_label": format_time_range(row["starts_at"], row["ends_at"]),
        "service_id": row["service_id"],
        "service_name": row["service_name"],
        "location_id": row["location_id"],
        "location_name": row["location_name"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _fetch_booking(conn: sqlite3.Connection, booking_id: str) -> sqlite3.Row:
    row = conn.execute(_BOOKING_SELECT + " WHERE b.id = ?", (booking_id,)).fetchone()
    if not row:
        raise NotFound(f"booking_not_found:{booking_id}", booking_id=booking_id)
    return row


def _ensure_bookable(slot: sqlite3.Row, now_iso: str) -> None:
    if not slot["active"]:
        raise SlotInactive(f"slot_inactive:{slot['id']}", slot_id=slot["id"])
    if slot["starts_at"] <= now_iso:
        raise SlotInPast(
            f"slot_in_past:{slot['id']}",
            slot_id=slot["id"],
            starts_at=slot["starts_at"],
        )


def _ensure_no_conflict(
    conn: sqlite3.Connection, patient_id: str, slot: sqlite3.Row, *, exclude_booking_id: str | None = None
) -> None:
    conflict = find_conflict(conn, patient_id, slot, exclude_booking_id=exclude_booking_id)
    if conflict is None:
        return
    raise ScheduleConflict(
        f"conflicts_with:{conflict['id']}",
        booking_id=conflict["id"],
        slot_id=conflict["slot_id"],
        service_id=conflict["service_id"],
        service_name=conflict["service_name"],
        starts_at=conflict["starts_at"],
        ends_at=conflict["ends_at"],
        time_range=format_time_range(conflict["starts_at"], conflict["ends_at"]),
    )


def _reserve_or_raise(conn: sqlite3.Connection, slot: sqlite3.Row, now: datetime | None) -> None:
    if try_reserve(conn, slot["id"], now=now):
        return
    reserved, total = seats(conn, slot["id"]) or (slot["reserved"], slot["total_capacity"])
    raise SlotFull(
        f"slot_full:{slot['id']}",
        slot_id=slot["id"],
        service_name=slot["service_name"],
        time_range=format_time_range(slot["starts_at"], slot["ends_at"]),
        reserved=reserved,
        total_capacity=total,
    )


def _create_once(
    patient_id: str,
    slot_id: str,
    notes: str | None,
    status: str,
    now: datetime | None,
) -> dict[str, Any]:
    now_iso = _now_iso(now)
    conn = db()
    try:
        with write_transaction(conn):
            slot = fetch_slot(conn, slot_id)
            _ensure_bookable(slot, now_iso)
            _reserve_or_raise(conn, slot, now)
            _ensure_no_conflict(conn, patient_id, slot)
            booking_id = str(uuid.uuid4())
            conn.execute(
                """
                INSERT INTO bookings(
                    id, slot_id, patient_id, status, notes, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, datetime('now'), datetime('now'))
                """,
                (booking_id, slot_id, patient_id, status, notes),
            )
            row = _fetch_booking(conn, booking_id)
    finally:
        conn.close()
    return _booking_dict(row)


def create_booking(
    patient_id: str,
    slot_id: str,
    notes: str | None = None,
    *,
    confirmed: bool = False,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Claim one seat on ``slot_id`` for ``patient_id``.

    Operators booking on behalf of a patient pass ``confirmed=True`` to skip
    the SCHEDULED stage. Lock contention is retried with exponential backoff;
    every other failure is raised to the caller untouched.
    """

    patient_id = (patient_id or "").strip()
    if not patient_id:
        raise InvalidRange("patient_id_required")
    notes = (notes or "").strip() or None
    status = CONFIRMED if confirmed else SCHEDULED
    retries = int(current_app.config.get("AGENDA_CREATE_RETRIES", 3))

    attempt = 0
    while True:
        try:
            booking = _create_once(patient_id, slot_id, notes, status, now)
            break
        except Timeout as exc:
            if not exc.retryable or attempt >= retries:
                raise
            delay = _RETRY_BASE_DELAY * (2**attempt)
            attempt += 1
            current_app.logger.info(
                "Slot %s busy, retrying booking for %s (attempt %s) in %.2fs",
                slot_id,
                patient_id,
                attempt,
                delay,
            )
            time.sleep(delay)

    current_app.logger.info("Booking %s created for %s on slot %s", booking["id"], patient_id, slot_id)
    publish(
        BookingEvent(
            type=BOOKING_CREATED,
            booking_id=booking["id"],
            slot_id=slot_id,
            patient_id=patient_id,
            actor_id=actor_id or patient_id,
        )
    )
    return booking


def cancel_booking(
    booking_id: str,
    reason: str | None,
    actor_id: str | None,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Cancel a pending booking and give its seat back."""

    now_iso = _now_iso(now)
    reason = (reason or "").strip() or None
    conn = db()
    try:
        with write_transaction(conn):
            booking = _fetch_booking(conn, booking_id)
            if booking["status"] in TERMINAL_STATUSES:
                raise AlreadyCancelled(
                    f"booking_is_{booking['status'].lower()}",
                    booking_id=booking_id,
                    status=booking["status"],
                )
            if booking["starts_at"] <= now_iso:
                raise BookingInPast(
                    f"booking_in_past:{booking_id}",
                    booking_id=booking_id,
                    starts_at=booking["starts_at"],
                )
            cur = conn.execute(
                """
                UPDATE bookings
                SET status='CANCELLED',
                    cancellation_reason=?,
                    cancelled_by=?,
                    updated_at=datetime('now')
                WHERE id=? AND status=?
                """,
                (reason, actor_id, booking_id, booking["status"]),
            )
            if cur.rowcount != 1:
                raise AlreadyCancelled("booking_is_cancelled", booking_id=booking_id, status=CANCELLED)
            release(conn, booking["slot_id"])
            row = _fetch_booking(conn, booking_id)
    finally:
        conn.close()

    current_app.logger.info("Booking %s cancelled by %s", booking_id, actor_id or "unknown")
    publish(
        BookingEvent(
            type=BOOKING_CANCELLED,
            booking_id=booking_id,
            slot_id=row["slot_id"],
            patient_id=row["patient_id"],
            actor_id=actor_id,
        )
    )
    return _booking_dict(row)


def reschedule_booking(
    booking_id: str,
    new_slot_id: str,
    *,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Move a booking to ``new_slot_id``: reserve new, repoint, release old.

    All three steps share one transaction; when the new slot has no seat left
    nothing is written and the old seat stays taken.
    """

    now_iso = _now_iso(now)
    moved = False
    conn = db()
    try:
        with write_transaction(conn):
            booking = _fetch_booking(conn, booking_id)
            if booking["status"] == CANCELLED:
                raise AlreadyCancelled("booking_is_cancelled", booking_id=booking_id, status=CANCELLED)
            if booking["status"] in TERMINAL_STATUSES:
                raise InvalidStatusTransition(
                    f"cannot_reschedule_{booking['status'].lower()}",
                    booking_id=booking_id,
                    status=booking["status"],
                )
            if booking["starts_at"] <= now_iso:
                raise BookingInPast(
                    f"booking_in_past:{booking_id}",
                    booking_id=booking_id,
                    starts_at=booking["starts_at"],
                )
            old_slot_id = booking["slot_id"]
            if new_slot_id != old_slot_id:
                new_slot = fetch_slot(conn, new_slot_id)
                _ensure_bookable(new_slot, now_iso)
                _reserve_or_raise(conn, new_slot, now)
                _ensure_no_conflict(conn, booking["patient_id"], new_slot, exclude_booking_id=booking_id)
                conn.execute(
                    "UPDATE bookings SET slot_id=?, updated_at=datetime('now') WHERE id=?",
                    (new_slot_id, booking_id),
                )
                release(conn, old_slot_id)
                moved = True
            row = _fetch_booking(conn, booking_id)
    finally:
        conn.close()

    if moved:
        current_app.logger.info("Booking %s moved from slot %s to %s", booking_id, old_slot_id, new_slot_id)
        publish(
            BookingEvent(
                type=BOOKING_RESCHEDULED,
                booking_id=booking_id,
                slot_id=new_slot_id,
                patient_id=row["patient_id"],
                actor_id=actor_id,
                previous_slot_id=old_slot_id,
            )
        )
    return _booking_dict(row)


def _transition(booking_id: str, target: str, event_type: str, actor_id: str | None) -> dict[str, Any]:
    conn = db()
    try:
        with write_transaction(conn):
            booking = _fetch_booking(conn, booking_id)
            current = booking["status"]
            if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
                raise InvalidStatusTransition(
                    f"invalid_transition:{current}->{target}",
                    booking_id=booking_id,
                    status=current,
                    target=target,
                )
            conn.execute(
                "UPDATE bookings SET status=?, updated_at=datetime('now') WHERE id=? AND status=?",
                (target, booking_id, current),
            )
            row = _fetch_booking(conn, booking_id)
    finally:
        conn.close()

    current_app.logger.info("Booking %s %s -> %s", booking_id, current, target)
    publish(
        BookingEvent(
            type=event_type,
            booking_id=booking_id,
            slot_id=row["slot_id"],
            patient_id=row["patient_id"],
            actor_id=actor_id,
        )
    )
    return _booking_dict(row)


def confirm_booking(booking_id: str, *, actor_id: str | None = None) -> dict[str, Any]:
    return _transition(booking_id, CONFIRMED, BOOKING_CONFIRMED, actor_id)


def complete_booking(booking_id: str, *, actor_id: str | None = None) -> dict[str, Any]:
    return _transition(booking_id, COMPLETED, BOOKING_COMPLETED, actor_id)


def mark_no_show(booking_id: str, *, actor_id: str | None = None) -> dict[str, Any]:
    return _transition(booking_id, NO_SHOW, BOOKING_NO_SHOW, actor_id)


def get_booking(booking_id: str) -> dict[str, Any]:
    conn = db()
    try:
        return _booking_dict(_fetch_booking(conn, booking_id))
    finally:
        conn.close()


def list_bookings(
    *,
    patient_id: str | None = None,
    status: str | None = None,
    service_id: str | None = None,
    location_id: str | None = None,
    date_from: str | date | None = None,
    date_to: str | date | None = None,
) -> list[dict[str, Any]]:
    params: list[Any] = []
    clauses: list[str] = []
    if patient_id:
        clauses.append("b.patient_id = ?")
        params.append(patient_id)
    if status:
        status = status.upper()
        if status not in STATUSES:
            raise InvalidRange(f"invalid_status:{status}", status=status)
        clauses.append("b.status = ?")
        params.append(status)
    if service_id:
        clauses.append("s.service_id = ?")
        params.append(service_id)
    if location_id:
        clauses.append("s.location_id = ?")
        params.append(location_id)
    if date_from:
        clauses.append("s.starts_at >= ?")
        params.append(f"{_day(date_from, 'date_from').isoformat()}T00:00:00")
    if date_to:
        clauses.append("s.starts_at <= ?")
        params.append(f"{_day(date_to, 'date_to').isoformat()}T23:59:59")
    sql = _BOOKING_SELECT
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY s.starts_at DESC"

    conn = db()
    try:
        return [_booking_dict(row) for row in conn.execute(sql, params).fetchall()]
    finally:
        conn.close()


def list_patient_bookings(patient_id: str) -> list[dict[str, Any]]:
    return list_bookings(patient_id=patient_id)
