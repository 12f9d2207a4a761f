"""Slot generation and slot administration."""

from __future__ import annotations

import sqlite3
import uuid
from datetime import date, datetime, time, timedelta
from typing import Any, Iterator, Mapping

from flask import current_app

from lab_agenda.services.catalog import resolve_location, resolve_service
from lab_agenda.services.database import ISO_FMT, db, write_transaction
from lab_agenda.services.errors import CapacityBelowReserved, InvalidRange, NotFound
from lab_agenda.services.holidays import holiday_dates
from lab_agenda.services.weekly_template import WeeklyTemplate, parse_template, resolve_template


def _parse_day(value: str | date, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise InvalidRange(f"invalid_date:{field}", field=field, value=str(value)) from exc


def _serialize(dt: datetime) -> str:
    return dt.replace(second=0, microsecond=0).strftime(ISO_FMT)


def _now_iso(now: datetime | None) -> str:
    return (now or datetime.now()).strftime(ISO_FMT)


def _format_clock_label(dt: datetime) -> str:
    hour = dt.hour % 12 or 12
    minute = dt.strftime("%M")
    ampm = "PM" if dt.hour >= 12 else "AM"
    return f"{hour}:{minute} {ampm}"


def format_time_range(starts_at: str, ends_at: str) -> str:
    """Return a human-friendly span label (e.g. `2025-01-02 9:00 AM → 9:30 AM`)."""

    start_dt = datetime.strptime(starts_at, ISO_FMT)
    end_dt = datetime.strptime(ends_at, ISO_FMT)
    return f"{start_dt.date().isoformat()} {_format_clock_label(start_dt)} → {_format_clock_label(end_dt)}"


def _iter_days(date_from: date, date_to: date) -> Iterator[date]:
    # Plain civil dates: no tz arithmetic, so DST or server offsets never shift a day.
    current = date_from
    while current <= date_to:
        yield current
        current += timedelta(days=1)


def _walk_range(day: date, start: time, end: time, step: timedelta) -> Iterator[tuple[datetime, datetime]]:
    cursor = datetime.combine(day, start)
    range_end = datetime.combine(day, end)
    while cursor + step <= range_end:
        yield cursor, cursor + step
        cursor += step


def plan_slots(
    date_from: date,
    date_to: date,
    step_minutes: int,
    template: WeeklyTemplate,
    holidays: set[date] | frozenset[date] = frozenset(),
) -> list[tuple[datetime, datetime]]:
    """Expand a template into candidate ``(start, end)`` pairs, skipping holidays."""

    step = timedelta(minutes=step_minutes)
    planned: list[tuple[datetime, datetime]] = []
    for day in _iter_days(date_from, date_to):
        if day in holidays:
            continue
        for start, end in template.get(day.weekday(), []):
            planned.extend(_walk_range(day, start, end, step))
    return planned


def generate_slots(
    service_id: str,
    location_id: str,
    date_from: str | date,
    date_to: str | date,
    step_minutes: int | None = None,
    capacity_per_slot: int | None = None,
    template: Mapping[Any, Any] | None = None,
    *,
    auto_provision: bool | None = None,
) -> int:
    """Materialise slots for ``[date_from, date_to]`` and return how many rows were new.

    Existing rows sharing the natural key (service, location, start, end) are
    left alone, so reserved counts and deactivations survive a re-run.
    """

    start_day = _parse_day(date_from, "date_from")
    end_day = _parse_day(date_to, "date_to")
    if start_day >= end_day:
        raise InvalidRange(
            "date_from_must_precede_date_to",
            date_from=start_day.isoformat(),
            date_to=end_day.isoformat(),
        )
    if capacity_per_slot is None:
        capacity_per_slot = int(current_app.config.get("AGENDA_DEFAULT_CAPACITY", 5))
    if capacity_per_slot < 1:
        raise InvalidRange("capacity_must_be_positive", capacity=capacity_per_slot)
    if step_minutes is not None and step_minutes < 1:
        raise InvalidRange("step_minutes_must_be_positive", step_minutes=step_minutes)
    explicit_template = parse_template(template) if template is not None else None
    max_slots = int(current_app.config.get("AGENDA_MAX_SLOTS_PER_CALL", 5000))

    conn = db()
    try:
        with write_transaction(conn):
            service = resolve_service(conn, service_id, auto_provision=auto_provision)
            resolve_location(conn, location_id, auto_provision=auto_provision)
            if step_minutes is None:
                step_minutes = int(service["default_step_minutes"])
            if explicit_template is not None:
                template_source, weekly = "explicit", explicit_template
            else:
                template_source, weekly = resolve_template(conn, service_id, location_id)
            skipped = holiday_dates(conn, start_day, end_day, location_id)
            planned = plan_slots(start_day, end_day, step_minutes, weekly, skipped)
            if len(planned) > max_slots:
                raise InvalidRange(
                    "range_too_large",
                    candidates=len(planned),
                    limit=max_slots,
                )
            created = 0
            for starts, ends in planned:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO slots(
                        id, service_id, location_id, starts_at, ends_at,
                        total_capacity, reserved, active, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, 0, 1, datetime('now'), datetime('now'))
                    """,
                    (
                        str(uuid.uuid4()),
                        service_id,
                        location_id,
                        _serialize(starts),
                        _serialize(ends),
                        capacity_per_slot,
                    ),
                )
                created += cur.rowcount
    finally:
        conn.close()

    current_app.logger.info(
        "Generated %s new slots for %s@%s %s..%s (step=%s, template=%s, holidays skipped=%s)",
        created,
        service_id,
        location_id,
        start_day.isoformat(),
        end_day.isoformat(),
        step_minutes,
        template_source,
        len(skipped),
    )
    return created


def _slot_dict(row: sqlite3.Row) -> dict[str, Any]:
    keys = row.keys()
    data = {
        "id": row["id"],
        "service_id": row["service_id"],
        "location_id": row["location_id"],
        "starts_at": row["starts_at"],
        "ends_at": row["ends_at"],
        "total_capacity": row["total_capacity"],
        "reserved": row["reserved"],
        "remaining": row["total_capacity"] - row["reserved"],
        "active": bool(row["active"]),
    }
    if "service_name" in keys:
        data["service_name"] = row["service_name"]
    if "location_name" in keys:
        data["location_name"] = row["location_name"]
    return data


def fetch_slot(conn: sqlite3.Connection, slot_id: str) -> sqlite3.Row:
    row = conn.execute(
        """
        SELECT s.*, sv.name AS service_name, l.name AS location_name
        FROM slots s
        LEFT JOIN services sv ON sv.id = s.service_id
        LEFT JOIN locations l ON l.id = s.location_id
        WHERE s.id = ?
        """,
        (slot_id,),
    ).fetchone()
    if not row:
        raise NotFound(f"slot_not_found:{slot_id}", slot_id=slot_id)
    return row


def list_available_slots(
    service_id: str,
    location_id: str | None = None,
    date_from: str | date | None = None,
    date_to: str | date | None = None,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Bookable slots: active, not full, starting in the future."""

    params: list[Any] = [service_id, _now_iso(now)]
    sql = """
        SELECT s.*, sv.name AS service_name, l.name AS location_name
        FROM slots s
        LEFT JOIN services sv ON sv.id = s.service_id
        LEFT JOIN locations l ON l.id = s.location_id
        WHERE s.service_id = ?
          AND s.active = 1
          AND s.reserved < s.total_capacity
          AND s.starts_at > ?
    """
    if location_id:
        sql += " AND s.location_id = ?"
        params.append(location_id)
    if date_from:
        sql += " AND s.starts_at >= ?"
        params.append(f"{_parse_day(date_from, 'date_from').isoformat()}T00:00:00")
    if date_to:
        sql += " AND s.starts_at <= ?"
        params.append(f"{_parse_day(date_to, 'date_to').isoformat()}T23:59:59")
    sql += " ORDER BY s.starts_at ASC, s.location_id ASC"

    conn = db()
    try:
        return [_slot_dict(row) for row in conn.execute(sql, params).fetchall()]
    finally:
        conn.close()


def get_slot(slot_id: str) -> dict[str, Any]:
    conn = db()
    try:
        slot = _slot_dict(fetch_slot(conn, slot_id))
        bookings = conn.execute(
            """
            SELECT id, patient_id, status, created_at
            FROM bookings
            WHERE slot_id = ?
            ORDER BY created_at ASC
            """,
            (slot_id,),
        ).fetchall()
        slot["bookings"] = [dict(row) for row in bookings]
        return slot
    finally:
        conn.close()


def deactivate_slot(slot_id: str) -> str:
    """Hide a slot from listings. Returns ``"deactivated"`` or ``"deleted"``.

    Slots that any booking ever referenced are soft-deleted to keep history;
    untouched slots are removed outright.
    """

    conn = db()
    try:
        with write_transaction(conn):
            fetch_slot(conn, slot_id)
            referenced = conn.execute("SELECT 1 FROM bookings WHERE slot_id=? LIMIT 1", (slot_id,)).fetchone()
            if referenced:
                conn.execute(
                    "UPDATE slots SET active=0, updated_at=datetime('now') WHERE id=?",
                    (slot_id,),
                )
                outcome = "deactivated"
            else:
                conn.execute("DELETE FROM slots WHERE id=?", (slot_id,))
                outcome = "deleted"
    finally:
        conn.close()
    current_app.logger.info("Slot %s %s", slot_id, outcome)
    return outcome


def update_slot_capacity(slot_id: str, total_capacity: int) -> dict[str, Any]:
    if total_capacity < 1:
        raise InvalidRange("capacity_must_be_positive", capacity=total_capacity)
    conn = db()
    try:
        with write_transaction(conn):
            row = fetch_slot(conn, slot_id)
            if total_capacity < row["reserved"]:
                raise CapacityBelowReserved(
                    f"capacity_below_reserved:{row['reserved']}",
                    slot_id=slot_id,
                    reserved=row["reserved"],
                    requested=total_capacity,
                )
            conn.execute(
                "UPDATE slots SET total_capacity=?, updated_at=datetime('now') WHERE id=?",
                (total_capacity, slot_id),
            )
            updated = _slot_dict(fetch_slot(conn, slot_id))
    finally:
        conn.close()
    return updated


def delete_empty_slots(
    date_from: str | date,
    date_to: str | date,
    service_id: str | None = None,
    location_id: str | None = None,
) -> int:
    """Remove slots in the range that no booking has ever referenced."""

    start_day = _parse_day(date_from, "date_from")
    end_day = _parse_day(date_to, "date_to")
    if start_day > end_day:
        raise InvalidRange(
            "date_from_must_precede_date_to",
            date_from=start_day.isoformat(),
            date_to=end_day.isoformat(),
        )
    params: list[Any] = [f"{start_day.isoformat()}T00:00:00", f"{end_day.isoformat()}T23:59:59"]
    sql = """
        DELETE FROM slots
        WHERE starts_at >= ?
          AND starts_at <= ?
          AND NOT EXISTS (SELECT 1 FROM bookings b WHERE b.slot_id = slots.id)
    """
    if service_id:
        sql += " AND service_id = ?"
        params.append(service_id)
    if location_id:
        sql += " AND location_id = ?"
        params.append(location_id)

    conn = db()
    try:
        with write_transaction(conn):
            removed = conn.execute(sql, params).rowcount
    finally:
        conn.close()
    current_app.logger.info(
        "Removed %s empty slots between %s and %s", removed, start_day.isoformat(), end_day.isoformat()
    )
    return removed
