"""Holiday calendar: dates excluded from slot generation."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime

from lab_agenda.services.database import db
from lab_agenda.services.errors import HolidayInPast, InvalidRange, NotFound

GLOBAL_SCOPE = "all"


def _parse_day(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise InvalidRange(f"invalid_date:{value}", value=str(value)) from exc


def _row_to_dict(row: sqlite3.Row) -> dict[str, object]:
    return {
        "date": row["holiday_date"],
        "scope": row["scope"],
        "label": row["label"],
        "active": bool(row["active"]),
    }


def upsert_holiday(
    day: str | date,
    label: str,
    scope: str | None = None,
    *,
    active: bool = True,
    today: date | None = None,
) -> dict[str, object]:
    """Create or relabel a holiday. Past entries are frozen."""

    holiday_day = _parse_day(day)
    today = today or date.today()
    if holiday_day < today:
        raise HolidayInPast(f"holiday_in_past:{holiday_day.isoformat()}", date=holiday_day.isoformat())
    label = (label or "").strip()
    if not label:
        raise InvalidRange("holiday_label_required")
    scope = (scope or GLOBAL_SCOPE).strip() or GLOBAL_SCOPE

    conn = db()
    try:
        conn.execute(
            """
            INSERT INTO holidays(holiday_date, scope, label, active, updated_at)
            VALUES (?, ?, ?, ?, datetime('now'))
            ON CONFLICT(holiday_date, scope) DO UPDATE SET
                label=excluded.label,
                active=excluded.active,
                updated_at=datetime('now')
            """,
            (holiday_day.isoformat(), scope, label, 1 if active else 0),
        )
        conn.commit()
        row = conn.execute(
            "SELECT * FROM holidays WHERE holiday_date=? AND scope=?",
            (holiday_day.isoformat(), scope),
        ).fetchone()
        return _row_to_dict(row)
    finally:
        conn.close()


def remove_holiday(day: str | date, scope: str | None = None, *, today: date | None = None) -> None:
    holiday_day = _parse_day(day)
    today = today or date.today()
    if holiday_day < today:
        raise HolidayInPast(f"holiday_in_past:{holiday_day.isoformat()}", date=holiday_day.isoformat())
    scope = (scope or GLOBAL_SCOPE).strip() or GLOBAL_SCOPE
    conn = db()
    try:
        cur = conn.execute(
            "DELETE FROM holidays WHERE holiday_date=? AND scope=?",
            (holiday_day.isoformat(), scope),
        )
        if cur.rowcount == 0:
            raise NotFound(f"holiday_not_found:{holiday_day.isoformat()}", date=holiday_day.isoformat(), scope=scope)
        conn.commit()
    finally:
        conn.close()


def list_holidays(date_from: str | date | None = None, date_to: str | date | None = None) -> list[dict[str, object]]:
    params: list[str] = []
    sql = "SELECT * FROM holidays WHERE 1=1"
    if date_from:
        sql += " AND holiday_date >= ?"
        params.append(_parse_day(date_from).isoformat())
    if date_to:
        sql += " AND holiday_date <= ?"
        params.append(_parse_day(date_to).isoformat())
    sql += " ORDER BY holiday_date ASC, scope ASC"
    conn = db()
    try:
        return [_row_to_dict(row) for row in conn.execute(sql, params).fetchall()]
    finally:
        conn.close()


def holiday_dates(conn: sqlite3.Connection, date_from: date, date_to: date, location_id: str) -> set[date]:
    """Active holidays in ``[date_from, date_to]`` that apply to ``location_id``."""

    rows = conn.execute(
        """
        SELECT holiday_date
        FROM holidays
        WHERE active = 1
          AND holiday_date >= ?
          AND holiday_date <= ?
          AND scope IN (?, ?)
        """,
        (date_from.isoformat(), date_to.isoformat(), GLOBAL_SCOPE, location_id),
    ).fetchall()
    return {date.fromisoformat(row["holiday_date"]) for row in rows}


def is_holiday(day: str | date, location_id: str = GLOBAL_SCOPE) -> bool:
    holiday_day = _parse_day(day)
    conn = db()
    try:
        return holiday_day in holiday_dates(conn, holiday_day, holiday_day, location_id)
    finally:
        conn.close()
