"""Weekly schedule templates: opening hours per weekday.

A template maps a weekday (``0`` = Monday .. ``6`` = Sunday, matching
``date.weekday()``) to at most two ``(start, end)`` clock ranges. An empty list
means the day is closed.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import time
from typing import Any, Mapping

from lab_agenda.services.database import db
from lab_agenda.services.errors import InvalidTemplate

DEFAULT_SCOPE = "default"
MAX_RANGES_PER_DAY = 2

WeeklyTemplate = dict[int, list[tuple[time, time]]]

_WORKDAY = [("07:00", "12:00"), ("14:00", "17:00")]
BUILTIN_HOURS: dict[int, list[tuple[str, str]]] = {
    0: _WORKDAY,
    1: _WORKDAY,
    2: _WORKDAY,
    3: _WORKDAY,
    4: _WORKDAY,
    5: _WORKDAY,
    6: [("07:00", "12:00")],
}


def scope_key(service_id: str | None = None, location_id: str | None = None) -> str:
    if service_id and location_id:
        return f"{service_id}:{location_id}"
    return DEFAULT_SCOPE


def _parse_clock(value: Any, weekday: int) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    text = str(value or "").strip()
    try:
        hour, minute = text.split(":")
        return time(int(hour), int(minute))
    except ValueError as exc:
        raise InvalidTemplate(f"invalid_time:{text}", weekday=weekday, value=text) from exc


def parse_template(raw: Mapping[Any, Any]) -> WeeklyTemplate:
    """Validate a JSON-ish mapping and return a normalised template.

    Keys may be ints or digit strings. Missing weekdays are closed.
    """

    if not isinstance(raw, Mapping):
        raise InvalidTemplate("template_must_be_mapping")
    template: WeeklyTemplate = {day: [] for day in range(7)}
    for key, ranges in raw.items():
        try:
            weekday = int(key)
        except (TypeError, ValueError) as exc:
            raise InvalidTemplate(f"invalid_weekday:{key}", weekday=str(key)) from exc
        if weekday not in template:
            raise InvalidTemplate(f"invalid_weekday:{key}", weekday=weekday)
        if ranges is None:
            ranges = []
        if not isinstance(ranges, (list, tuple)):
            raise InvalidTemplate("invalid_ranges", weekday=weekday)
        ranges = list(ranges)
        if len(ranges) > MAX_RANGES_PER_DAY:
            raise InvalidTemplate("too_many_ranges", weekday=weekday, count=len(ranges))
        parsed: list[tuple[time, time]] = []
        for item in ranges:
            if isinstance(item, Mapping):
                start_raw, end_raw = item.get("start"), item.get("end")
            else:
                try:
                    start_raw, end_raw = item
                except (TypeError, ValueError) as exc:
                    raise InvalidTemplate("invalid_range_entry", weekday=weekday) from exc
            start = _parse_clock(start_raw, weekday)
            end = _parse_clock(end_raw, weekday)
            if start >= end:
                raise InvalidTemplate(
                    "range_start_after_end",
                    weekday=weekday,
                    start=start.strftime("%H:%M"),
                    end=end.strftime("%H:%M"),
                )
            parsed.append((start, end))
        parsed.sort()
        for (_, first_end), (second_start, _) in zip(parsed, parsed[1:]):
            if second_start < first_end:
                raise InvalidTemplate("ranges_overlap", weekday=weekday)
        template[weekday] = parsed
    return template


def serialize_template(template: WeeklyTemplate) -> dict[str, list[list[str]]]:
    return {
        str(day): [[start.strftime("%H:%M"), end.strftime("%H:%M")] for start, end in template.get(day, [])]
        for day in range(7)
    }


def builtin_template() -> WeeklyTemplate:
    return parse_template(BUILTIN_HOURS)


def save_weekly_template(
    raw: Mapping[Any, Any], *, service_id: str | None = None, location_id: str | None = None
) -> dict[str, object]:
    """Persist a template; slots generated earlier are left untouched."""

    template = parse_template(raw)
    key = scope_key(service_id, location_id)
    payload = json.dumps(serialize_template(template))
    conn = db()
    try:
        conn.execute(
            """
            INSERT INTO weekly_templates(scope_key, payload_json, updated_at)
            VALUES (?, ?, datetime('now'))
            ON CONFLICT(scope_key) DO UPDATE SET
                payload_json=excluded.payload_json,
                updated_at=datetime('now')
            """,
            (key, payload),
        )
        conn.commit()
    finally:
        conn.close()
    return {"scope": key, "template": serialize_template(template)}


def _load_scope(conn: sqlite3.Connection, key: str) -> WeeklyTemplate | None:
    row = conn.execute("SELECT payload_json FROM weekly_templates WHERE scope_key=?", (key,)).fetchone()
    if not row:
        return None
    return parse_template(json.loads(row["payload_json"]))


def resolve_template(
    conn: sqlite3.Connection, service_id: str | None = None, location_id: str | None = None
) -> tuple[str, WeeklyTemplate]:
    """Pick the most specific persisted template, falling back to the built-in one."""

    keys = [DEFAULT_SCOPE]
    if service_id and location_id:
        keys.insert(0, scope_key(service_id, location_id))
    for key in keys:
        template = _load_scope(conn, key)
        if template is not None:
            return key, template
    return "builtin", builtin_template()


def load_weekly_template(service_id: str | None = None, location_id: str | None = None) -> dict[str, object]:
    conn = db()
    try:
        key, template = resolve_template(conn, service_id, location_id)
    finally:
        conn.close()
    return {"scope": key, "template": serialize_template(template)}
