"""Append-only audit sink fed by booking events."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping

from flask import Flask

from lab_agenda.services.database import db
from lab_agenda.services.events import BookingEvent, booking_event

SENSITIVE_KEYS = {"notes", "note", "reason", "cancellation_reason", "details"}


def _sanitize_meta(meta: Mapping[str, Any] | None) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    if not meta:
        return cleaned
    for key, value in meta.items():
        if key.lower() in SENSITIVE_KEYS:
            cleaned[key] = "[redacted]"
        else:
            cleaned[key] = value
    return cleaned


def write_event(
    actor_id: str | None,
    action: str,
    *,
    entity: str | None = None,
    entity_id: str | None = None,
    result: str = "ok",
    meta: Mapping[str, Any] | None = None,
) -> None:
    payload = json.dumps(_sanitize_meta(meta), ensure_ascii=False)
    conn = db()
    try:
        conn.execute(
            """
            INSERT INTO audit_log(actor_id, action, entity, entity_id, ts, result, meta_json)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                actor_id,
                action,
                entity,
                entity_id,
                datetime.now(timezone.utc).isoformat(),
                result,
                payload,
            ),
        )
        conn.commit()
    finally:
        conn.close()


def record_booking_event(sender: Flask, *, event: BookingEvent) -> None:
    meta = event.to_dict()
    for key in ("type", "booking_id", "actor_id"):
        meta.pop(key, None)
    write_event(event.actor_id, event.type, entity="booking", entity_id=event.booking_id, meta=meta)


def recent_events(limit: int = 50, *, entity_id: str | None = None) -> list[dict[str, Any]]:
    params: list[Any] = []
    sql = "SELECT * FROM audit_log"
    if entity_id:
        sql += " WHERE entity_id = ?"
        params.append(entity_id)
    sql += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    conn = db()
    try:
        rows = conn.execute(sql, params).fetchall()
    finally:
        conn.close()
    return [{**dict(row), "meta": json.loads(row["meta_json"] or "{}")} for row in rows]


def init_audit(app: Flask) -> None:
    booking_event.connect(record_booking_event, sender=app)
