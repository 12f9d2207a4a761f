"""Bootstrap helper to ensure the agenda tables exist for first-time runs."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS services (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        default_step_minutes INTEGER NOT NULL DEFAULT 30,
        active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS locations (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS holidays (
        holiday_date TEXT NOT NULL,
        scope TEXT NOT NULL DEFAULT 'all',
        label TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1,
        updated_at TEXT NOT NULL DEFAULT (datetime('now')),
        PRIMARY KEY (holiday_date, scope)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS weekly_templates (
        scope_key TEXT PRIMARY KEY,
        payload_json TEXT NOT NULL,
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS slots (
        id TEXT PRIMARY KEY,
        service_id TEXT NOT NULL,
        location_id TEXT NOT NULL,
        starts_at TEXT NOT NULL,
        ends_at TEXT NOT NULL,
        total_capacity INTEGER NOT NULL,
        reserved INTEGER NOT NULL DEFAULT 0,
        active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY(service_id) REFERENCES services(id),
        FOREIGN KEY(location_id) REFERENCES locations(id),
        CONSTRAINT uq_slots_natural_key UNIQUE (service_id, location_id, starts_at, ends_at),
        CONSTRAINT ck_slots_capacity CHECK (total_capacity >= 1 AND reserved >= 0 AND reserved <= total_capacity)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_slots_listing
    ON slots(service_id, location_id, starts_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS bookings (
        id TEXT PRIMARY KEY,
        slot_id TEXT NOT NULL,
        patient_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'SCHEDULED',
        notes TEXT,
        cancellation_reason TEXT,
        cancelled_by TEXT,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY(slot_id) REFERENCES slots(id),
        CONSTRAINT ck_bookings_status CHECK (status IN ('SCHEDULED','CONFIRMED','CANCELLED','COMPLETED','NO_SHOW'))
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_bookings_patient_slot_open
    ON bookings(patient_id, slot_id) WHERE status != 'CANCELLED'
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_bookings_patient ON bookings(patient_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_bookings_slot ON bookings(slot_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        actor_id TEXT,
        action TEXT NOT NULL,
        entity TEXT,
        entity_id TEXT,
        ts TEXT NOT NULL,
        result TEXT NOT NULL DEFAULT 'ok',
        meta_json TEXT NOT NULL DEFAULT '{}'
    )
    """,
)


def _execute_statements(conn: sqlite3.Connection, statements: Iterable[str]) -> None:
    for stmt in statements:
        conn.execute(stmt)


def ensure_base_tables(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        _execute_statements(conn, SCHEMA_STATEMENTS)
        conn.commit()
    finally:
        conn.close()
