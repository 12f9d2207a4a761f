"""Service and location lookups consumed by slot generation and listings."""

from __future__ import annotations

import sqlite3

from flask import current_app
from sqlalchemy import select

from lab_agenda.models_catalog import Location, Service
from lab_agenda.services.database import session_scope
from lab_agenda.services.errors import InvalidRange, UnknownLocation, UnknownService


def _auto_provision_default() -> bool:
    return bool(current_app.config.get("AGENDA_AUTO_PROVISION_CATALOG", False))


def upsert_service(service_id: str, name: str, default_step_minutes: int = 30) -> dict[str, object]:
    service_id = (service_id or "").strip()
    name = (name or "").strip()
    if not service_id or not name:
        raise InvalidRange("service_id_and_name_required")
    if default_step_minutes < 1:
        raise InvalidRange("step_minutes_must_be_positive", step_minutes=default_step_minutes)
    with session_scope() as session:
        service = session.get(Service, service_id)
        if service is None:
            service = Service(id=service_id, name=name, default_step_minutes=default_step_minutes, active=True)
            session.add(service)
        else:
            service.name = name
            service.default_step_minutes = default_step_minutes
        session.flush()
        return service.to_dict()


def upsert_location(location_id: str, name: str) -> dict[str, object]:
    location_id = (location_id or "").strip()
    name = (name or "").strip()
    if not location_id or not name:
        raise InvalidRange("location_id_and_name_required")
    with session_scope() as session:
        location = session.get(Location, location_id)
        if location is None:
            location = Location(id=location_id, name=name, active=True)
            session.add(location)
        else:
            location.name = name
        session.flush()
        return location.to_dict()


def list_services() -> list[dict[str, object]]:
    with session_scope() as session:
        rows = session.execute(select(Service).order_by(Service.name)).scalars().all()
        return [row.to_dict() for row in rows]


def list_locations() -> list[dict[str, object]]:
    with session_scope() as session:
        rows = session.execute(select(Location).order_by(Location.name)).scalars().all()
        return [row.to_dict() for row in rows]


def resolve_service(
    conn: sqlite3.Connection, service_id: str, *, auto_provision: bool | None = None
) -> sqlite3.Row:
    """Return the service row, creating a placeholder only when provisioning is enabled."""

    row = conn.execute(
        "SELECT id, name, default_step_minutes, active FROM services WHERE id=?",
        (service_id,),
    ).fetchone()
    if row:
        return row
    if auto_provision is None:
        auto_provision = _auto_provision_default()
    if not auto_provision:
        raise UnknownService(f"unknown_service:{service_id}", service_id=service_id)
    default_step = int(current_app.config.get("AGENDA_DEFAULT_STEP_MINUTES", 30))
    conn.execute(
        "INSERT OR IGNORE INTO services(id, name, default_step_minutes, active) VALUES (?, ?, ?, 1)",
        (service_id, f"Service {service_id}", default_step),
    )
    current_app.logger.warning("Auto-provisioned service %s", service_id)
    return conn.execute(
        "SELECT id, name, default_step_minutes, active FROM services WHERE id=?",
        (service_id,),
    ).fetchone()


def resolve_location(
    conn: sqlite3.Connection, location_id: str, *, auto_provision: bool | None = None
) -> sqlite3.Row:
    row = conn.execute("SELECT id, name, active FROM locations WHERE id=?", (location_id,)).fetchone()
    if row:
        return row
    if auto_provision is None:
        auto_provision = _auto_provision_default()
    if not auto_provision:
        raise UnknownLocation(f"unknown_location:{location_id}", location_id=location_id)
    conn.execute(
        "INSERT OR IGNORE INTO locations(id, name, active) VALUES (?, ?, 1)",
        (location_id, f"Location {location_id}"),
    )
    current_app.logger.warning("Auto-provisioned location %s", location_id)
    return conn.execute("SELECT id, name, active FROM locations WHERE id=?", (location_id,)).fetchone()
