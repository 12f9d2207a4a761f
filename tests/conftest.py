import os
import pathlib
import shutil
import sys
import uuid
from datetime import date, datetime, timedelta

import pytest

root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from lab_agenda import create_app
from lab_agenda.services.catalog import upsert_location, upsert_service
from lab_agenda.services.database import ISO_FMT, db as raw_db


@pytest.fixture(scope="session")
def _template_db(tmp_path_factory):
    """Build a fully-migrated DB once per test session.

    Every function-scoped ``app`` fixture copies this file instead of
    running Alembic again.
    """
    db_path = tmp_path_factory.mktemp("template") / "app.db"
    old_db = os.environ.get("LAB_DB_PATH")
    old_key = os.environ.get("LAB_SECRET_KEY")
    os.environ["LAB_DB_PATH"] = str(db_path)
    os.environ["LAB_SECRET_KEY"] = "test-secret"
    try:
        _app = create_app()
        with _app.app_context():
            pass
    finally:
        if old_db is None:
            os.environ.pop("LAB_DB_PATH", None)
        else:
            os.environ["LAB_DB_PATH"] = old_db
        if old_key is None:
            os.environ.pop("LAB_SECRET_KEY", None)
        else:
            os.environ["LAB_SECRET_KEY"] = old_key
    return db_path


@pytest.fixture
def app(tmp_path, monkeypatch, _template_db):
    db_path = tmp_path / "app.db"
    shutil.copy2(_template_db, db_path)
    monkeypatch.setenv("LAB_DB_PATH", str(db_path))
    monkeypatch.setenv("LAB_SECRET_KEY", "test-secret")
    monkeypatch.setenv("LAB_AUTO_MIGRATE", "0")  # Already migrated
    app = create_app()
    app.config.update(TESTING=True, WTF_CSRF_ENABLED=True)
    yield app


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def csrf_headers(client):
    resp = client.get("/api/csrf-token")
    assert resp.status_code == 200
    return {"X-CSRFToken": resp.get_json()["csrf_token"]}


@pytest.fixture
def catalog(ctx):
    upsert_service("blood", "Blood draw", 30)
    upsert_location("main", "Main lab")
    return {"service_id": "blood", "location_id": "main"}


@pytest.fixture
def tomorrow():
    return date.today() + timedelta(days=1)


@pytest.fixture
def make_slot(catalog):
    """Insert one slot row directly; returns its id."""

    def _make(
        starts: datetime,
        minutes: int = 30,
        capacity: int = 1,
        *,
        service_id: str = "blood",
        location_id: str = "main",
        active: bool = True,
    ) -> str:
        slot_id = str(uuid.uuid4())
        conn = raw_db()
        try:
            conn.execute(
                """
                INSERT INTO slots(
                    id, service_id, location_id, starts_at, ends_at,
                    total_capacity, reserved, active, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 0, ?, datetime('now'), datetime('now'))
                """,
                (
                    slot_id,
                    service_id,
                    location_id,
                    starts.strftime(ISO_FMT),
                    (starts + timedelta(minutes=minutes)).strftime(ISO_FMT),
                    capacity,
                    1 if active else 0,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return slot_id

    return _make


@pytest.fixture
def slot_row():
    def _row(slot_id: str):
        conn = raw_db()
        try:
            return conn.execute("SELECT * FROM slots WHERE id=?", (slot_id,)).fetchone()
        finally:
            conn.close()

    return _row
