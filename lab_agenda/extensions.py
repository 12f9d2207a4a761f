"""Application extensions: the agenda SQLite store, CSRF and the rate limiter."""

from __future__ import annotations

import sqlite3

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf import CSRFProtect
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker


def sqlite_pragmas(app: Flask) -> list[tuple[str, object]]:
    """PRAGMAs applied to every new connection, in order.

    busy_timeout comes first so the WAL switch itself waits on a held lock.
    Lock waits share the transaction deadline.
    """

    timeout_ms = int(float(app.config.get("AGENDA_TX_TIMEOUT_SECONDS", 10)) * 1000)
    return [
        ("busy_timeout", timeout_ms),
        ("journal_mode", "WAL"),
        ("foreign_keys", "ON"),
    ]


class AgendaStore:
    """SQLite engine shared by the ledger code (raw connections) and the catalog (ORM sessions)."""

    def __init__(self) -> None:
        self._engine: Engine | None = None
        self._sessions: scoped_session[Session] | None = None

    def init_app(self, app: Flask) -> None:
        self._engine = create_engine(
            app.config["SQLALCHEMY_DATABASE_URI"],
            **app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}),
        )
        pragmas = sqlite_pragmas(app)

        @event.listens_for(self._engine, "connect")
        def _apply_pragmas(dbapi_connection, connection_record) -> None:
            for name, value in pragmas:
                dbapi_connection.execute(f"PRAGMA {name}={value}")

        self._sessions = scoped_session(sessionmaker(bind=self._engine, autoflush=False))
        app.teardown_appcontext(self._remove_session)

    def _remove_session(self, exception: BaseException | None) -> None:
        if self._sessions is not None:
            self._sessions.remove()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("agenda store is not initialised")
        return self._engine

    def session(self) -> Session:
        if self._sessions is None:
            raise RuntimeError("agenda store is not initialised")
        return self._sessions()

    def raw_connection(self) -> sqlite3.Connection:
        """Pooled DBAPI connection whose rows are ``sqlite3.Row``."""

        raw = self.engine.raw_connection()
        raw.driver_connection.row_factory = sqlite3.Row
        return raw


db = AgendaStore()
csrf = CSRFProtect()
# Storage comes from RATELIMIT_STORAGE_URI in the app config.
limiter = Limiter(get_remote_address)


def init_extensions(app: Flask) -> None:
    db.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
