"""Database helpers backed by SQLAlchemy."""

from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from typing import Iterator

from flask import current_app

from lab_agenda.extensions import db as sa_db
from lab_agenda.services.errors import Timeout

ISO_FMT = "%Y-%m-%dT%H:%M:%S"

# Progress handler granularity, in SQLite virtual machine instructions.
_PROGRESS_STEPS = 1000


def db() -> sqlite3.Connection:
    """Return a raw sqlite3 connection with PRAGMAs applied."""

    return sa_db.raw_connection()


@contextmanager
def session_scope():
    """Provide a transactional scope for ORM usage."""

    session = sa_db.session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _tx_timeout() -> float:
    return float(current_app.config.get("AGENDA_TX_TIMEOUT_SECONDS", 10))


def _timeout_reason(exc: sqlite3.OperationalError) -> str | None:
    text = str(exc).lower()
    if "locked" in text or "busy" in text:
        return "locked"
    if "interrupted" in text:
        return "deadline"
    return None


@contextmanager
def write_transaction(conn: sqlite3.Connection, *, timeout: float | None = None) -> Iterator[sqlite3.Connection]:
    """Run the block as one serialized write transaction.

    ``BEGIN IMMEDIATE`` takes SQLite's write lock up front so every read made
    inside the block sees the state the block will commit against. The block is
    interrupted once ``timeout`` seconds have elapsed.
    """

    limit = _tx_timeout() if timeout is None else timeout
    deadline = time.monotonic() + limit
    conn.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_STEPS)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()
    except sqlite3.OperationalError as exc:
        reason = _timeout_reason(exc)
        if reason is None:
            raise
        if conn.in_transaction:
            conn.rollback()
        raise Timeout("transaction_timeout", reason=reason, seconds=limit) from exc
    finally:
        conn.set_progress_handler(None, 0)
