"""Agenda error taxonomy and lightweight error logging for diagnostics."""

from __future__ import annotations

from datetime import datetime, UTC
from pathlib import Path
import traceback
from typing import Any

from flask import current_app


class AgendaError(Exception):
    """Base exception for scheduling operations.

    ``code`` is the stable machine identifier rendered to API clients,
    ``context`` names the resources involved so callers can build an
    actionable message.
    """

    code = "agenda_error"
    http_status = 400

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.message = message or self.code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            "context": self.context,
        }


class InvalidRange(AgendaError):
    code = "invalid_range"


class InvalidTemplate(AgendaError):
    code = "invalid_template"


class UnknownService(AgendaError):
    code = "unknown_service"
    http_status = 404


class UnknownLocation(AgendaError):
    code = "unknown_location"
    http_status = 404


class NotFound(AgendaError):
    code = "not_found"
    http_status = 404


class SlotInactive(AgendaError):
    code = "slot_inactive"
    http_status = 409


class SlotInPast(AgendaError):
    code = "slot_in_past"
    http_status = 409


class SlotFull(AgendaError):
    code = "slot_full"
    http_status = 409


class ScheduleConflict(AgendaError):
    code = "schedule_conflict"
    http_status = 409


class AlreadyCancelled(AgendaError):
    code = "already_cancelled"
    http_status = 409


class BookingInPast(AgendaError):
    code = "booking_in_past"
    http_status = 409


class InvalidStatusTransition(AgendaError):
    code = "invalid_status_transition"
    http_status = 409


class CapacityBelowReserved(AgendaError):
    code = "capacity_below_reserved"
    http_status = 409


class HolidayInPast(AgendaError):
    code = "holiday_in_past"
    http_status = 409


class Timeout(AgendaError):
    """Transaction gave up waiting for the write lock or ran past its deadline."""

    code = "timeout"
    http_status = 503

    @property
    def retryable(self) -> bool:
        return self.context.get("reason") == "locked"


def record_exception(context: str, exc: BaseException) -> None:
    """Append exception details to data/logs/app_errors.log for offline inspection."""

    try:
        root = Path(current_app.config["DATA_ROOT"]) / "logs"
        root.mkdir(parents=True, exist_ok=True)
        log_path = root / "app_errors.log"
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{datetime.now(UTC).isoformat()}] {context}\n")
            handle.write("".join(traceback.format_exception(exc)))
            handle.write("\n")
    except Exception:
        # Never let logging failures break the request cycle.
        current_app.logger.exception("Could not write diagnostics for %s", context)
