"""Booking API: create, read and move bookings through their lifecycle."""

from __future__ import annotations

from flask import Blueprint, current_app, request

from lab_agenda.blueprints.common import actor_id, invalid_form, json_payload, ok
from lab_agenda.extensions import limiter
from lab_agenda.forms.agenda import CancelBookingForm, CreateBookingForm, RescheduleBookingForm
from lab_agenda.services.bookings import (
    cancel_booking,
    complete_booking,
    confirm_booking,
    create_booking,
    get_booking,
    list_bookings,
    mark_no_show,
    reschedule_booking,
)

bp = Blueprint("bookings", __name__, url_prefix="/api")


def _booking_rate_limit() -> str:
    return current_app.config.get("AGENDA_BOOKING_RATE_LIMIT", "30 per minute")


@bp.route("/bookings", methods=["POST"])
@limiter.limit(_booking_rate_limit)
def create():
    form = CreateBookingForm.from_json(json_payload())
    if not form.validate():
        return invalid_form(form)
    booking = create_booking(
        form.patient_id.data.strip(),
        form.slot_id.data.strip(),
        form.notes.data,
        confirmed=bool(form.confirmed.data),
        actor_id=actor_id(),
    )
    return ok(201, booking=booking)


@bp.route("/bookings/<booking_id>", methods=["GET"])
def detail(booking_id: str):
    return ok(booking=get_booking(booking_id))


@bp.route("/patients/<patient_id>/bookings", methods=["GET"])
def patient_bookings(patient_id: str):
    bookings = list_bookings(
        patient_id=patient_id,
        status=(request.args.get("status") or "").strip() or None,
        date_from=(request.args.get("from") or "").strip() or None,
        date_to=(request.args.get("to") or "").strip() or None,
    )
    return ok(bookings=bookings, count=len(bookings))


@bp.route("/bookings/<booking_id>/cancel", methods=["POST"])
def cancel(booking_id: str):
    form = CancelBookingForm.from_json(json_payload())
    if not form.validate():
        return invalid_form(form)
    return ok(booking=cancel_booking(booking_id, form.reason.data, actor_id()))


@bp.route("/bookings/<booking_id>/reschedule", methods=["POST"])
def reschedule(booking_id: str):
    form = RescheduleBookingForm.from_json(json_payload())
    if not form.validate():
        return invalid_form(form)
    booking = reschedule_booking(booking_id, form.slot_id.data.strip(), actor_id=actor_id())
    return ok(booking=booking)


@bp.route("/bookings/<booking_id>/confirm", methods=["POST"])
def confirm(booking_id: str):
    return ok(booking=confirm_booking(booking_id, actor_id=actor_id()))


@bp.route("/bookings/<booking_id>/complete", methods=["POST"])
def complete(booking_id: str):
    return ok(booking=complete_booking(booking_id, actor_id=actor_id()))


@bp.route("/bookings/<booking_id>/no-show", methods=["POST"])
def no_show(booking_id: str):
    return ok(booking=mark_no_show(booking_id, actor_id=actor_id()))
