"""Slot generation, availability listing and slot administration."""

from __future__ import annotations

from flask import Blueprint, request
from werkzeug.exceptions import BadRequest

from lab_agenda.blueprints.common import invalid_form, json_payload, ok
from lab_agenda.forms.agenda import GenerateSlotsForm, PurgeSlotsForm, SlotCapacityForm
from lab_agenda.services.slots import (
    deactivate_slot,
    delete_empty_slots,
    generate_slots,
    get_slot,
    list_available_slots,
    update_slot_capacity,
)

bp = Blueprint("slots", __name__, url_prefix="/api/slots")


@bp.route("/generate", methods=["POST"])
def generate():
    payload = json_payload()
    form = GenerateSlotsForm.from_json(payload)
    if not form.validate():
        return invalid_form(form)
    template = payload.get("template")
    if template is not None and not isinstance(template, dict):
        raise BadRequest("template must be an object keyed by weekday")
    created = generate_slots(
        form.service_id.data.strip(),
        form.location_id.data.strip(),
        form.date_from.data,
        form.date_to.data,
        step_minutes=form.step_minutes.data,
        capacity_per_slot=form.capacity.data,
        template=template,
        auto_provision=True if form.auto_provision.data else None,
    )
    return ok(201, created=created)


@bp.route("", methods=["GET"])
def available():
    service_id = (request.args.get("service") or "").strip()
    if not service_id:
        raise BadRequest("service query parameter is required")
    slots = list_available_slots(
        service_id,
        location_id=(request.args.get("location") or "").strip() or None,
        date_from=(request.args.get("from") or "").strip() or None,
        date_to=(request.args.get("to") or "").strip() or None,
    )
    return ok(slots=slots, count=len(slots))


@bp.route("/<slot_id>", methods=["GET"])
def detail(slot_id: str):
    return ok(slot=get_slot(slot_id))


@bp.route("/<slot_id>", methods=["DELETE"])
def deactivate(slot_id: str):
    return ok(outcome=deactivate_slot(slot_id))


@bp.route("/<slot_id>/capacity", methods=["POST"])
def capacity(slot_id: str):
    form = SlotCapacityForm.from_json(json_payload())
    if not form.validate():
        return invalid_form(form)
    return ok(slot=update_slot_capacity(slot_id, form.total_capacity.data))


@bp.route("/purge", methods=["POST"])
def purge():
    form = PurgeSlotsForm.from_json(json_payload())
    if not form.validate():
        return invalid_form(form)
    removed = delete_empty_slots(
        form.date_from.data,
        form.date_to.data,
        service_id=(form.service_id.data or "").strip() or None,
        location_id=(form.location_id.data or "").strip() or None,
    )
    return ok(removed=removed)
