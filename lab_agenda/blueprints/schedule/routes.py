"""Opening hours and holiday calendar administration."""

from __future__ import annotations

from flask import Blueprint, request
from flask_wtf.csrf import generate_csrf
from werkzeug.exceptions import BadRequest

from lab_agenda.blueprints.common import invalid_form, json_payload, ok
from lab_agenda.forms.agenda import HolidayForm
from lab_agenda.services.holidays import list_holidays, remove_holiday, upsert_holiday
from lab_agenda.services.weekly_template import load_weekly_template, save_weekly_template

bp = Blueprint("schedule", __name__, url_prefix="/api")


def _arg(name: str) -> str | None:
    return (request.args.get(name) or "").strip() or None


@bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    return ok(csrf_token=generate_csrf())


@bp.route("/schedule/template", methods=["GET"])
def get_template():
    return ok(**load_weekly_template(_arg("service"), _arg("location")))


@bp.route("/schedule/template", methods=["PUT"])
def put_template():
    payload = json_payload()
    template = payload.get("template")
    if not isinstance(template, dict):
        raise BadRequest("template must be an object keyed by weekday")
    saved = save_weekly_template(
        template,
        service_id=(payload.get("service_id") or "").strip() or None,
        location_id=(payload.get("location_id") or "").strip() or None,
    )
    return ok(**saved)


@bp.route("/holidays", methods=["GET"])
def holidays():
    rows = list_holidays(_arg("from"), _arg("to"))
    return ok(holidays=rows, count=len(rows))


@bp.route("/holidays/<day>", methods=["PUT"])
def put_holiday(day: str):
    form = HolidayForm.from_json(json_payload())
    if not form.validate():
        return invalid_form(form)
    holiday = upsert_holiday(day, form.label.data, (form.scope.data or "").strip() or None)
    return ok(holiday=holiday)


@bp.route("/holidays/<day>", methods=["DELETE"])
def delete_holiday(day: str):
    remove_holiday(day, _arg("scope"))
    return ok(date=day)
