"""Payload forms for the agenda JSON API."""

from __future__ import annotations

from typing import Any, Mapping

from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict
from wtforms import BooleanField, DateField, IntegerField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional

_FALSE_VALUES = ("false", "False", "0", "")


def json_formdata(payload: Mapping[str, Any] | None) -> ImmutableMultiDict:
    """Flatten a JSON object into form data; nulls are treated as absent."""

    items = []
    for key, value in (payload or {}).items():
        if value is None or isinstance(value, (dict, list)):
            continue
        items.append((key, str(value)))
    return ImmutableMultiDict(items)


class ApiForm(FlaskForm):
    """JSON bodies are CSRF-checked by CSRFProtect through the X-CSRFToken header."""

    class Meta:
        csrf = False

    @classmethod
    def from_json(cls, payload: Mapping[str, Any] | None) -> "ApiForm":
        return cls(formdata=json_formdata(payload))

    def error_messages(self) -> dict[str, list[str]]:
        return {name: [str(err) for err in errors] for name, errors in self.errors.items()}


class GenerateSlotsForm(ApiForm):
    service_id = StringField("Service", validators=[DataRequired(), Length(max=64)])
    location_id = StringField("Location", validators=[DataRequired(), Length(max=64)])
    date_from = DateField("From", validators=[DataRequired()], format="%Y-%m-%d")
    date_to = DateField("To", validators=[DataRequired()], format="%Y-%m-%d")
    step_minutes = IntegerField("Step (minutes)", validators=[Optional(), NumberRange(min=1, max=24 * 60)])
    capacity = IntegerField("Capacity per slot", validators=[Optional(), NumberRange(min=1)])
    auto_provision = BooleanField("Create missing catalog entries", false_values=_FALSE_VALUES)


class PurgeSlotsForm(ApiForm):
    date_from = DateField("From", validators=[DataRequired()], format="%Y-%m-%d")
    date_to = DateField("To", validators=[DataRequired()], format="%Y-%m-%d")
    service_id = StringField("Service", validators=[Optional(), Length(max=64)])
    location_id = StringField("Location", validators=[Optional(), Length(max=64)])


class SlotCapacityForm(ApiForm):
    total_capacity = IntegerField("Capacity", validators=[DataRequired(), NumberRange(min=1)])


class CreateBookingForm(ApiForm):
    patient_id = StringField("Patient", validators=[DataRequired(), Length(max=64)])
    slot_id = StringField("Slot", validators=[DataRequired(), Length(max=64)])
    notes = TextAreaField("Notes", validators=[Optional(), Length(max=1000)])
    confirmed = BooleanField("Confirmed by operator", false_values=_FALSE_VALUES)


class CancelBookingForm(ApiForm):
    reason = TextAreaField("Reason", validators=[DataRequired(), Length(max=500)])


class RescheduleBookingForm(ApiForm):
    slot_id = StringField("New slot", validators=[DataRequired(), Length(max=64)])


class HolidayForm(ApiForm):
    label = StringField("Label", validators=[DataRequired(), Length(max=200)])
    scope = StringField("Scope", validators=[Optional(), Length(max=64)])
