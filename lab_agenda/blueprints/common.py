"""Request helpers shared by the agenda JSON blueprints."""

from __future__ import annotations

from typing import Any

from flask import jsonify, request


def json_payload() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def actor_id() -> str | None:
    """Caller identity as forwarded by the upstream identity proxy."""

    value = (request.headers.get("X-Actor-Id") or "").strip()
    return value or None


def invalid_form(form) -> tuple[Any, int]:
    return jsonify({"success": False, "error": "invalid_payload", "fields": form.error_messages()}), 400


def ok(status: int = 200, **body: Any) -> tuple[Any, int]:
    return jsonify({"success": True, **body}), status
