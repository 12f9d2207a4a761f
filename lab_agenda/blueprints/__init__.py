"""Blueprint registration for the agenda JSON API."""

from __future__ import annotations

from flask import Flask


def register_blueprints(app: Flask) -> None:
    from .bookings.routes import bp as bookings_bp
    from .schedule.routes import bp as schedule_bp
    from .slots.routes import bp as slots_bp

    app.register_blueprint(slots_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(schedule_bp)
