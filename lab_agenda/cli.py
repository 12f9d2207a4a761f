"""Flask CLI commands for migrations, catalog setup and agenda maintenance."""

from __future__ import annotations

import click
from flask.cli import AppGroup, with_appcontext

from lab_agenda.services.catalog import upsert_location, upsert_service
from lab_agenda.services.errors import AgendaError
from lab_agenda.services.migrations import run_migrations
from lab_agenda.services.slots import delete_empty_slots, generate_slots


def _fail(exc: AgendaError) -> click.ClickException:
    return click.ClickException(f"{exc.code}: {exc.message}")


def register_cli(app) -> None:
    db_group = AppGroup("db")

    @db_group.command("upgrade")
    @with_appcontext
    def upgrade() -> None:
        run_migrations(app)
        click.echo("Database upgraded to head.")

    app.cli.add_command(db_group)

    catalog_group = AppGroup("catalog", help="Manage bookable services and locations.")

    @catalog_group.command("add-service")
    @click.argument("service_id")
    @click.argument("name")
    @click.option("--step", "step_minutes", type=int, default=30, show_default=True)
    @with_appcontext
    def add_service(service_id: str, name: str, step_minutes: int) -> None:
        try:
            service = upsert_service(service_id, name, step_minutes)
        except AgendaError as exc:
            raise _fail(exc) from exc
        click.echo(f"Service '{service['id']}' saved ({service['name']}, {service['default_step_minutes']} min).")

    @catalog_group.command("add-location")
    @click.argument("location_id")
    @click.argument("name")
    @with_appcontext
    def add_location(location_id: str, name: str) -> None:
        try:
            location = upsert_location(location_id, name)
        except AgendaError as exc:
            raise _fail(exc) from exc
        click.echo(f"Location '{location['id']}' saved ({location['name']}).")

    app.cli.add_command(catalog_group)

    agenda_group = AppGroup("agenda", help="Generate and prune appointment slots.")

    @agenda_group.command("generate")
    @click.option("--service", "service_id", required=True)
    @click.option("--location", "location_id", required=True)
    @click.option("--from", "date_from", required=True, help="First day, YYYY-MM-DD")
    @click.option("--to", "date_to", required=True, help="Last day, YYYY-MM-DD")
    @click.option("--step", "step_minutes", type=int, default=None)
    @click.option("--capacity", type=int, default=None)
    @click.option("--auto-provision", is_flag=True, default=False)
    @with_appcontext
    def generate(
        service_id: str,
        location_id: str,
        date_from: str,
        date_to: str,
        step_minutes: int | None,
        capacity: int | None,
        auto_provision: bool,
    ) -> None:
        try:
            created = generate_slots(
                service_id,
                location_id,
                date_from,
                date_to,
                step_minutes=step_minutes,
                capacity_per_slot=capacity,
                auto_provision=True if auto_provision else None,
            )
        except AgendaError as exc:
            raise _fail(exc) from exc
        click.echo(f"Created {created} slots.")

    @agenda_group.command("purge")
    @click.option("--from", "date_from", required=True)
    @click.option("--to", "date_to", required=True)
    @click.option("--service", "service_id", default=None)
    @click.option("--location", "location_id", default=None)
    @with_appcontext
    def purge(date_from: str, date_to: str, service_id: str | None, location_id: str | None) -> None:
        try:
            removed = delete_empty_slots(date_from, date_to, service_id=service_id, location_id=location_id)
        except AgendaError as exc:
            raise _fail(exc) from exc
        click.echo(f"Removed {removed} empty slots.")

    app.cli.add_command(agenda_group)
