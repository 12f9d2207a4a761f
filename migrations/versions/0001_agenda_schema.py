"""Catalog, holidays, weekly templates, slots, bookings and audit log."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_agenda_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    existing = set(sa.inspect(bind).get_table_names())

    if "services" not in existing:
        op.create_table(
            "services",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("default_step_minutes", sa.Integer(), nullable=False, server_default="30"),
            sa.Column("active", sa.Integer(), nullable=False, server_default="1"),
        )

    if "locations" not in existing:
        op.create_table(
            "locations",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("active", sa.Integer(), nullable=False, server_default="1"),
        )

    if "holidays" not in existing:
        op.create_table(
            "holidays",
            sa.Column("holiday_date", sa.Text(), nullable=False),
            sa.Column("scope", sa.Text(), nullable=False, server_default="all"),
            sa.Column("label", sa.Text(), nullable=False),
            sa.Column("active", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("updated_at", sa.Text(), nullable=False, server_default=sa.text("(datetime('now'))")),
            sa.PrimaryKeyConstraint("holiday_date", "scope"),
        )

    if "weekly_templates" not in existing:
        op.create_table(
            "weekly_templates",
            sa.Column("scope_key", sa.Text(), primary_key=True),
            sa.Column("payload_json", sa.Text(), nullable=False),
            sa.Column("updated_at", sa.Text(), nullable=False, server_default=sa.text("(datetime('now'))")),
        )

    if "slots" not in existing:
        op.create_table(
            "slots",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("service_id", sa.Text(), nullable=False),
            sa.Column("location_id", sa.Text(), nullable=False),
            sa.Column("starts_at", sa.Text(), nullable=False),
            sa.Column("ends_at", sa.Text(), nullable=False),
            sa.Column("total_capacity", sa.Integer(), nullable=False),
            sa.Column("reserved", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("active", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.Text(), nullable=False, server_default=sa.text("(datetime('now'))")),
            sa.Column("updated_at", sa.Text(), nullable=False, server_default=sa.text("(datetime('now'))")),
            sa.ForeignKeyConstraint(["service_id"], ["services.id"]),
            sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
            sa.UniqueConstraint("service_id", "location_id", "starts_at", "ends_at", name="uq_slots_natural_key"),
            sa.CheckConstraint(
                "total_capacity >= 1 AND reserved >= 0 AND reserved <= total_capacity",
                name="ck_slots_capacity",
            ),
        )
        op.create_index("idx_slots_listing", "slots", ["service_id", "location_id", "starts_at"])

    if "bookings" not in existing:
        op.create_table(
            "bookings",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("slot_id", sa.Text(), nullable=False),
            sa.Column("patient_id", sa.Text(), nullable=False),
            sa.Column("status", sa.Text(), nullable=False, server_default="SCHEDULED"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("cancellation_reason", sa.Text(), nullable=True),
            sa.Column("cancelled_by", sa.Text(), nullable=True),
            sa.Column("created_at", sa.Text(), nullable=False, server_default=sa.text("(datetime('now'))")),
            sa.Column("updated_at", sa.Text(), nullable=False, server_default=sa.text("(datetime('now'))")),
            sa.ForeignKeyConstraint(["slot_id"], ["slots.id"]),
            sa.CheckConstraint(
                "status IN ('SCHEDULED','CONFIRMED','CANCELLED','COMPLETED','NO_SHOW')",
                name="ck_bookings_status",
            ),
        )
        op.create_index(
            "uq_bookings_patient_slot_open",
            "bookings",
            ["patient_id", "slot_id"],
            unique=True,
            sqlite_where=sa.text("status != 'CANCELLED'"),
        )
        op.create_index("idx_bookings_patient", "bookings", ["patient_id"])
        op.create_index("idx_bookings_slot", "bookings", ["slot_id"])

    if "audit_log" not in existing:
        op.create_table(
            "audit_log",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("actor_id", sa.Text(), nullable=True),
            sa.Column("action", sa.Text(), nullable=False),
            sa.Column("entity", sa.Text(), nullable=True),
            sa.Column("entity_id", sa.Text(), nullable=True),
            sa.Column("ts", sa.Text(), nullable=False),
            sa.Column("result", sa.Text(), nullable=False, server_default="ok"),
            sa.Column("meta_json", sa.Text(), nullable=False, server_default="{}"),
        )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_index("idx_bookings_slot", table_name="bookings")
    op.drop_index("idx_bookings_patient", table_name="bookings")
    op.drop_index("uq_bookings_patient_slot_open", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("idx_slots_listing", table_name="slots")
    op.drop_table("slots")
    op.drop_table("weekly_templates")
    op.drop_table("holidays")
    op.drop_table("locations")
    op.drop_table("services")
