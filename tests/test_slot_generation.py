from datetime import date, datetime

import pytest

from lab_agenda.services.catalog import list_locations, list_services
from lab_agenda.services.database import db
from lab_agenda.services.errors import (
    CapacityBelowReserved,
    InvalidRange,
    InvalidTemplate,
    UnknownLocation,
    UnknownService,
)
from lab_agenda.services.holidays import upsert_holiday
from lab_agenda.services.slots import (
    deactivate_slot,
    delete_empty_slots,
    format_time_range,
    generate_slots,
    get_slot,
    list_available_slots,
    plan_slots,
    update_slot_capacity,
)
from lab_agenda.services.weekly_template import builtin_template, parse_template, save_weekly_template

MORNING = {day: [["09:00", "10:00"]] for day in range(7)}


def _slots(where: str = "1=1", params: tuple = ()):
    conn = db()
    try:
        return conn.execute(f"SELECT * FROM slots WHERE {where} ORDER BY starts_at", params).fetchall()
    finally:
        conn.close()


def test_holiday_week_example(catalog):
    upsert_holiday("2025-01-01", "New year", today=date(2024, 12, 1))
    created = generate_slots("blood", "main", "2025-01-01", "2025-01-07", step_minutes=30, capacity_per_slot=1)
    # Thu..Sat and Mon, Tue: 10 morning + 6 afternoon; Sunday: mornings only.
    assert created == 5 * 16 + 10
    rows = _slots()
    assert not [row for row in rows if row["starts_at"].startswith("2025-01-01")]
    assert {row["total_capacity"] for row in rows} == {1}
    assert {row["reserved"] for row in rows} == {0}


def test_generation_is_idempotent(catalog):
    first = generate_slots("blood", "main", "2030-01-07", "2030-01-08", template=MORNING)
    second = generate_slots("blood", "main", "2030-01-07", "2030-01-08", template=MORNING)
    assert first == 4
    assert second == 0
    assert len(_slots()) == 4


def test_regeneration_keeps_reserved_and_deactivated_slots(catalog):
    generate_slots("blood", "main", "2030-01-07", "2030-01-08", template=MORNING)
    rows = _slots()
    conn = db()
    try:
        conn.execute("UPDATE slots SET reserved=1 WHERE id=?", (rows[0]["id"],))
        conn.execute(
            "INSERT INTO bookings(id, slot_id, patient_id, status, created_at, updated_at) "
            "VALUES ('b1', ?, 'p1', 'CANCELLED', datetime('now'), datetime('now'))",
            (rows[1]["id"],),
        )
        conn.commit()
    finally:
        conn.close()
    assert deactivate_slot(rows[1]["id"]) == "deactivated"

    assert generate_slots("blood", "main", "2030-01-07", "2030-01-08", template=MORNING) == 0
    after = {row["id"]: row for row in _slots()}
    assert after[rows[0]["id"]]["reserved"] == 1
    assert after[rows[1]["id"]]["active"] == 0


def test_trailing_partial_step_is_dropped():
    template = parse_template({0: [["09:00", "10:15"]]})
    planned = plan_slots(date(2030, 1, 7), date(2030, 1, 7), 30, template)
    assert [(s.strftime("%H:%M"), e.strftime("%H:%M")) for s, e in planned] == [
        ("09:00", "09:30"),
        ("09:30", "10:00"),
    ]


def test_plan_skips_holidays_and_closed_days():
    planned = plan_slots(
        date(2030, 1, 6),
        date(2030, 1, 8),
        60,
        parse_template({0: [["09:00", "11:00"]], 1: [["09:00", "10:00"]]}),
        {date(2030, 1, 8)},
    )
    assert [start for start, _ in planned] == [datetime(2030, 1, 7, 9), datetime(2030, 1, 7, 10)]


def test_uses_service_step_and_persisted_template(catalog):
    save_weekly_template({0: [["08:00", "09:00"]]}, service_id="blood", location_id="main")
    created = generate_slots("blood", "main", "2030-01-07", "2030-01-08", capacity_per_slot=3)
    assert created == 2
    assert [row["starts_at"] for row in _slots()] == ["2030-01-07T08:00:00", "2030-01-07T08:30:00"]


def test_builtin_template_used_without_persisted_one(catalog):
    created = generate_slots("blood", "main", "2030-01-06", "2030-01-07", step_minutes=60)
    # Sunday 07-12 plus Monday 07-12 and 14-17.
    assert created == 5 + 5 + 3
    assert len(plan_slots(date(2030, 1, 7), date(2030, 1, 7), 60, builtin_template())) == 8


@pytest.mark.parametrize(
    "kwargs",
    [
        {"date_from": "2030-01-08", "date_to": "2030-01-07"},
        {"date_from": "2030-01-07", "date_to": "2030-01-07"},
        {"date_from": "2030-01-07", "date_to": "2030-01-08", "capacity_per_slot": 0},
        {"date_from": "2030-01-07", "date_to": "2030-01-08", "step_minutes": 0},
        {"date_from": "07/01/2030", "date_to": "2030-01-08"},
    ],
)
def test_invalid_generation_input(catalog, kwargs):
    with pytest.raises(InvalidRange):
        generate_slots("blood", "main", **kwargs)
    assert _slots() == []


def test_invalid_explicit_template(catalog):
    with pytest.raises(InvalidTemplate):
        generate_slots("blood", "main", "2030-01-07", "2030-01-08", template={0: [["10:00", "09:00"]]})


def test_range_cap(catalog, ctx):
    ctx.config["AGENDA_MAX_SLOTS_PER_CALL"] = 10
    with pytest.raises(InvalidRange) as excinfo:
        generate_slots("blood", "main", "2030-01-07", "2030-01-14", step_minutes=30)
    assert excinfo.value.message == "range_too_large"
    assert _slots() == []


def test_unknown_catalog_entries(catalog):
    with pytest.raises(UnknownService):
        generate_slots("xray", "main", "2030-01-07", "2030-01-08", template=MORNING)
    with pytest.raises(UnknownLocation):
        generate_slots("blood", "annex", "2030-01-07", "2030-01-08", template=MORNING)
    assert _slots() == []


def test_auto_provision_creates_placeholders(ctx):
    created = generate_slots("xray", "annex", "2030-01-07", "2030-01-08", template=MORNING, auto_provision=True)
    assert created == 4
    assert [s["name"] for s in list_services()] == ["Service xray"]
    assert [loc["name"] for loc in list_locations()] == ["Location annex"]


def test_listing_filters_full_inactive_and_past(catalog):
    generate_slots("blood", "main", "2030-01-07", "2030-01-08", template=MORNING, capacity_per_slot=1)
    rows = _slots()
    conn = db()
    try:
        conn.execute("UPDATE slots SET reserved=1 WHERE id=?", (rows[0]["id"],))
        conn.execute("UPDATE slots SET active=0 WHERE id=?", (rows[1]["id"],))
        conn.commit()
    finally:
        conn.close()

    available = list_available_slots("blood", "main")
    assert [s["id"] for s in available] == [rows[2]["id"], rows[3]["id"]]
    assert available[0]["service_name"] == "Blood draw"
    assert available[0]["remaining"] == 1

    later = list_available_slots("blood", now=datetime(2030, 1, 8, 9, 0))
    assert [s["id"] for s in later] == [rows[3]["id"]]
    assert list_available_slots("blood", date_from="2030-01-09") == []


def test_capacity_update_and_purge(catalog):
    generate_slots("blood", "main", "2030-01-07", "2030-01-08", template=MORNING, capacity_per_slot=2)
    rows = _slots()
    conn = db()
    try:
        conn.execute("UPDATE slots SET reserved=2 WHERE id=?", (rows[0]["id"],))
        conn.execute(
            "INSERT INTO bookings(id, slot_id, patient_id, status, created_at, updated_at) "
            "VALUES ('b1', ?, 'p1', 'SCHEDULED', datetime('now'), datetime('now'))",
            (rows[0]["id"],),
        )
        conn.commit()
    finally:
        conn.close()

    with pytest.raises(CapacityBelowReserved):
        update_slot_capacity(rows[0]["id"], 1)
    assert update_slot_capacity(rows[0]["id"], 4)["total_capacity"] == 4

    assert delete_empty_slots("2030-01-07", "2030-01-08") == 3
    assert [row["id"] for row in _slots()] == [rows[0]["id"]]
    assert get_slot(rows[0]["id"])["bookings"][0]["patient_id"] == "p1"


def test_unreferenced_slot_is_deleted(catalog):
    generate_slots("blood", "main", "2030-01-07", "2030-01-08", template=MORNING)
    slot_id = _slots()[0]["id"]
    assert deactivate_slot(slot_id) == "deleted"
    assert generate_slots("blood", "main", "2030-01-07", "2030-01-08", template=MORNING) == 1


def test_time_range_label():
    assert format_time_range("2030-01-07T09:00:00", "2030-01-07T13:30:00") == "2030-01-07 9:00 AM → 1:30 PM"
