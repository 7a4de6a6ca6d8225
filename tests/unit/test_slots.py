"""Tests for slot generation."""

from datetime import date
from decimal import Decimal

import pytest

from app.core.booking.hours import parse_weekly_hours
from app.core.booking.rules import PROFESSIONAL, RESTAURANT
from app.core.booking.slots import SlotGenerator
from app.core.booking.types import BookingMode, Requirement, Table
from tests.factories import DAY, OFFICE_HOURS, RESTAURANT_HOURS, at, make_booking


class TestSlotGenerator:
    """Test SlotGenerator without resources."""

    @pytest.fixture
    def generator(self):
        return SlotGenerator(PROFESSIONAL)

    @pytest.fixture
    def hours(self):
        return parse_weekly_hours({"tuesday": {"open": "09:00", "close": "12:00"}})

    def test_steps_through_opening_hours(self, generator, hours):
        slots = generator.generate_slots(DAY, 60, hours, [], Requirement(), [])

        assert [s.start for s in slots] == [at(9), at(10), at(11)]
        assert all(s.available for s in slots)
        assert slots[-1].end == at(12)

    def test_custom_step(self, generator, hours):
        slots = generator.generate_slots(DAY, 60, hours, [], Requirement(), [], step_minutes=30)
        assert [s.start for s in slots] == [at(9), at(9, 30), at(10), at(10, 30), at(11)]

    def test_booked_window_unavailable(self, generator, hours):
        existing = [make_booking(at(10), at(11))]
        slots = generator.generate_slots(DAY, 60, hours, existing, Requirement(), [])

        by_start = {s.start: s for s in slots}
        assert not by_start[at(10)].available
        assert by_start[at(10)].reason == "booked"
        assert by_start[at(9)].available
        assert by_start[at(11)].available

    def test_buffer_blocks_neighbours(self, generator, hours):
        existing = [make_booking(at(10), at(11))]
        slots = generator.generate_slots(
            DAY, 60, hours, existing, Requirement(), [], buffer_minutes=15
        )
        assert [s.available for s in slots] == [False, False, False]

    def test_double_booking_allowed(self, generator, hours):
        existing = [make_booking(at(10), at(11))]
        slots = generator.generate_slots(
            DAY, 60, hours, existing, Requirement(), [], allow_double_booking=True
        )
        assert all(s.available for s in slots)

    def test_breaks_are_skipped(self, generator):
        hours = parse_weekly_hours(
            {"tuesday": {"open": "09:00", "close": "17:00", "breaks": [{"start": "12:00", "end": "13:00"}]}}
        )
        slots = generator.generate_slots(DAY, 60, hours, [], Requirement(), [])

        starts = [s.start.hour for s in slots]
        assert 12 not in starts
        assert len(slots) == 7

    def test_closed_day_has_no_slots(self, generator):
        hours = parse_weekly_hours(OFFICE_HOURS)
        saturday = date(2026, 3, 7)
        assert generator.generate_slots(saturday, 60, hours, [], Requirement(), []) == []

    def test_slots_inside_notice_window(self, generator, hours):
        slots = generator.generate_slots(
            DAY, 60, hours, [], Requirement(), [], not_before=at(10, 30)
        )
        assert [s.available for s in slots] == [False, False, True]
        assert slots[0].reason == "insufficient_notice"

    def test_remote_mode_ignores_bookings(self, generator, hours):
        existing = [make_booking(at(10), at(11))]
        slots = generator.generate_slots(
            DAY, 60, hours, existing, Requirement(mode=BookingMode.VIRTUAL), []
        )
        assert all(s.available for s in slots)

    def test_invalid_duration(self, generator, hours):
        with pytest.raises(ValueError):
            generator.generate_slots(DAY, 0, hours, [], Requirement(), [])

    def test_slot_price(self, generator, hours):
        slots = generator.generate_slots(
            DAY, 60, hours, [], Requirement(), [], attributes={"hourly_rate": 200}
        )
        assert slots[0].price == Decimal("200.00")


class TestRestaurantSlots:
    """Test slot generation with tables."""

    @pytest.fixture
    def generator(self):
        return SlotGenerator(RESTAURANT)

    @pytest.fixture
    def tables(self):
        return [
            Table(id="t1", number="1", min_party=2, max_party=4),
            Table(id="t2", number="2", min_party=4, max_party=6),
        ]

    def test_slots_name_best_table(self, generator, tables):
        hours = parse_weekly_hours(RESTAURANT_HOURS)
        slots = generator.generate_slots(DAY, 120, hours, [], Requirement(party_size=4), tables)

        assert [s.start.hour for s in slots] == [11, 13, 15, 17, 19, 21]
        assert all(s.resource_id == "t1" for s in slots)
        assert slots[0].resource_label == "Table 1"

    def test_next_table_when_first_is_booked(self, generator, tables):
        hours = parse_weekly_hours(RESTAURANT_HOURS)
        existing = [make_booking(at(19), at(21), resource_id="t1")]
        slots = generator.generate_slots(
            DAY, 120, hours, existing, Requirement(party_size=4), tables, buffer_minutes=30
        )

        by_start = {s.start.hour: s for s in slots}
        assert by_start[19].resource_id == "t2"
        assert by_start[13].resource_id == "t1"

    def test_no_table_left(self, generator, tables):
        hours = parse_weekly_hours(RESTAURANT_HOURS)
        existing = [
            make_booking(at(19), at(21), resource_id="t1"),
            make_booking(at(19), at(21), resource_id="t2"),
        ]
        slots = generator.generate_slots(
            DAY, 120, hours, existing, Requirement(party_size=4), tables
        )

        by_start = {s.start.hour: s for s in slots}
        assert not by_start[19].available
        assert by_start[19].reason == "no_resource"

    def test_peak_pricing(self, generator, tables):
        hours = parse_weekly_hours(RESTAURANT_HOURS)
        slots = generator.generate_slots(DAY, 120, hours, [], Requirement(party_size=4), tables)

        by_start = {s.start.hour: s for s in slots}
        assert by_start[19].price == Decimal("40.00")
        assert by_start[13].price == Decimal("0.00")
