"""Tests for hours parsing, policy configuration and the tenant cache."""

from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from app.core.booking.cache import TenantCache
from app.core.booking.hours import (
    DayHours,
    hours_for,
    localize,
    parse_date,
    parse_time,
    parse_weekly_hours,
    weekly_hours_to_dict,
    window_within_hours,
)
from app.core.booking.policy import PolicyConfig, to_money
from tests.factories import DAY, OFFICE_HOURS, at


class TestParsing:
    """Test time and date parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("14:00", time(14, 0)),
            ("9:30", time(9, 30)),
            ("9:30 AM", time(9, 30)),
            ("2:00 PM", time(14, 0)),
            ("12:00 am", time(0, 0)),
            ("12:15pm", time(12, 15)),
        ],
    )
    def test_parse_time(self, value, expected):
        assert parse_time(value) == expected

    @pytest.mark.parametrize("value", ["", "25:00", "10:75", "13:00 PM", "noon"])
    def test_parse_time_rejects(self, value):
        with pytest.raises(ValueError):
            parse_time(value)

    def test_parse_date(self):
        assert parse_date("2026-03-03") == DAY
        assert parse_date(DAY) == DAY

    def test_parse_date_rejects(self):
        with pytest.raises(ValueError):
            parse_date("03/03/2026")


class TestWeeklyHours:
    """Test weekly schedules."""

    def test_parse_and_serialize(self):
        hours = parse_weekly_hours(
            {"Monday": {"open": "9:00 AM", "close": "5:00 PM"}, "sunday": None}
        )
        assert set(hours) == {"monday"}
        assert weekly_hours_to_dict(hours) == {
            "monday": {"open": "09:00", "close": "17:00", "breaks": []}
        }

    def test_unknown_day(self):
        with pytest.raises(ValueError):
            parse_weekly_hours({"funday": {"open": "09:00", "close": "17:00"}})

    def test_close_before_open(self):
        with pytest.raises(ValueError):
            DayHours.from_dict({"open": "17:00", "close": "09:00"})

    def test_closed_day(self):
        hours = parse_weekly_hours({"tuesday": {"closed": True}})
        assert hours_for(hours, DAY) is None

    def test_contains_respects_breaks(self):
        day = DayHours.from_dict(
            {"open": "09:00", "close": "17:00", "breaks": [{"start": "12:00", "end": "13:00"}]}
        )
        assert day.contains(time(9), time(12))
        assert day.contains(time(13), time(17))
        assert not day.contains(time(11, 30), time(12, 30))
        assert not day.contains(time(16), time(17, 30))

    def test_window_within_hours(self):
        hours = parse_weekly_hours(OFFICE_HOURS)
        assert window_within_hours(hours, at(9), at(17))
        assert not window_within_hours(hours, at(8), at(9, 30))
        assert not window_within_hours(hours, at(16), at(9, day=date(2026, 3, 4)))

    def test_window_checked_in_business_timezone(self):
        hours = parse_weekly_hours(OFFICE_HOURS)
        # 14:00-15:00 UTC is 09:00-10:00 in New York (EST)
        start = datetime(2026, 3, 3, 14, 0, tzinfo=timezone.utc)
        end = datetime(2026, 3, 3, 15, 0, tzinfo=timezone.utc)

        assert window_within_hours(hours, start, end, "America/New_York")
        assert not window_within_hours(hours, at(9), at(10), "America/New_York")

    def test_localize_naive_is_local_wall_clock(self):
        local = localize(datetime(2026, 3, 3, 9, 0), "America/New_York")
        assert local.utcoffset().total_seconds() == -5 * 3600
        assert local.hour == 9

    def test_unknown_timezone(self):
        with pytest.raises(ValueError):
            localize(at(9), "Mars/Olympus")


class TestPolicyConfig:
    """Test PolicyConfig."""

    def test_money_fields_coerced(self):
        policy = PolicyConfig(deposit_amount=50, cancellation_fee_percentage="12.5")
        assert policy.deposit_amount == Decimal("50.00")
        assert policy.cancellation_fee_percentage == Decimal("12.50")

    @pytest.mark.parametrize(
        "changes",
        [
            {"buffer_minutes": -1},
            {"cancellation_hours": -2},
            {"max_advance_booking_days": 0},
            {"deposit_amount": -10},
            {"max_reschedules": -1},
        ],
    )
    def test_invalid_values(self, changes):
        with pytest.raises(ValueError):
            PolicyConfig(**changes)

    def test_revise_bumps_version(self):
        policy = PolicyConfig()
        revised = policy.revise(buffer_minutes=15, version=99)

        assert revised.version == 2
        assert revised.buffer_minutes == 15
        assert policy.buffer_minutes == 0

    def test_revise_unknown_field(self):
        with pytest.raises(TypeError):
            PolicyConfig().revise(nonsense=True)

    def test_dict_round_trip_ignores_unknown_keys(self):
        data = PolicyConfig(deposit_amount=20, auto_confirm=True).to_dict()
        data["legacy_flag"] = True

        restored = PolicyConfig.from_dict(data)
        assert restored.deposit_amount == Decimal("20.00")
        assert restored.auto_confirm is True

    def test_to_money(self):
        assert to_money(19.999) == Decimal("20.00")
        with pytest.raises(ValueError):
            to_money("abc")


class TestTenantCache:
    """Test TenantCache."""

    @pytest.fixture
    def clock(self):
        state = {"now": 0.0}

        def tick():
            return state["now"]

        tick.state = state
        return tick

    def test_get_put(self, clock):
        cache = TenantCache("resources", ttl_seconds=60, clock=clock)
        cache.put("biz-1", ["t1"])

        assert cache.get("biz-1") == ["t1"]
        assert cache.get("biz-2") is None

    def test_entries_expire(self, clock):
        cache = TenantCache("resources", ttl_seconds=60, clock=clock)
        cache.put("biz-1", ["t1"])

        clock.state["now"] = 59.0
        assert cache.get("biz-1") == ["t1"]
        clock.state["now"] = 60.0
        assert cache.get("biz-1") is None
        assert len(cache) == 0

    def test_invalidate(self, clock):
        cache = TenantCache("policies", clock=clock)
        cache.put("biz-1", 1)
        cache.put("biz-2", 2)

        cache.invalidate("biz-1")
        assert cache.get("biz-1") is None
        assert cache.get("biz-2") == 2

        cache.invalidate()
        assert len(cache) == 0

    def test_zero_ttl_disables_caching(self, clock):
        cache = TenantCache("policies", ttl_seconds=0, clock=clock)
        cache.put("biz-1", 1)
        assert cache.get("biz-1") is None
