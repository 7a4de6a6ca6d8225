"""
Tests for SqlBookingStore.

Each test builds a throwaway SQLite database (aiosqlite) with the same
models used on PostgreSQL.
"""

from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from app.core.booking.engine import BookingEngine
from app.core.booking.errors import ConflictError
from app.core.booking.hours import parse_weekly_hours
from app.core.booking.lifecycle import LifecycleStateMachine
from app.core.booking.policy import PolicyConfig
from app.core.booking.types import (
    Agent,
    BookingStatus,
    Industry,
    OperationType,
    StaffMember,
    Table,
)
from app.infra.database import build_engine, build_session_factory, init_db
from app.infra.redis import ReservationLocks
from app.infra.sql_store import SqlBookingStore
from tests.factories import (
    NOW,
    RESTAURANT_HOURS,
    FixedClock,
    at,
    make_business,
    make_request,
)


async def open_store(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/bookings.db")
    await init_db(engine)
    return engine, SqlBookingStore(build_session_factory(engine))


async def seed_restaurant(store):
    business = make_business(Industry.RESTAURANT, hours=RESTAURANT_HOURS)
    await store.save_business(business)
    await store.save_resource(business.id, Table(id="t1", number="1", min_party=2, max_party=4))
    return business


def create_transition(start, end, resource=None, party_size=2):
    machine = LifecycleStateMachine(clock=FixedClock(NOW))
    return machine.create(
        make_request(start, end, party_size=party_size),
        PolicyConfig(buffer_minutes=30),
        resource=resource,
        price=Decimal("20"),
    )


class TestSqlBookingStore:
    """Test SqlBookingStore against SQLite."""

    @pytest.mark.asyncio
    async def test_business_round_trip(self, tmp_path):
        engine, store = await open_store(tmp_path)
        try:
            business = make_business(Industry.SALON, tz="Europe/London")
            await store.save_business(business)

            loaded = await store.get_business(business.id)
            assert loaded == business
            assert await store.get_business("missing") is None

            await store.save_business(replace(business, name="Renamed"))
            assert (await store.get_business(business.id)).name == "Renamed"
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_resources_round_trip(self, tmp_path):
        engine, store = await open_store(tmp_path)
        try:
            business = make_business()
            await store.save_business(business)
            resources = [
                Table(id="t1", number="1", min_party=2, max_party=4, location="patio"),
                StaffMember(
                    id="s1",
                    name="Sam",
                    specializations=["haircut"],
                    skill_levels={"haircut": "senior"},
                    working_hours=parse_weekly_hours({"tuesday": {"open": "09:00", "close": "17:00"}}),
                ),
                Agent(id="a1", name="Pat", territories=["downtown"], rating=4.5, license_number="L-1"),
            ]
            for resource in resources:
                await store.save_resource(business.id, resource)

            loaded = {r.id: r for r in await store.list_resources(business.id)}
            assert loaded == {r.id: r for r in resources}
            assert await store.list_resources("other") == []
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_policy_round_trip(self, tmp_path):
        engine, store = await open_store(tmp_path)
        try:
            business = make_business()
            await store.save_business(business)
            assert await store.get_policy(business.id) is None

            policy = PolicyConfig(deposit_amount=20, cancellation_hours=6).revise(buffer_minutes=10)
            await store.save_policy(business.id, policy)

            assert await store.get_policy(business.id) == policy
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_insert_and_read_booking(self, tmp_path):
        engine, store = await open_store(tmp_path)
        try:
            business = await seed_restaurant(store)
            table = Table(id="t1", number="1", min_party=2, max_party=4)
            transition = create_transition(at(19), at(21), resource=table)

            await store.insert_booking(transition.booking, transition.entry)

            loaded = await store.get_booking(business.id, transition.booking.id)
            assert loaded.start_time == at(19)
            assert loaded.start_time.tzinfo is not None
            assert loaded.status == BookingStatus.PENDING
            assert loaded.price == Decimal("20.00")
            assert loaded.policy == transition.booking.policy
            assert await store.get_booking("other-business", transition.booking.id) is None

            inside = await store.list_bookings(business.id, at(20), at(22))
            outside = await store.list_bookings(business.id, at(21), at(23))
            assert [b.id for b in inside] == [transition.booking.id]
            assert outside == []
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_transitions_are_compare_and_set(self, tmp_path):
        engine, store = await open_store(tmp_path)
        try:
            business = await seed_restaurant(store)
            machine = LifecycleStateMachine(clock=FixedClock(NOW))
            created = create_transition(at(10), at(11))
            await store.insert_booking(created.booking, created.entry)

            cancel = machine.cancel(created.booking, "Plans changed")
            assert await store.apply_transition(
                cancel.booking, cancel.entry, expected_status=BookingStatus.PENDING
            )

            stale = machine.confirm(created.booking)
            assert not await store.apply_transition(
                stale.booking, stale.entry, expected_status=BookingStatus.PENDING
            )

            stored = await store.get_booking(business.id, created.booking.id)
            history = await store.list_operations(business.id, created.booking.id)
            assert stored.status == BookingStatus.CANCELLED
            assert [e.operation_type for e in history] == [OperationType.CREATE, OperationType.CANCEL]
            assert history[1].data["reason"] == "Plans changed"
            assert history[1].financial_impact is not None
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_unique_index_backstops_double_booking(self, tmp_path):
        engine, store = await open_store(tmp_path)
        try:
            business = await seed_restaurant(store)
            table = Table(id="t1", number="1", min_party=2, max_party=4)
            first = create_transition(at(19), at(21), resource=table)
            second = create_transition(at(19), at(21), resource=table)
            await store.insert_booking(first.booking, first.entry)

            with pytest.raises(ConflictError):
                await store.insert_booking(second.booking, second.entry)

            cancel = LifecycleStateMachine(clock=FixedClock(NOW)).cancel(first.booking, "Plans changed")
            await store.apply_transition(cancel.booking, cancel.entry, expected_status=BookingStatus.PENDING)
            await store.insert_booking(second.booking, second.entry)

            active = [
                b for b in await store.list_bookings(business.id, at(19), at(21))
                if b.blocks_time
            ]
            assert [b.id for b in active] == [second.booking.id]
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_engine_on_sql_store(self, tmp_path):
        engine, store = await open_store(tmp_path)
        try:
            booking_engine = BookingEngine(
                store=store,
                locks=ReservationLocks(None, timeout=1, wait=1),
                notifier=AsyncMock(),
                clock=FixedClock(NOW),
            )
            await booking_engine.register_business(
                make_business(Industry.RESTAURANT, hours=RESTAURANT_HOURS)
            )
            await booking_engine.add_resource("biz-1", Table(id="t1", number="1", min_party=2, max_party=4))

            created = await booking_engine.create_booking(make_request(at(19), at(21), party_size=2))
            taken = await booking_engine.create_booking(make_request(at(20), at(22), party_size=2))
            cancelled = await booking_engine.cancel_booking("biz-1", created.booking.id, "Sick")

            assert created.booking.resource_id == "t1"
            assert taken.error_code == "conflict"
            assert cancelled.booking.status == BookingStatus.CANCELLED

            history = await booking_engine.get_operation_history("biz-1", created.booking.id)
            assert len(history) == 2
        finally:
            await engine.dispose()
