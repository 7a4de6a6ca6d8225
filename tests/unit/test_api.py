"""
Tests for the HTTP API.

The app runs without its lifespan (no Redis, no database); the booking
engine dependency is replaced with an in-memory engine.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.core.booking.engine import BookingEngine, get_booking_engine
from app.core.booking.store import InMemoryBookingStore
from app.infra.redis import ReservationLocks
from app.main import app
from tests.factories import NOW, RESTAURANT_HOURS, FixedClock

BOOKINGS = "/businesses/biz-1/bookings"


def booking_body(**overrides) -> dict:
    body = {
        "start_time": "2026-03-03T19:00:00",
        "duration_minutes": 120,
        "party_size": 4,
        "customer_name": "Jane Doe",
        "customer_phone": "555-123-4567",
    }
    body.update(overrides)
    return body


class TestBookingApi:
    """Test booking endpoints end to end."""

    @pytest.fixture
    def engine(self):
        return BookingEngine(
            store=InMemoryBookingStore(),
            locks=ReservationLocks(None, timeout=1, wait=1),
            notifier=AsyncMock(),
            clock=FixedClock(NOW),
        )

    @pytest.fixture
    def client(self, engine):
        app.dependency_overrides[get_booking_engine] = lambda: engine
        client = TestClient(app)

        response = client.put(
            "/businesses/biz-1",
            json={"name": "Bistro", "industry": "restaurant", "operating_hours": RESTAURANT_HOURS},
        )
        assert response.status_code == 200
        for table in (
            {"kind": "table", "id": "t1", "number": "1", "min_party": 2, "max_party": 4},
            {"kind": "table", "id": "t2", "number": "2", "min_party": 4, "max_party": 6},
        ):
            assert client.post("/businesses/biz-1/resources", json=table).status_code == 201

        yield client
        app.dependency_overrides.clear()

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

        assert client.get("/health/live").json()["status"] == "alive"

    def test_ready_without_redis(self, client):
        with patch("app.api.routes.health.check_redis_health", AsyncMock(return_value=False)):
            response = client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["checks"] == {"database": "not_used", "redis": "degraded"}
        assert data["lock_backend"] == "process_local"

    def test_business_and_resources(self, client):
        business = client.get("/businesses/biz-1").json()
        assert business["industry"] == "restaurant"
        assert business["operating_hours"]["tuesday"]["open"] == "11:00"

        resources = client.get("/businesses/biz-1/resources").json()["resources"]
        assert [r["id"] for r in resources] == ["t1", "t2"]

    def test_invalid_business(self, client):
        response = client.put("/businesses/biz-2", json={"name": "X", "timezone": "Mars/Olympus"})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_failed"

    def test_invalid_resource(self, client):
        response = client.post("/businesses/biz-1/resources", json={"kind": "spaceship"})
        assert response.status_code == 400

    def test_unknown_business(self, client):
        assert client.get("/businesses/nope").status_code == 404
        assert client.post("/businesses/nope/bookings", json=booking_body()).status_code == 404

    def test_create_booking(self, client):
        response = client.post(BOOKINGS, json=booking_body())

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["booking"]["resource_id"] == "t1"
        assert data["booking"]["status"] == "pending"
        assert data["booking"]["price"] == 40.0
        assert data["operation"]["operation_type"] == "create"

        fetched = client.get(f"{BOOKINGS}/{data['booking']['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["start_time"].startswith("2026-03-03T19:00:00")

    def test_conflict_when_tables_are_full(self, client):
        assert client.post(BOOKINGS, json=booking_body()).status_code == 201
        assert client.post(BOOKINGS, json=booking_body()).status_code == 201

        response = client.post(BOOKINGS, json=booking_body())
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_rule_violation(self, client):
        response = client.post(BOOKINGS, json=booking_body(party_size=25))

        assert response.status_code == 400
        rules = [v["rule"] for v in response.json()["details"]["violations"]]
        assert "party_size_out_of_range" in rules

    def test_missing_end_and_duration(self, client):
        body = booking_body()
        del body["duration_minutes"]

        response = client.post(BOOKINGS, json=body)
        assert response.status_code == 422
        assert response.json()["error"] == "Validation error"

    def test_validate_endpoint(self, client):
        response = client.post(f"{BOOKINGS}/validate", json=booking_body())

        assert response.status_code == 200
        assert response.json()["can_proceed"] is True

    def test_cancel_twice(self, client):
        booking_id = client.post(BOOKINGS, json=booking_body()).json()["booking"]["id"]

        first = client.post(f"{BOOKINGS}/{booking_id}/cancel", json={"reason": "Sick"})
        second = client.post(f"{BOOKINGS}/{booking_id}/cancel", json={"reason": "Sick"})

        assert first.status_code == 200
        assert first.json()["booking"]["status"] == "cancelled"
        assert first.json()["financial_impact"]["type"] == "none"
        assert second.status_code == 409
        assert second.json()["error"] == "invalid_transition"

        history = client.get(f"{BOOKINGS}/{booking_id}/operations").json()["operations"]
        assert [e["operation_type"] for e in history] == ["create", "cancel"]

    def test_cancel_requires_reason(self, client):
        booking_id = client.post(BOOKINGS, json=booking_body()).json()["booking"]["id"]
        response = client.post(f"{BOOKINGS}/{booking_id}/cancel", json={"reason": ""})
        assert response.status_code == 422

    def test_reschedule_and_status(self, client):
        booking_id = client.post(BOOKINGS, json=booking_body()).json()["booking"]["id"]

        moved = client.post(
            f"{BOOKINGS}/{booking_id}/reschedule",
            json={"new_date": "2026-03-03", "new_time": "1:00 PM"},
        )
        assert moved.status_code == 200
        assert moved.json()["booking"]["start_time"].startswith("2026-03-03T13:00:00")

        started = client.patch(f"{BOOKINGS}/{booking_id}/status", json={"status": "in_progress"})
        assert started.status_code == 200
        assert started.json()["booking"]["status"] == "in_progress"

        no_show = client.post(f"{BOOKINGS}/{booking_id}/no-show")
        assert no_show.status_code == 409

    def test_confirm(self, client):
        booking_id = client.post(BOOKINGS, json=booking_body()).json()["booking"]["id"]

        first = client.post(f"{BOOKINGS}/{booking_id}/confirm")
        second = client.post(f"{BOOKINGS}/{booking_id}/confirm")

        assert first.status_code == 200
        assert first.json()["booking"]["status"] == "confirmed"
        assert second.status_code == 409

    def test_missing_booking(self, client):
        assert client.get(f"{BOOKINGS}/missing").status_code == 404

    def test_availability(self, client):
        response = client.post(
            "/businesses/biz-1/availability",
            json={"date": "2026-03-03", "duration_minutes": 120, "party_size": 4},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["available_count"] == 6
        assert data["slots"][0]["resource_id"] == "t1"

    def test_availability_bad_date(self, client):
        response = client.post(
            "/businesses/biz-1/availability",
            json={"date": "someday", "duration_minutes": 120},
        )
        assert response.status_code == 400

    def test_policy_update(self, client):
        url = "/businesses/biz-1/booking-policies"
        assert client.get(url).json()["version"] == 1

        updated = client.put(url, json={"buffer_minutes": 15, "deposit_amount": 10})
        assert updated.status_code == 200
        assert updated.json()["version"] == 2
        assert updated.json()["buffer_minutes"] == 15
        assert updated.json()["deposit_amount"] == 10.0

        assert client.put(url, json={"buffer_minutes": -1}).status_code == 422

    def test_lead_endpoints(self, client):
        qualified = client.post(
            "/businesses/biz-1/leads/qualify",
            json={
                "timeline": "immediate",
                "prequalified": True,
                "min_price": 300000,
                "max_price": 500000,
                "source": "website",
            },
        )
        assert qualified.json()["tier"] == "hot"

        recommended = client.post(
            "/businesses/biz-1/leads/recommendations",
            json={
                "lead": {"min_price": 300000, "max_price": 500000, "property_type": "house"},
                "properties": [
                    {"id": "p1", "price": 450000, "property_type": "house", "location": "Downtown"},
                    {"id": "p2", "price": 900000, "property_type": "condo", "location": "Suburbs"},
                ],
            },
        )
        assert [r["property_id"] for r in recommended.json()["recommendations"]] == ["p1"]
