"""Tests for the FastAPI API."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from carrymatch.api import app, set_services
from carrymatch.utils import to_iso

SHOPPER = {"X-User-Id": "shopper-1"}
TRAVELER = {"X-User-Id": "traveler-1"}


@pytest.fixture
def api_client(services):
    """Test client backed by a temporary store and a fixed clock."""
    set_services(services)
    yield TestClient(app)
    set_services(None)


@pytest.fixture
def trip_body(t0):
    departure = t0 + timedelta(days=10)
    return {
        "from_country": "US",
        "to_country": "GB",
        "departure_at": to_iso(departure),
        "arrival_at": to_iso(departure + timedelta(hours=8)),
        "available_carry_on_kg": 10,
        "available_checked_kg": 23,
    }


@pytest.fixture
def request_body():
    return {
        "from_country": "US",
        "to_country": "GB",
        "items": [{"name": "Headphones", "price": 120, "currency": "usd", "weight_kg": 1.5}],
    }


@pytest.fixture
def published(api_client, trip_body, request_body):
    """A published request with one pending match; returns (request, match)."""
    api_client.post("/api/trips", json=trip_body, headers=TRAVELER)
    request = api_client.post("/api/requests", json=request_body, headers=SHOPPER).json()
    result = api_client.post(f"/api/requests/{request['id']}/publish", headers=SHOPPER).json()
    return result["request"], result["created"][0]


def claim_and_approve(api_client, request, match):
    item_id = request["items"][0]["id"]
    api_client.post(f"/api/matches/{match['id']}/claim", json={"assigned_item_ids": [item_id]}, headers=TRAVELER)
    return api_client.post(f"/api/matches/{match['id']}/approve", headers=SHOPPER)


class TestHealthCheck:
    def test_health(self, api_client, services):
        response = api_client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["data_dir"] == str(services.store.data_dir)


class TestRequests:
    def test_create_request(self, api_client, request_body):
        response = api_client.post("/api/requests", json=request_body, headers=SHOPPER)
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "draft"
        assert data["shopper_id"] == "shopper-1"
        assert data["items"][0]["currency"] == "USD"
        assert data["price_summary"]["total_item_cost"] == 120

    def test_invalid_item(self, api_client, request_body):
        request_body["items"][0]["weight_kg"] = 0
        response = api_client.post("/api/requests", json=request_body, headers=SHOPPER)
        assert response.status_code == 400
        assert response.json()["error_type"] == "ValidationError"

    def test_missing_user_header(self, api_client, request_body):
        response = api_client.post("/api/requests", json=request_body)
        assert response.status_code == 422

    def test_publish_and_list(self, api_client, published):
        request, match = published
        assert request["status"] == "open"
        assert match["status"] == "pending"

        response = api_client.get(f"/api/requests/{request['id']}/matches", headers=SHOPPER)
        assert response.status_code == 200
        assert response.json()["count"] == 1

    def test_publish_twice(self, api_client, published):
        request, _ = published
        response = api_client.post(f"/api/requests/{request['id']}/publish", headers=SHOPPER)
        assert response.status_code == 409
        assert response.json()["error_type"] == "InvalidStateError"

    def test_other_shopper_forbidden(self, api_client, published):
        request, _ = published
        response = api_client.get(f"/api/requests/{request['id']}", headers={"X-User-Id": "shopper-2"})
        assert response.status_code == 403

    def test_cancel_request(self, api_client, published):
        request, _ = published
        response = api_client.post(
            f"/api/requests/{request['id']}/cancel", json={"reason": "no longer needed"}, headers=SHOPPER
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_unknown_request(self, api_client):
        response = api_client.post("/api/requests/missing/publish", headers=SHOPPER)
        assert response.status_code == 404
        assert response.json()["error_type"] == "RequestNotFoundError"


class TestTrips:
    def test_create_trip(self, api_client, trip_body):
        response = api_client.post("/api/trips", json=trip_body, headers=TRAVELER)
        assert response.status_code == 201
        data = response.json()
        assert data["traveler_id"] == "traveler-1"
        assert data["status"] == "pending"

    def test_arrival_before_departure(self, api_client, trip_body):
        trip_body["arrival_at"], trip_body["departure_at"] = trip_body["departure_at"], trip_body["arrival_at"]
        response = api_client.post("/api/trips", json=trip_body, headers=TRAVELER)
        assert response.status_code == 400

    def test_create_trip_from_local_times(self, api_client, trip_body):
        del trip_body["departure_at"], trip_body["arrival_at"]
        trip_body.update(
            departure_date="07/04/2026",
            departure_time="09:30",
            arrival_date="07/04/2026",
            arrival_time="21:45",
            timezone="America/New_York",
        )
        response = api_client.post("/api/trips", json=trip_body, headers=TRAVELER)
        assert response.status_code == 201
        data = response.json()
        assert data["departure_at"] == "2026-07-04T13:30:00Z"
        assert data["arrival_at"] == "2026-07-05T01:45:00Z"
        assert data["timezone"] == "America/New_York"

    def test_unknown_timezone(self, api_client, trip_body):
        trip_body["timezone"] = "Mars/Olympus"
        response = api_client.post("/api/trips", json=trip_body, headers=TRAVELER)
        assert response.status_code == 400
        assert response.json()["error_type"] == "ValidationError"

    def test_missing_times(self, api_client, trip_body):
        del trip_body["arrival_at"]
        response = api_client.post("/api/trips", json=trip_body, headers=TRAVELER)
        assert response.status_code == 400

    def test_trip_status_transitions(self, api_client, trip_body):
        trip = api_client.post("/api/trips", json=trip_body, headers=TRAVELER).json()

        response = api_client.post(f"/api/trips/{trip['id']}/complete", headers=TRAVELER)
        assert response.status_code == 409

        response = api_client.post(f"/api/trips/{trip['id']}/activate", headers=TRAVELER)
        assert response.json()["status"] == "active"
        response = api_client.post(f"/api/trips/{trip['id']}/complete", headers=TRAVELER)
        assert response.json()["status"] == "completed"

        response = api_client.patch(f"/api/trips/{trip['id']}", json={"can_carry_fragile": True}, headers=TRAVELER)
        assert response.status_code == 409

    def test_trip_owner_only(self, api_client, trip_body):
        trip = api_client.post("/api/trips", json=trip_body, headers=TRAVELER).json()
        response = api_client.post(f"/api/trips/{trip['id']}/cancel", headers=SHOPPER)
        assert response.status_code == 403

    def test_update_and_list_trips(self, api_client, trip_body):
        trip = api_client.post("/api/trips", json=trip_body, headers=TRAVELER).json()

        response = api_client.patch(f"/api/trips/{trip['id']}", json={"can_carry_fragile": True}, headers=TRAVELER)
        assert response.status_code == 200
        assert response.json()["can_carry_fragile"] is True

        listed = api_client.get("/api/trips", headers=TRAVELER).json()
        assert listed["count"] == 1
        assert api_client.get(f"/api/trips/{trip['id']}", headers=TRAVELER).json()["can_carry_fragile"] is True

    def test_cancel_trip_rejects_matches(self, api_client, published):
        _, match = published
        response = api_client.post(
            f"/api/trips/{match['trip_id']}/cancel", json={"reason": "flight cancelled"}, headers=TRAVELER
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert api_client.get(f"/api/matches/{match['id']}").json()["status"] == "rejected"

    def test_capacity_check(self, api_client, trip_body):
        trip = api_client.post("/api/trips", json=trip_body, headers=TRAVELER).json()
        response = api_client.get(f"/api/trips/{trip['id']}/capacity", params={"weight_kg": 12})
        assert response.status_code == 200
        assert response.json()["fits_carry_on"] is False
        assert response.json()["fits_checked"] is True

    def test_traveler_profile(self, api_client):
        response = api_client.put("/api/travelers/traveler-1", json={"name": "Ada", "rating": 4.5})
        assert response.status_code == 200
        assert response.json()["rating"] == 4.5


class TestMatches:
    def test_preview(self, api_client, trip_body, request_body):
        api_client.post("/api/trips", json=trip_body, headers=TRAVELER)
        response = api_client.post("/api/matches/preview", json=request_body)
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["results"][0]["score"] == 55.0
        assert "Fits in carry-on baggage" in data["results"][0]["rationale"]

    def test_claim_approve_cancel(self, api_client, published):
        request, match = published

        response = claim_and_approve(api_client, request, match)
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = api_client.post(f"/api/matches/{match['id']}/cancel", json={"reason": "oops"}, headers=SHOPPER)
        assert response.status_code == 200
        assert response.json()["status"] == "rejected"

    def test_bundle_too_heavy_is_not_matched(self, api_client, trip_body, request_body):
        trip_body["available_carry_on_kg"] = 1
        trip_body["available_checked_kg"] = 2
        api_client.post("/api/trips", json=trip_body, headers=TRAVELER)
        request_body["items"][0]["weight_kg"] = 1.5
        request_body["items"].append({"name": "Boots", "price": 80, "weight_kg": 1.5})
        request = api_client.post("/api/requests", json=request_body, headers=SHOPPER).json()
        api_client.post(f"/api/requests/{request['id']}/publish", headers=SHOPPER)
        # Both items together (3kg) don't fit, so the trip isn't matched
        matches = api_client.get(f"/api/requests/{request['id']}/matches", headers=SHOPPER).json()
        assert matches["count"] == 0

    def test_claim_too_heavy_for_remaining_capacity(self, api_client, published, services):
        request, match = published
        trip = services.store.trips.find_by_id(match["trip_id"])
        trip.available_carry_on_kg = 0.5
        trip.available_checked_kg = 1.0
        services.store.trips.update(trip)

        item_id = request["items"][0]["id"]
        response = api_client.post(
            f"/api/matches/{match['id']}/claim", json={"assigned_item_ids": [item_id]}, headers=TRAVELER
        )
        assert response.status_code == 422
        assert response.json()["error_type"] == "CapacityExceededError"

    def test_wrong_user_approves(self, api_client, published):
        request, match = published
        item_id = request["items"][0]["id"]
        api_client.post(f"/api/matches/{match['id']}/claim", json={"assigned_item_ids": [item_id]}, headers=TRAVELER)
        response = api_client.post(f"/api/matches/{match['id']}/approve", headers=TRAVELER)
        assert response.status_code == 403
        assert response.json()["error_type"] == "UnauthorizedError"

    def test_cancel_after_window(self, api_client, published, clock):
        request, match = published
        claim_and_approve(api_client, request, match)
        clock.advance(25)

        response = api_client.post(f"/api/matches/{match['id']}/cancel", headers=SHOPPER)
        assert response.status_code == 409
        assert response.json()["error_type"] == "WindowExpiredError"

    def test_complete(self, api_client, published):
        request, match = published
        claim_and_approve(api_client, request, match)
        response = api_client.post(f"/api/matches/{match['id']}/complete", headers=TRAVELER)
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    def test_reject(self, api_client, published):
        _, match = published
        response = api_client.post(f"/api/matches/{match['id']}/reject", headers=TRAVELER)
        assert response.status_code == 200
        assert response.json()["status"] == "rejected"

    def test_get_missing_match(self, api_client):
        response = api_client.get("/api/matches/missing")
        assert response.status_code == 404
        assert response.json()["error_type"] == "MatchNotFoundError"


class TestSweeps:
    def test_run_sweeps(self, api_client, published, t0):
        request, match = published
        claim_and_approve(api_client, request, match)

        response = api_client.post("/api/sweeps/run", json={"now": to_iso(t0 + timedelta(hours=25))})
        assert response.status_code == 200
        data = response.json()
        assert data["cooldowns"]["processed"] == 1
        assert data["deadlines"]["processed"] == 0

        response = api_client.post("/api/sweeps/run", json={"now": to_iso(t0 + timedelta(hours=49))})
        assert response.json()["deadlines"]["matches_rejected"] == 1
