"""Pytest fixtures for carrymatch tests."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from carrymatch.models import BagItem, RequestStatus, ShopperRequest, TravelerProfile, Trip
from carrymatch.notifications import LoggingNotifier
from carrymatch.publisher import compute_price_summary
from carrymatch.rules import BusinessRules
from carrymatch.services import build_services
from carrymatch.store import JsonStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, hours: float) -> datetime:
        self.now = self.now + timedelta(hours=hours)
        return self.now


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def rules():
    return BusinessRules()


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def services(temp_dir, rules, notifier, clock):
    """Fully wired services over a temporary data directory."""
    return build_services(data_dir=temp_dir / "data", rules=rules, notifier=notifier, clock=clock)


@pytest.fixture
def store(services) -> JsonStore:
    return services.store


@pytest.fixture
def make_item():
    def _make(name="Headphones", price=100.0, weight_kg=2.0, currency="usd", **kwargs) -> BagItem:
        return BagItem.create(name=name, price=price, currency=currency, weight_kg=weight_kg, **kwargs)

    return _make


@pytest.fixture
def make_trip(store, clock):
    """Create and save a trip departing 10 days after the clock's now."""

    def _make(**overrides) -> Trip:
        departure = overrides.pop("departure_at", clock.now + timedelta(days=10))
        fields = {
            "traveler_id": "traveler-1",
            "from_country": "US",
            "to_country": "GB",
            "departure_at": departure,
            "arrival_at": departure + timedelta(hours=8),
            "available_carry_on_kg": 10.0,
            "available_checked_kg": 23.0,
        }
        fields.update(overrides)
        trip = Trip.create(**fields)
        store.trips.create(trip)
        return trip

    return _make


@pytest.fixture
def make_request(store, rules, make_item):
    """Create and save a shopper request, open by default."""

    def _make(items=None, status=RequestStatus.OPEN, **overrides) -> ShopperRequest:
        items = items if items is not None else [make_item()]
        fields = {
            "shopper_id": "shopper-1",
            "from_country": "US",
            "to_country": "GB",
        }
        fields.update(overrides)
        request = ShopperRequest.create(
            items=items, price_summary=compute_price_summary(items, rules), **fields
        )
        request.status = status
        store.requests.create(request)
        return request

    return _make


@pytest.fixture
def make_traveler(store):
    def _make(traveler_id="traveler-1", rating=None, max_rating=5.0) -> TravelerProfile:
        profile = TravelerProfile(id=traveler_id, name=traveler_id.title(), rating=rating, max_rating=max_rating)
        return store.travelers.save(profile)

    return _make
