"""Tests for the JSON document store."""

import json
from datetime import timedelta

import pytest

from carrymatch.errors import ConcurrentUpdateError, MatchNotFoundError, ValidationError
from carrymatch.models import Match, RequestStatus, TravelerProfile
from carrymatch.store import JsonStore


class TestJsonCollection:
    def test_missing_file_reads_empty(self, temp_dir):
        store = JsonStore(temp_dir / "empty")
        assert store.matches.find_pending() == []
        assert store.requests.find_by_id("nope") is None

    def test_file_layout(self, store, make_trip):
        trip = make_trip()
        data = json.loads((store.data_dir / "trips.json").read_text())
        assert data["schema_version"] == 1
        assert [d["id"] for d in data["documents"]] == [trip.id]
        assert data["documents"][0]["departure_at"].endswith("Z")

    def test_duplicate_insert_rejected(self, store):
        match = Match.create("r1", "t1", "traveler-1", 50.0)
        store.matches.create(match)
        with pytest.raises(ValidationError):
            store.matches.create(match)

    def test_update_bumps_version(self, store):
        match = Match.create("r1", "t1", "traveler-1", 50.0)
        store.matches.create(match)

        store.matches.update(match)

        assert match.version == 1
        assert store.matches.find_by_id(match.id).version == 1

    def test_stale_update_rejected(self, store):
        match = Match.create("r1", "t1", "traveler-1", 50.0)
        store.matches.create(match)
        first = store.matches.find_by_id(match.id)
        second = store.matches.find_by_id(match.id)

        store.matches.update(first)
        with pytest.raises(ConcurrentUpdateError) as exc_info:
            store.matches.update(second)

        assert exc_info.value.expected == 0
        assert exc_info.value.found == 1

    def test_update_missing(self, store):
        with pytest.raises(MatchNotFoundError):
            store.matches.update(Match.create("r1", "t1", "traveler-1", 50.0))

    def test_no_temp_files_left(self, store, make_trip):
        make_trip()
        make_trip()
        assert not list(store.data_dir.glob("*.tmp"))


class TestRequestQueries:
    def test_expired_cooldowns(self, store, make_request, t0):
        due = make_request(status=RequestStatus.ON_HOLD)
        due.cooldown_ends_at = t0
        store.requests.update(due)

        later = make_request(status=RequestStatus.ON_HOLD)
        later.cooldown_ends_at = t0 + timedelta(hours=2)
        store.requests.update(later)

        done = make_request(status=RequestStatus.ON_HOLD)
        done.cooldown_ends_at = t0
        done.cooldown_processed = True
        store.requests.update(done)

        found = store.requests.find_expired_cooldowns(t0)
        assert [r.id for r in found] == [due.id]

    def test_missed_deadlines(self, store, make_request, t0):
        missed = make_request(status=RequestStatus.PURCHASE_PENDING)
        missed.purchase_deadline = t0 - timedelta(minutes=1)
        store.requests.update(missed)

        on_hold = make_request(status=RequestStatus.ON_HOLD)
        on_hold.purchase_deadline = t0 - timedelta(minutes=1)
        store.requests.update(on_hold)

        assert [r.id for r in store.requests.find_missed_deadlines(t0)] == [missed.id]

    def test_find_by_shopper_and_open(self, store, make_request):
        mine = make_request(shopper_id="shopper-1")
        make_request(shopper_id="shopper-2", status=RequestStatus.DRAFT)

        assert [r.id for r in store.requests.find_by_shopper("shopper-1")] == [mine.id]
        assert [r.id for r in store.requests.find_open()] == [mine.id]


class TestTravelers:
    def test_save_inserts_then_replaces(self, store):
        profile = TravelerProfile(id="traveler-1", name="Ada", rating=4.0)
        store.travelers.save(profile)

        profile.rating = 4.8
        store.travelers.save(profile)

        stored = store.travelers.find_by_id("traveler-1")
        assert stored.rating == 4.8
        assert stored.version == 1

    def test_trips_by_traveler(self, store, make_trip):
        trip = make_trip(traveler_id="traveler-9")
        make_trip(traveler_id="traveler-1")
        assert [t.id for t in store.trips.find_by_traveler("traveler-9")] == [trip.id]
