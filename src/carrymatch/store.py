"""JSON file document store for carrymatch."""

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator

from .errors import (
    ConcurrentUpdateError,
    MatchNotFoundError,
    NotFoundError,
    RequestNotFoundError,
    TripNotFoundError,
    ValidationError,
)
from .models import (
    BOOKABLE_TRIP_STATUSES,
    Match,
    MatchStatus,
    RequestStatus,
    ShopperRequest,
    TravelerProfile,
    Trip,
    _utc_now,
)

SCHEMA_VERSION = 1

# Local data directory within the carrymatch project
# Can be overridden via CARRYMATCH_DATA_DIR environment variable
_default_data_dir = Path(__file__).parent.parent.parent / "data"
DATA_DIR = Path(os.environ.get("CARRYMATCH_DATA_DIR", _default_data_dir))


class JsonCollection:
    """One collection of documents kept in a single JSON file.

    Writes go through an exclusive lock and a write-to-temp-then-rename,
    so readers always see a complete file.
    """

    def __init__(
        self,
        data_dir: Path,
        name: str,
        not_found: type[NotFoundError] = NotFoundError,
    ):
        self.data_dir = data_dir
        self.name = name
        self.path = data_dir / f"{name}.json"
        self._not_found = not_found

    def _ensure_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the collection for read-modify-write operations."""
        self._ensure_dir()
        lock_path = self.data_dir / f".{self.name}.lock"
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load_data(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"schema_version": SCHEMA_VERSION, "documents": []}

        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _save_data(self, data: dict[str, Any]) -> None:
        """Save collection to disk atomically."""
        self._ensure_dir()

        fd, temp_path = tempfile.mkstemp(
            dir=self.data_dir, prefix=f".{self.name}_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self.path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    def all(self) -> list[dict[str, Any]]:
        return self._load_data().get("documents", [])

    def get(self, doc_id: str) -> dict[str, Any] | None:
        for doc in self.all():
            if doc["id"] == doc_id:
                return doc
        return None

    def insert(self, doc: dict[str, Any]) -> None:
        """
        Append a new document.

        Raises:
            ValidationError: If a document with the same ID exists.
        """
        with self._lock():
            data = self._load_data()
            docs = data.setdefault("documents", [])
            if any(d["id"] == doc["id"] for d in docs):
                raise ValidationError(f"Duplicate {self.name} id: {doc['id']}", field="id")
            docs.append(doc)
            self._save_data(data)

    def replace(self, doc: dict[str, Any]) -> dict[str, Any]:
        """
        Replace a stored document if its version still matches.

        Returns:
            The stored document, with version incremented and updated_at refreshed.

        Raises:
            NotFoundError: If the document doesn't exist.
            ConcurrentUpdateError: If the stored version differs from doc["version"].
        """
        with self._lock():
            data = self._load_data()
            docs = data.get("documents", [])
            for i, existing in enumerate(docs):
                if existing["id"] != doc["id"]:
                    continue
                found = existing.get("version", 0)
                expected = doc.get("version", 0)
                if found != expected:
                    raise ConcurrentUpdateError(self.name, doc["id"], expected, found)
                stored = dict(doc, version=expected + 1, updated_at=_utc_now())
                docs[i] = stored
                self._save_data(data)
                return stored
        raise self._not_found(doc["id"])


def _apply_stored(entity: Any, stored: dict[str, Any]) -> None:
    entity.version = stored["version"]
    entity.updated_at = stored["updated_at"]


class JsonMatchRepository:
    def __init__(self, collection: JsonCollection):
        self._collection = collection

    def _where(self, predicate: Callable[[Match], bool]) -> list[Match]:
        matches = [Match.from_dict(d) for d in self._collection.all()]
        return [m for m in matches if predicate(m)]

    def find_by_id(self, match_id: str) -> Match | None:
        doc = self._collection.get(match_id)
        return Match.from_dict(doc) if doc else None

    def find_by_request(self, request_id: str) -> list[Match]:
        return self._where(lambda m: m.request_id == request_id)

    def find_by_trip(self, trip_id: str) -> list[Match]:
        return self._where(lambda m: m.trip_id == trip_id)

    def find_pending(self) -> list[Match]:
        return self._where(lambda m: m.status == MatchStatus.PENDING)

    def create(self, match: Match) -> Match:
        self._collection.insert(match.to_dict())
        return match

    def update(self, match: Match) -> Match:
        _apply_stored(match, self._collection.replace(match.to_dict()))
        return match


class JsonShopperRequestRepository:
    def __init__(self, collection: JsonCollection):
        self._collection = collection

    def _where(self, predicate: Callable[[ShopperRequest], bool]) -> list[ShopperRequest]:
        requests = [ShopperRequest.from_dict(d) for d in self._collection.all()]
        return [r for r in requests if predicate(r)]

    def find_by_id(self, request_id: str) -> ShopperRequest | None:
        doc = self._collection.get(request_id)
        return ShopperRequest.from_dict(doc) if doc else None

    def find_by_shopper(self, shopper_id: str) -> list[ShopperRequest]:
        return self._where(lambda r: r.shopper_id == shopper_id)

    def find_open(self) -> list[ShopperRequest]:
        return self._where(lambda r: r.status == RequestStatus.OPEN)

    def find_expired_cooldowns(self, now: datetime) -> list[ShopperRequest]:
        return self._where(
            lambda r: r.status == RequestStatus.ON_HOLD
            and r.cooldown_ends_at is not None
            and r.cooldown_ends_at <= now
            and not r.cooldown_processed
        )

    def find_missed_deadlines(self, now: datetime) -> list[ShopperRequest]:
        return self._where(
            lambda r: r.status == RequestStatus.PURCHASE_PENDING
            and r.purchase_deadline is not None
            and r.purchase_deadline <= now
        )

    def create(self, request: ShopperRequest) -> ShopperRequest:
        self._collection.insert(request.to_dict())
        return request

    def update(self, request: ShopperRequest) -> ShopperRequest:
        _apply_stored(request, self._collection.replace(request.to_dict()))
        return request


class JsonTripRepository:
    def __init__(self, collection: JsonCollection):
        self._collection = collection

    def find_by_id(self, trip_id: str) -> Trip | None:
        doc = self._collection.get(trip_id)
        return Trip.from_dict(doc) if doc else None

    def find_by_traveler(self, traveler_id: str) -> list[Trip]:
        trips = [Trip.from_dict(d) for d in self._collection.all()]
        return [t for t in trips if t.traveler_id == traveler_id]

    def find_by_route(self, from_country: str, to_country: str) -> list[Trip]:
        trips = [Trip.from_dict(d) for d in self._collection.all()]
        return [
            t
            for t in trips
            if t.from_country == from_country
            and t.to_country == to_country
            and t.status in BOOKABLE_TRIP_STATUSES
        ]

    def create(self, trip: Trip) -> Trip:
        self._collection.insert(trip.to_dict())
        return trip

    def update(self, trip: Trip) -> Trip:
        _apply_stored(trip, self._collection.replace(trip.to_dict()))
        return trip


class JsonTravelerRepository:
    def __init__(self, collection: JsonCollection):
        self._collection = collection

    def find_by_id(self, traveler_id: str) -> TravelerProfile | None:
        doc = self._collection.get(traveler_id)
        return TravelerProfile.from_dict(doc) if doc else None

    def save(self, profile: TravelerProfile) -> TravelerProfile:
        """Insert a new profile or replace an existing one."""
        if self._collection.get(profile.id) is None:
            self._collection.insert(profile.to_dict())
        else:
            _apply_stored(profile, self._collection.replace(profile.to_dict()))
        return profile


class JsonStore:
    """All carrymatch collections under one data directory."""

    def __init__(self, data_dir: Path | None = None):
        """
        Initialize JsonStore.

        Args:
            data_dir: Override data directory (for testing).
        """
        self.data_dir = data_dir or DATA_DIR
        self.matches = JsonMatchRepository(
            JsonCollection(self.data_dir, "matches", MatchNotFoundError)
        )
        self.requests = JsonShopperRequestRepository(
            JsonCollection(self.data_dir, "requests", RequestNotFoundError)
        )
        self.trips = JsonTripRepository(
            JsonCollection(self.data_dir, "trips", TripNotFoundError)
        )
        self.travelers = JsonTravelerRepository(JsonCollection(self.data_dir, "travelers"))
