"""Protocol definitions for the persistence collaborator."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .models import Match, ShopperRequest, TravelerProfile, Trip


class MatchRepository(Protocol):
    """Storage for Match documents.

    ``update`` is a single-document write that must fail with
    ``ConcurrentUpdateError`` when the stored version differs from
    ``match.version``. On success the stored version is incremented and
    mirrored onto the passed object.
    """

    def find_by_id(self, match_id: str) -> Match | None: ...

    def find_by_request(self, request_id: str) -> list[Match]: ...

    def find_by_trip(self, trip_id: str) -> list[Match]: ...

    def find_pending(self) -> list[Match]: ...

    def create(self, match: Match) -> Match: ...

    def update(self, match: Match) -> Match: ...


class ShopperRequestRepository(Protocol):
    """Storage for ShopperRequest documents (bag items embedded)."""

    def find_by_id(self, request_id: str) -> ShopperRequest | None: ...

    def find_by_shopper(self, shopper_id: str) -> list[ShopperRequest]: ...

    def find_open(self) -> list[ShopperRequest]: ...

    def find_expired_cooldowns(self, now: datetime) -> list[ShopperRequest]:
        """Requests on hold whose cooldown ended at or before *now* and hasn't been processed."""
        ...

    def find_missed_deadlines(self, now: datetime) -> list[ShopperRequest]:
        """Requests pending purchase whose deadline is at or before *now*."""
        ...

    def create(self, request: ShopperRequest) -> ShopperRequest: ...

    def update(self, request: ShopperRequest) -> ShopperRequest: ...


class TripRepository(Protocol):
    """Storage for Trip documents."""

    def find_by_id(self, trip_id: str) -> Trip | None: ...

    def find_by_traveler(self, traveler_id: str) -> list[Trip]: ...

    def find_by_route(self, from_country: str, to_country: str) -> list[Trip]:
        """Pending or active trips on exactly this route."""
        ...

    def create(self, trip: Trip) -> Trip: ...

    def update(self, trip: Trip) -> Trip: ...


class TravelerRepository(Protocol):
    """Read access to traveler reputation."""

    def find_by_id(self, traveler_id: str) -> TravelerProfile | None: ...

    def save(self, profile: TravelerProfile) -> TravelerProfile: ...
