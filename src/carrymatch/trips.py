"""Traveler-owned trip management: creation, edits and status changes.

    pending --activate--> active --complete--> completed
    pending --cancel-->   cancelled
    active  --cancel-->   cancelled

Only pending and active trips take on new items. Capacity is set when the
trip is created and afterwards changes only through match claims.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from .errors import InvalidStateError, TripNotFoundError, UnauthorizedError, ValidationError
from .models import BOOKABLE_TRIP_STATUSES, MatchStatus, Trip, TripStatus
from .repositories import MatchRepository, TripRepository
from .scorer import CapacityFit, check_capacity
from .utils import resolve_timezone

logger = logging.getLogger(__name__)

# Fields a traveler may change after creating the trip
EDITABLE_FIELDS = (
    "from_country",
    "to_country",
    "departure_at",
    "arrival_at",
    "timezone",
    "can_carry_fragile",
    "can_handle_special_delivery",
)


def validate_trip(trip: Trip) -> None:
    """
    Check a trip's schedule, timezone and capacity.

    Raises:
        ValidationError: On blank countries, an arrival not after departure,
            an unknown timezone or negative capacity.
    """
    if not trip.from_country.strip() or not trip.to_country.strip():
        raise ValidationError("Trip countries can't be blank", field="country")
    if trip.arrival_at <= trip.departure_at:
        raise ValidationError("arrival_at must be after departure_at", field="arrival_at")
    resolve_timezone(trip.timezone)
    if trip.available_carry_on_kg < 0 or trip.available_checked_kg < 0:
        raise ValidationError("Available capacity can't be negative", field="capacity")


class TripManager:
    """Owns Trip documents on behalf of their travelers."""

    def __init__(self, trips: TripRepository, matches: MatchRepository):
        self.trips = trips
        self.matches = matches

    def _get_trip(self, trip_id: str) -> Trip:
        trip = self.trips.find_by_id(trip_id)
        if trip is None:
            raise TripNotFoundError(trip_id)
        return trip

    def get_trip(self, traveler_id: str, trip_id: str, action: str = "view trip") -> Trip:
        trip = self._get_trip(trip_id)
        if trip.traveler_id != traveler_id:
            raise UnauthorizedError(traveler_id, action, trip_id)
        return trip

    def traveler_trips(self, traveler_id: str) -> list[Trip]:
        return sorted(self.trips.find_by_traveler(traveler_id), key=lambda t: t.departure_at)

    def create_trip(
        self,
        traveler_id: str,
        from_country: str,
        to_country: str,
        departure_at: datetime,
        arrival_at: datetime,
        available_carry_on_kg: float,
        available_checked_kg: float,
        **kwargs: Any,
    ) -> Trip:
        """
        Validate and save a new pending trip.

        Raises:
            ValidationError: If the trip fails validate_trip.
        """
        trip = Trip.create(
            traveler_id=traveler_id,
            from_country=from_country,
            to_country=to_country,
            departure_at=departure_at,
            arrival_at=arrival_at,
            available_carry_on_kg=available_carry_on_kg,
            available_checked_kg=available_checked_kg,
            **kwargs,
        )
        validate_trip(trip)
        self.trips.create(trip)
        logger.info("Created trip %s for %s (%s -> %s)", trip.id, traveler_id, from_country, to_country)
        return trip

    def update_trip(self, traveler_id: str, trip_id: str, **changes: Any) -> Trip:
        """
        Edit the schedule, route or handling capabilities of an open trip.

        Raises:
            TripNotFoundError: If the trip doesn't exist.
            UnauthorizedError: If the caller doesn't own the trip.
            InvalidStateError: If the trip is completed or cancelled.
            ValidationError: If a field can't be edited or the result is invalid.
        """
        trip = self.get_trip(traveler_id, trip_id, "update trip")
        _require_open(trip)

        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(
                f"Trip fields can't be edited: {', '.join(unknown)}", field="trip", details=unknown
            )
        for name, value in changes.items():
            setattr(trip, name, value)
        validate_trip(trip)

        self.trips.update(trip)
        logger.info("Trip %s updated (%s)", trip.id, ", ".join(sorted(changes)) or "no changes")
        return trip

    def activate_trip(self, traveler_id: str, trip_id: str) -> Trip:
        trip = self.get_trip(traveler_id, trip_id, "activate trip")
        if trip.status != TripStatus.PENDING:
            raise InvalidStateError(trip.id, trip.status.value, (TripStatus.PENDING.value,))
        return self._set_status(trip, TripStatus.ACTIVE)

    def complete_trip(self, traveler_id: str, trip_id: str) -> Trip:
        trip = self.get_trip(traveler_id, trip_id, "complete trip")
        if trip.status != TripStatus.ACTIVE:
            raise InvalidStateError(trip.id, trip.status.value, (TripStatus.ACTIVE.value,))
        return self._set_status(trip, TripStatus.COMPLETED)

    def cancel_trip(self, traveler_id: str, trip_id: str, reason: str | None = None) -> Trip:
        """
        Withdraw a trip and reject its pending and claimed matches.

        A trip with an approved match can't be cancelled; that booking has to
        be cancelled during its cooldown first. Matches are rejected before
        the trip is written, so a failed write leaves the trip open and the
        call can be repeated.

        Raises:
            TripNotFoundError: If the trip doesn't exist.
            UnauthorizedError: If the caller doesn't own the trip.
            InvalidStateError: If the trip is already finished or has a booked match.
        """
        trip = self.get_trip(traveler_id, trip_id, "cancel trip")
        _require_open(trip)

        matches = self.matches.find_by_trip(trip.id)
        booked = [m for m in matches if m.status == MatchStatus.APPROVED]
        if booked:
            raise InvalidStateError(
                trip.id, trip.status.value, reason=f"trip has booked match {booked[0].id}"
            )

        for match in matches:
            if match.status in (MatchStatus.PENDING, MatchStatus.CLAIMED):
                match.status = MatchStatus.REJECTED
                self.matches.update(match)
                logger.info("Match %s rejected: trip %s cancelled", match.id, trip.id)

        self._set_status(trip, TripStatus.CANCELLED)
        if reason:
            logger.info("Trip %s cancellation reason: %s", trip.id, reason)
        return trip

    def check_capacity(self, trip_id: str, total_weight: float) -> CapacityFit:
        """
        Report whether a weight fits the trip's remaining allowances.

        Raises:
            TripNotFoundError: If the trip doesn't exist.
            ValidationError: If the weight isn't positive.
        """
        if total_weight <= 0:
            raise ValidationError("Weight must be positive", field="weight_kg")
        return check_capacity(self._get_trip(trip_id), total_weight)

    def _set_status(self, trip: Trip, status: TripStatus) -> Trip:
        previous = trip.status
        trip.status = status
        self.trips.update(trip)
        logger.info("Trip %s: %s -> %s", trip.id, previous.value, status.value)
        return trip


def _require_open(trip: Trip) -> None:
    if trip.status not in BOOKABLE_TRIP_STATUSES:
        raise InvalidStateError(
            trip.id,
            trip.status.value,
            tuple(s.value for s in (TripStatus.PENDING, TripStatus.ACTIVE)),
        )
