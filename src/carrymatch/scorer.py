"""Compatibility scoring between a shopper's bundle and candidate trips.

The scorer filters out trips that can't take the bundle at all (lead time,
fragile handling, special delivery, capacity) and ranks the rest by a sum of
independent weighted signals, each of which adds a rationale line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .errors import TripNotFoundError, ValidationError
from .lead_time import OrderComplexity, trip_meets_lead_time
from .models import BagItem, Trip
from .repositories import TravelerRepository, TripRepository
from .rules import BusinessRules
from .utils import hours_until, to_iso, utc_now


@dataclass
class MatchCriteria:
    """Route and timing preferences for a search."""

    from_country: str
    to_country: str
    delivery_start: datetime | None = None
    delivery_end: datetime | None = None
    max_arrival_window_hours: float | None = None
    min_score: float | None = None

    def validate(self) -> None:
        """
        Raises:
            ValidationError: If any field is out of range.
        """
        if not self.from_country or not self.from_country.strip():
            raise ValidationError("from_country is required", field="from_country")
        if not self.to_country or not self.to_country.strip():
            raise ValidationError("to_country is required", field="to_country")
        if self.max_arrival_window_hours is not None and self.max_arrival_window_hours <= 0:
            raise ValidationError(
                "max_arrival_window_hours must be positive", field="max_arrival_window_hours"
            )
        if self.min_score is not None and not 0 <= self.min_score <= 100:
            raise ValidationError("min_score must be between 0 and 100", field="min_score")
        if (
            self.delivery_start is not None
            and self.delivery_end is not None
            and self.delivery_end < self.delivery_start
        ):
            raise ValidationError("delivery_end is before delivery_start", field="delivery_end")


@dataclass(frozen=True)
class BundleTotals:
    item_count: int
    total_weight: float
    total_value: float
    is_fragile: bool
    has_special_delivery: bool

    def complexity(self) -> OrderComplexity:
        return OrderComplexity(
            item_count=self.item_count,
            total_value=self.total_value,
            has_special_delivery=self.has_special_delivery,
        )


@dataclass(frozen=True)
class CapacityFit:
    fits_carry_on: bool
    fits_checked: bool
    available_carry_on_kg: float
    available_checked_kg: float

    @property
    def fits(self) -> bool:
        return self.fits_carry_on or self.fits_checked

    def to_dict(self) -> dict[str, Any]:
        return {
            "fits_carry_on": self.fits_carry_on,
            "fits_checked": self.fits_checked,
            "available_carry_on_kg": self.available_carry_on_kg,
            "available_checked_kg": self.available_checked_kg,
        }


@dataclass
class ScoredTrip:
    trip: Trip
    score: float
    rationale: list[str] = field(default_factory=list)
    capacity_fit: CapacityFit | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "trip_id": self.trip.id,
            "traveler_id": self.trip.traveler_id,
            "departure_at": to_iso(self.trip.departure_at),
            "arrival_at": to_iso(self.trip.arrival_at),
            "score": self.score,
            "rationale": list(self.rationale),
            "capacity_fit": self.capacity_fit.to_dict() if self.capacity_fit else None,
        }


@dataclass
class Feasibility:
    feasible: bool
    issues: list[str] = field(default_factory=list)


def bundle_totals(items: list[BagItem]) -> BundleTotals:
    """Aggregate weight, value and handling needs across a bundle."""
    return BundleTotals(
        item_count=len(items),
        total_weight=sum(item.total_weight for item in items),
        total_value=sum(item.total_value for item in items),
        is_fragile=any(item.is_fragile for item in items),
        has_special_delivery=any(item.needs_special_delivery for item in items),
    )


def check_capacity(trip: Trip, total_weight: float) -> CapacityFit:
    return CapacityFit(
        fits_carry_on=total_weight <= trip.available_carry_on_kg,
        fits_checked=total_weight <= trip.available_checked_kg,
        available_carry_on_kg=trip.available_carry_on_kg,
        available_checked_kg=trip.available_checked_kg,
    )


def capability_issues(trip: Trip, totals: BundleTotals) -> list[str]:
    """Handling requirements of the bundle that the trip can't meet."""
    issues = []
    if totals.is_fragile and not trip.can_carry_fragile:
        issues.append("Trip cannot handle fragile items")
    if totals.has_special_delivery and not trip.can_handle_special_delivery:
        issues.append("Trip cannot handle special delivery items")
    return issues


def _rank_key(result: ScoredTrip) -> tuple[float, datetime, str]:
    # Highest score first; ties go to the earlier departure, then trip id
    return (-result.score, result.trip.departure_at, result.trip.id)


class CompatibilityScorer:
    """Ranks trips on a route for a bundle of bag items."""

    def __init__(
        self,
        trips: TripRepository,
        travelers: TravelerRepository,
        rules: BusinessRules | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.trips = trips
        self.travelers = travelers
        self.rules = rules or BusinessRules()
        self.clock = clock

    def find_matches(self, items: list[BagItem], criteria: MatchCriteria) -> list[ScoredTrip]:
        """
        Score every feasible trip on the criteria's route.

        Returns:
            Scored trips, highest score first.

        Raises:
            ValidationError: If the criteria are malformed.
        """
        criteria.validate()
        if not items:
            return []

        now = self.clock()
        totals = bundle_totals(items)
        complexity = totals.complexity()

        candidates = [
            trip
            for trip in self.trips.find_by_route(criteria.from_country, criteria.to_country)
            if trip_meets_lead_time(trip.departure_at, complexity, now, self.rules.lead_time).valid
        ]

        results: list[ScoredTrip] = []
        for trip in candidates:
            scored = self.score_trip(trip, totals, criteria, now)
            if scored is None:
                continue
            if criteria.min_score is not None and scored.score < criteria.min_score:
                continue
            results.append(scored)

        results.sort(key=_rank_key)
        return results

    def top_matches(
        self, items: list[BagItem], criteria: MatchCriteria, limit: int | None = None
    ) -> list[ScoredTrip]:
        if limit is None:
            limit = self.rules.matching.max_results_per_search
        return self.find_matches(items, criteria)[:limit]

    def score_trip(
        self,
        trip: Trip,
        totals: BundleTotals,
        criteria: MatchCriteria,
        now: datetime,
    ) -> ScoredTrip | None:
        """Score one trip, or return None when it can't carry the bundle."""
        weights = self.rules.matching

        if capability_issues(trip, totals):
            return None
        capacity = check_capacity(trip, totals.total_weight)
        if not capacity.fits:
            return None

        score = 0.0
        rationale: list[str] = []

        if trip.from_country == criteria.from_country and trip.to_country == criteria.to_country:
            score += weights.route_weight
            rationale.append("Perfect route match")

        if criteria.max_arrival_window_hours:
            hours = hours_until(trip.arrival_at, now)
            if 0 <= hours <= criteria.max_arrival_window_hours:
                score += weights.arrival_window_weight
                rationale.append("Within arrival window")

        if capacity.fits_carry_on:
            score += weights.carry_on_fit_weight
            rationale.append("Fits in carry-on baggage")
        else:
            score += weights.checked_fit_weight
            rationale.append("Fits in checked baggage")

        traveler = self.travelers.find_by_id(trip.traveler_id)
        if traveler is not None and traveler.rating is not None:
            max_rating = traveler.max_rating or weights.default_max_rating
            score += (traveler.rating / max_rating) * weights.reputation_weight
            rationale.append(f"Traveler rating: {traveler.rating:g}/{max_rating:g}")

        if totals.is_fragile and trip.can_carry_fragile:
            score += weights.fragile_bonus
            rationale.append("Traveler can handle fragile items")

        if totals.has_special_delivery and trip.can_handle_special_delivery:
            score += weights.special_delivery_bonus
            rationale.append("Traveler can handle special delivery")

        if _arrives_in_delivery_window(trip, criteria):
            rationale.append("Arrives within requested delivery window")

        score = round(min(max(score, 0.0), weights.max_score), 2)
        return ScoredTrip(trip=trip, score=score, rationale=rationale, capacity_fit=capacity)

    def check_feasibility(self, trip_id: str, items: list[BagItem]) -> Feasibility:
        """
        List every reason a specific trip can't carry a bundle.

        Raises:
            TripNotFoundError: If the trip doesn't exist.
        """
        trip = self.trips.find_by_id(trip_id)
        if trip is None:
            raise TripNotFoundError(trip_id)

        totals = bundle_totals(items)
        issues = capability_issues(trip, totals)
        if not check_capacity(trip, totals.total_weight).fits:
            issues.append("Items exceed available baggage capacity")

        lead = trip_meets_lead_time(
            trip.departure_at, totals.complexity(), self.clock(), self.rules.lead_time
        )
        if not lead.valid:
            issues.append(lead.message)

        return Feasibility(feasible=not issues, issues=issues)


def _arrives_in_delivery_window(trip: Trip, criteria: MatchCriteria) -> bool:
    if criteria.delivery_start is None and criteria.delivery_end is None:
        return False
    if criteria.delivery_start is not None and trip.arrival_at < criteria.delivery_start:
        return False
    if criteria.delivery_end is not None and trip.arrival_at > criteria.delivery_end:
        return False
    return True
