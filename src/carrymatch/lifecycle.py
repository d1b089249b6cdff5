"""Match state machine: claim, approve, cancel, complete and reject.

    pending  --claim-->    claimed  --approve-->  approved  --complete-->  completed
    pending  --reject-->   rejected
    claimed  --reject-->   rejected
    approved --cancel (inside cooldown)--> rejected, request reopened

Every operation validates fully before its first write. Writes are
version-checked single-document updates; when an operation touches two
documents the match is written first and reverted if the second write fails.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .errors import (
    CapabilityMismatchError,
    CapacityExceededError,
    InvalidStateError,
    MatchNotFoundError,
    RequestNotFoundError,
    TripNotFoundError,
    UnauthorizedError,
    ValidationError,
    WindowExpiredError,
)
from .models import (
    BOOKABLE_TRIP_STATUSES,
    MATCHABLE_REQUEST_STATUSES,
    Match,
    MatchStatus,
    RequestStatus,
    ShopperRequest,
    Trip,
)
from .notifications import LoggingNotifier, NotificationDispatcher, Notifier
from .repositories import MatchRepository, ShopperRequestRepository, TripRepository
from .rules import BusinessRules
from .scorer import bundle_totals, capability_issues, check_capacity
from .utils import add_hours, to_iso, utc_now

logger = logging.getLogger(__name__)


class MatchLifecycle:
    """Owns every Match status transition."""

    def __init__(
        self,
        matches: MatchRepository,
        requests: ShopperRequestRepository,
        trips: TripRepository,
        notifier: Notifier | None = None,
        rules: BusinessRules | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.matches = matches
        self.requests = requests
        self.trips = trips
        self.notices = NotificationDispatcher(notifier or LoggingNotifier())
        self.rules = rules or BusinessRules()
        self.clock = clock

    # --- Lookups ---

    def get_match(self, match_id: str) -> Match:
        match = self.matches.find_by_id(match_id)
        if match is None:
            raise MatchNotFoundError(match_id)
        return match

    def _get_request(self, request_id: str) -> ShopperRequest:
        request = self.requests.find_by_id(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def _get_trip(self, trip_id: str) -> Trip:
        trip = self.trips.find_by_id(trip_id)
        if trip is None:
            raise TripNotFoundError(trip_id)
        return trip

    def matches_for_request(self, request_id: str) -> list[Match]:
        return self.matches.find_by_request(request_id)

    def matches_for_trip(self, trip_id: str) -> list[Match]:
        return self.matches.find_by_trip(trip_id)

    def pending_matches(self) -> list[Match]:
        return self.matches.find_pending()

    # --- Transitions ---

    def create_match(
        self,
        request_id: str,
        trip_id: str,
        score: float,
        assigned_item_ids: list[str] | None = None,
    ) -> Match:
        """
        Persist a new pending match.

        This is append-only: callers check for an existing non-rejected match
        on the same (request, trip) pair first.

        Raises:
            RequestNotFoundError, TripNotFoundError: If either side is missing.
            InvalidStateError: If the trip is no longer taking items.
            ValidationError: If an assigned item isn't part of the request.
            CapabilityMismatchError: If the trip can't handle fragile or
                special-delivery items in the bundle.
        """
        request = self._get_request(request_id)
        trip = self._get_trip(trip_id)
        _require_bookable(trip)

        assigned = list(assigned_item_ids or [])
        _require_request_items(request, assigned)

        bundle = request.items_by_ids(assigned) if assigned else request.items
        issues = capability_issues(trip, bundle_totals(bundle))
        if issues:
            raise CapabilityMismatchError(trip.id, issues)

        match = Match.create(
            request_id=request.id,
            trip_id=trip.id,
            traveler_id=trip.traveler_id,
            match_score=score,
            assigned_item_ids=assigned,
        )
        self.matches.create(match)
        logger.info("Created match %s (request %s, trip %s, score %s)", match.id, request.id, trip.id, score)
        return match

    def claim_match(self, traveler_id: str, match_id: str, assigned_item_ids: list[str]) -> Match:
        """
        Traveler takes a pending match and commits to carrying specific items.

        The items' combined weight must fit the trip's remaining carry-on or
        checked allowance; that allowance is reduced by the weight.

        Raises:
            MatchNotFoundError: If the match doesn't exist.
            UnauthorizedError: If the caller isn't the match's traveler.
            InvalidStateError: If the match isn't pending, the request is no
                longer open for matching, or the trip is no longer taking items.
            ValidationError: If the item list is empty or references foreign items.
            CapacityExceededError: If the items don't fit either allowance.
        """
        match = self.get_match(match_id)
        if match.traveler_id != traveler_id:
            raise UnauthorizedError(traveler_id, "claim match", match_id)
        if match.status != MatchStatus.PENDING:
            raise InvalidStateError(match_id, match.status.value, (MatchStatus.PENDING.value,))

        if not assigned_item_ids:
            raise ValidationError("At least one item must be assigned", field="assigned_item_ids")
        if len(set(assigned_item_ids)) != len(assigned_item_ids):
            raise ValidationError("Assigned items contain duplicates", field="assigned_item_ids")

        request = self._get_request(match.request_id)
        _require_matchable(request)
        _require_request_items(request, assigned_item_ids)
        trip = self._get_trip(match.trip_id)
        _require_bookable(trip)

        totals = bundle_totals(request.items_by_ids(assigned_item_ids))
        total_weight = round(totals.total_weight, 3)
        fit = check_capacity(trip, total_weight)
        if not fit.fits:
            raise CapacityExceededError(
                total_weight, trip.available_carry_on_kg, trip.available_checked_kg
            )

        match.assigned_item_ids = list(assigned_item_ids)
        match.status = MatchStatus.CLAIMED
        self.matches.update(match)

        if fit.fits_carry_on:
            trip.available_carry_on_kg = round(trip.available_carry_on_kg - total_weight, 3)
        else:
            trip.available_checked_kg = round(trip.available_checked_kg - total_weight, 3)
        try:
            self.trips.update(trip)
        except Exception:
            self._revert_match(match, MatchStatus.PENDING, assigned_item_ids=[])
            raise

        logger.info(
            "Match %s claimed by %s (%skg from %s)",
            match.id,
            traveler_id,
            total_weight,
            "carry-on" if fit.fits_carry_on else "checked",
        )
        return match

    def approve_match(self, shopper_id: str, match_id: str) -> Match:
        """
        Shopper accepts a claimed match, opening the cooldown window.

        The request goes on hold with cooldown_ends_at = now + cooldown hours
        and purchase_deadline = cooldown_ends_at + purchase window hours.

        Raises:
            MatchNotFoundError: If the match doesn't exist.
            UnauthorizedError: If the caller doesn't own the request.
            InvalidStateError: If the match isn't claimed, the request is no
                longer open for matching, or the request already has an
                approved or completed match.
        """
        match = self.get_match(match_id)
        request = self._get_request(match.request_id)
        if request.shopper_id != shopper_id:
            raise UnauthorizedError(shopper_id, "approve match", match_id)
        if match.status != MatchStatus.CLAIMED:
            raise InvalidStateError(match_id, match.status.value, (MatchStatus.CLAIMED.value,))
        _require_matchable(request)

        booked = [
            m
            for m in self.matches.find_by_request(request.id)
            if m.id != match.id and m.status in (MatchStatus.APPROVED, MatchStatus.COMPLETED)
        ]
        if booked:
            raise InvalidStateError(
                match_id,
                match.status.value,
                reason=f"request {request.id} already has booked match {booked[0].id}",
            )

        now = self.clock()
        cooldown_ends_at = add_hours(now, self.rules.cooldowns.shopper_cooldown_hours)
        purchase_deadline = add_hours(
            cooldown_ends_at, self.rules.cooldowns.traveler_purchase_window_hours
        )

        match.status = MatchStatus.APPROVED
        self.matches.update(match)

        request.status = RequestStatus.ON_HOLD
        request.cooldown_ends_at = cooldown_ends_at
        request.purchase_deadline = purchase_deadline
        request.cooldown_processed = False
        try:
            self.requests.update(request)
        except Exception:
            self._revert_match(match, MatchStatus.CLAIMED)
            raise

        logger.info("Match %s approved; cooldown ends %s", match.id, to_iso(cooldown_ends_at))
        self.notices.booking_confirmed(request.shopper_id, match.traveler_id, match.id, cooldown_ends_at)
        return match

    def cancel_during_cooldown(self, user_id: str, match_id: str, reason: str | None = None) -> Match:
        """
        Either party backs out of an approved match before the cooldown ends.

        The match is rejected and the request reopened for matching with its
        deadlines cleared.

        Raises:
            MatchNotFoundError: If the match doesn't exist.
            UnauthorizedError: If the caller is neither shopper nor traveler.
            InvalidStateError: If the match isn't approved.
            WindowExpiredError: If now is past the request's cooldown_ends_at.
        """
        match = self.get_match(match_id)
        request = self._get_request(match.request_id)
        trip = self._get_trip(match.trip_id)

        is_shopper = request.shopper_id == user_id
        is_traveler = trip.traveler_id == user_id
        if not is_shopper and not is_traveler:
            raise UnauthorizedError(user_id, "cancel match", match_id)
        if match.status != MatchStatus.APPROVED:
            raise InvalidStateError(match_id, match.status.value, (MatchStatus.APPROVED.value,))

        now = self.clock()
        if request.cooldown_ends_at is None or now > request.cooldown_ends_at:
            raise WindowExpiredError(match_id, to_iso(request.cooldown_ends_at))

        match.status = MatchStatus.REJECTED
        self.matches.update(match)

        request.status = RequestStatus.OPEN
        request.cooldown_ends_at = None
        request.purchase_deadline = None
        request.cooldown_processed = False
        request.cancellation_reason = reason
        try:
            self.requests.update(request)
        except Exception:
            self._revert_match(match, MatchStatus.APPROVED)
            raise

        logger.info("Match %s cancelled during cooldown by %s", match.id, user_id)
        other_party = trip.traveler_id if is_shopper else request.shopper_id
        self.notices.booking_cancelled(other_party, match.id, reason or "cancelled during cooldown")
        return match

    def complete_match(self, traveler_id: str, match_id: str) -> Match:
        """
        Raises:
            MatchNotFoundError: If the match doesn't exist.
            UnauthorizedError: If the caller isn't the match's traveler.
            InvalidStateError: If the match isn't approved.
        """
        match = self.get_match(match_id)
        if match.traveler_id != traveler_id:
            raise UnauthorizedError(traveler_id, "complete match", match_id)
        if match.status != MatchStatus.APPROVED:
            raise InvalidStateError(match_id, match.status.value, (MatchStatus.APPROVED.value,))

        request = self._get_request(match.request_id)
        match.status = MatchStatus.COMPLETED
        self.matches.update(match)

        logger.info("Match %s completed", match.id)
        self.notices.delivery_completed(
            match.traveler_id, request.shopper_id, match.id, request.price_summary.delivery_fee
        )
        return match

    def reject_match(self, user_id: str, match_id: str) -> Match:
        """
        Either party turns down a match that hasn't been approved yet.

        Raises:
            MatchNotFoundError: If the match doesn't exist.
            UnauthorizedError: If the caller is neither shopper nor traveler.
            InvalidStateError: If the match isn't pending or claimed.
        """
        match = self.get_match(match_id)
        request = self.requests.find_by_id(match.request_id)
        trip = self.trips.find_by_id(match.trip_id)

        is_shopper = request is not None and request.shopper_id == user_id
        is_traveler = trip is not None and trip.traveler_id == user_id
        if not is_shopper and not is_traveler:
            raise UnauthorizedError(user_id, "reject match", match_id)

        allowed = (MatchStatus.PENDING, MatchStatus.CLAIMED)
        if match.status not in allowed:
            raise InvalidStateError(match_id, match.status.value, tuple(s.value for s in allowed))

        match.status = MatchStatus.REJECTED
        self.matches.update(match)
        logger.info("Match %s rejected by %s", match.id, user_id)
        return match

    def _revert_match(
        self,
        match: Match,
        status: MatchStatus,
        assigned_item_ids: list[str] | None = None,
    ) -> None:
        match.status = status
        if assigned_item_ids is not None:
            match.assigned_item_ids = assigned_item_ids
        try:
            self.matches.update(match)
        except Exception:
            logger.error("Could not revert match %s to %s after a failed write", match.id, status.value)
            raise
        logger.warning("Reverted match %s to %s after a failed write", match.id, status.value)


def _require_matchable(request: ShopperRequest) -> None:
    if request.status not in MATCHABLE_REQUEST_STATUSES:
        raise InvalidStateError(
            request.id,
            request.status.value,
            tuple(s.value for s in (RequestStatus.OPEN, RequestStatus.MATCHED)),
        )


def _require_bookable(trip: Trip) -> None:
    if trip.status not in BOOKABLE_TRIP_STATUSES:
        raise InvalidStateError(
            trip.id,
            trip.status.value,
            reason="trip is no longer taking items",
        )


def _require_request_items(request: ShopperRequest, item_ids: list[str]) -> None:
    known = set(request.item_ids())
    foreign = [i for i in item_ids if i not in known]
    if foreign:
        raise ValidationError(
            f"Assigned items {', '.join(foreign)} do not belong to this request",
            field="assigned_item_ids",
            details=foreign,
        )
