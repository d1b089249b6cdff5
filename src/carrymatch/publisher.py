"""Shopper request creation, publishing and candidate match generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .errors import InvalidStateError, RequestNotFoundError, UnauthorizedError, ValidationError
from .lifecycle import MatchLifecycle
from .models import (
    IN_PROGRESS_REQUEST_STATUSES,
    BagItem,
    Match,
    MatchStatus,
    PriceSummary,
    RequestStatus,
    ShopperRequest,
)
from .repositories import MatchRepository, ShopperRequestRepository
from .rules import BusinessRules
from .scorer import CompatibilityScorer, MatchCriteria, ScoredTrip

logger = logging.getLogger(__name__)

# Requests that have already reached an end state
FINISHED_REQUEST_STATUSES = {
    RequestStatus.DELIVERED,
    RequestStatus.COMPLETED,
    RequestStatus.DISPUTED,
    RequestStatus.CANCELLED,
}


@dataclass
class PublishResult:
    request: ShopperRequest
    created: list[Match] = field(default_factory=list)
    skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "request": self.request.to_dict(),
            "created": [m.to_dict() for m in self.created],
            "skipped": self.skipped,
        }


def validate_item(item: BagItem, index: int = 0) -> None:
    """
    Raises:
        ValidationError: If the item has a blank name, non-positive price,
            weight or quantity, or a currency that isn't a 3-letter code.
    """
    where = f"items[{index}]"
    if not item.name or not item.name.strip():
        raise ValidationError(f"{where}: name is required", field=f"{where}.name")
    if item.price <= 0:
        raise ValidationError(f"{where}: price must be positive", field=f"{where}.price")
    if item.weight_kg <= 0:
        raise ValidationError(f"{where}: weight_kg must be positive", field=f"{where}.weight_kg")
    if item.quantity < 1:
        raise ValidationError(f"{where}: quantity must be at least 1", field=f"{where}.quantity")
    if len(item.currency) != 3 or not item.currency.isalpha():
        raise ValidationError(
            f"{where}: currency must be a 3-letter code, got '{item.currency}'",
            field=f"{where}.currency",
        )


def compute_price_summary(items: list[BagItem], rules: BusinessRules) -> PriceSummary:
    """Item cost plus flat fees, taxed on the whole subtotal."""
    pricing = rules.pricing
    item_cost = round(sum(item.total_value for item in items), 2)
    subtotal = item_cost + pricing.delivery_fee + pricing.service_fee
    return PriceSummary(
        total_item_cost=item_cost,
        delivery_fee=pricing.delivery_fee,
        service_fee=pricing.service_fee,
        tax=round(subtotal * pricing.tax_rate, 2),
    )


class RequestPublisher:
    """Draft -> open -> matched pipeline on the shopper's side."""

    def __init__(
        self,
        requests: ShopperRequestRepository,
        matches: MatchRepository,
        scorer: CompatibilityScorer,
        lifecycle: MatchLifecycle,
        rules: BusinessRules | None = None,
    ):
        self.requests = requests
        self.matches = matches
        self.scorer = scorer
        self.lifecycle = lifecycle
        self.rules = rules or BusinessRules()

    def _owned_request(self, shopper_id: str, request_id: str, action: str) -> ShopperRequest:
        request = self.requests.find_by_id(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        if request.shopper_id != shopper_id:
            raise UnauthorizedError(shopper_id, action, request_id)
        return request

    def get_request(self, shopper_id: str, request_id: str) -> ShopperRequest:
        return self._owned_request(shopper_id, request_id, "view request")

    def create_request(
        self,
        shopper_id: str,
        from_country: str,
        to_country: str,
        items: list[BagItem],
        delivery_start: datetime | None = None,
        delivery_end: datetime | None = None,
    ) -> ShopperRequest:
        """
        Create a draft request with its price summary fixed.

        Raises:
            ValidationError: If the route, items or delivery window are invalid.
        """
        if not from_country or not to_country:
            raise ValidationError("from_country and to_country are required", field="route")
        if not items:
            raise ValidationError("At least one item is required", field="items")
        for index, item in enumerate(items):
            validate_item(item, index)
        if delivery_start and delivery_end and delivery_end < delivery_start:
            raise ValidationError("delivery_end is before delivery_start", field="delivery_end")

        request = ShopperRequest.create(
            shopper_id=shopper_id,
            from_country=from_country,
            to_country=to_country,
            items=items,
            price_summary=compute_price_summary(items, self.rules),
            delivery_start=delivery_start,
            delivery_end=delivery_end,
        )
        self.requests.create(request)
        logger.info(
            "Created request %s for %s (%s -> %s, %d items)",
            request.id,
            shopper_id,
            from_country,
            to_country,
            len(items),
        )
        return request

    def publish_request(
        self,
        shopper_id: str,
        request_id: str,
        max_arrival_window_hours: float | None = None,
        min_score: float | None = None,
        limit: int | None = None,
    ) -> PublishResult:
        """
        Open a draft request and create pending matches for its best trips.

        Raises:
            RequestNotFoundError: If the request doesn't exist.
            UnauthorizedError: If the caller doesn't own it.
            InvalidStateError: If it isn't a draft.
            ValidationError: If it has no items.
        """
        request = self._owned_request(shopper_id, request_id, "publish request")
        if request.status != RequestStatus.DRAFT:
            raise InvalidStateError(request_id, request.status.value, (RequestStatus.DRAFT.value,))
        if not request.items:
            raise ValidationError("Cannot publish a request without items", field="items")

        request.status = RequestStatus.OPEN
        self.requests.update(request)

        criteria = self._criteria_for(request, max_arrival_window_hours, min_score)
        created, skipped = self._create_candidate_matches(request, criteria, limit)
        logger.info(
            "Published request %s: %d matches created, %d skipped", request.id, len(created), skipped
        )
        return PublishResult(request=request, created=created, skipped=skipped)

    def refresh_matches(
        self,
        shopper_id: str,
        request_id: str,
        max_arrival_window_hours: float | None = None,
        min_score: float | None = None,
    ) -> list[Match]:
        """Add matches for trips that appeared since publishing; return all live ones."""
        request = self._owned_request(shopper_id, request_id, "refresh matches for")
        if request.status != RequestStatus.OPEN:
            raise InvalidStateError(request_id, request.status.value, (RequestStatus.OPEN.value,))

        criteria = self._criteria_for(request, max_arrival_window_hours, min_score)
        self._create_candidate_matches(request, criteria, None)
        return self.active_matches(request.id)

    def active_matches(self, request_id: str) -> list[Match]:
        matches = [m for m in self.matches.find_by_request(request_id) if m.is_active]
        return sorted(matches, key=lambda m: -m.match_score)

    def cancel_request(self, shopper_id: str, request_id: str, reason: str | None = None) -> ShopperRequest:
        """
        Cancel a request that hasn't been booked yet.

        Its pending and claimed matches are rejected.

        Raises:
            RequestNotFoundError: If the request doesn't exist.
            UnauthorizedError: If the caller doesn't own it.
            InvalidStateError: If it is in progress or already finished.
        """
        request = self._owned_request(shopper_id, request_id, "cancel request")
        if request.status in IN_PROGRESS_REQUEST_STATUSES:
            raise InvalidStateError(
                request_id, request.status.value, reason="request is already in progress"
            )
        if request.status in FINISHED_REQUEST_STATUSES:
            raise InvalidStateError(request_id, request.status.value, reason="request is already closed")

        request.status = RequestStatus.CANCELLED
        request.cancellation_reason = reason
        self.requests.update(request)

        for match in self.matches.find_by_request(request.id):
            if match.status in (MatchStatus.PENDING, MatchStatus.CLAIMED):
                match.status = MatchStatus.REJECTED
                self.matches.update(match)

        logger.info("Cancelled request %s (%s)", request.id, reason or "no reason given")
        return request

    def preview_matches(
        self, items: list[BagItem], criteria: MatchCriteria, limit: int | None = None
    ) -> list[ScoredTrip]:
        """Score trips for a bundle without saving anything."""
        for index, item in enumerate(items):
            validate_item(item, index)
        return self.scorer.top_matches(items, criteria, limit)

    def _criteria_for(
        self,
        request: ShopperRequest,
        max_arrival_window_hours: float | None,
        min_score: float | None,
    ) -> MatchCriteria:
        return MatchCriteria(
            from_country=request.from_country,
            to_country=request.to_country,
            delivery_start=request.delivery_start,
            delivery_end=request.delivery_end,
            max_arrival_window_hours=max_arrival_window_hours,
            min_score=min_score,
        )

    def _create_candidate_matches(
        self, request: ShopperRequest, criteria: MatchCriteria, limit: int | None
    ) -> tuple[list[Match], int]:
        # One at a time, re-reading existing matches before each insert
        created: list[Match] = []
        skipped = 0
        for scored in self.scorer.top_matches(request.items, criteria, limit):
            taken = {m.trip_id for m in self.matches.find_by_request(request.id) if m.is_active}
            if scored.trip.id in taken:
                skipped += 1
                logger.debug("Request %s already matched with trip %s", request.id, scored.trip.id)
                continue
            created.append(self.lifecycle.create_match(request.id, scored.trip.id, scored.score))
        return created, skipped
