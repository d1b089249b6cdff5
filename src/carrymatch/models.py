"""Data models for carrymatch."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .utils import from_iso, generate_id, to_iso, utc_now


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return to_iso(utc_now())


class RequestStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    MATCHED = "matched"
    ON_HOLD = "on_hold"
    PURCHASE_PENDING = "purchase_pending"
    PURCHASED = "purchased"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class TripStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MatchStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


# Trips that can still take on new items
BOOKABLE_TRIP_STATUSES = {TripStatus.PENDING, TripStatus.ACTIVE}

# Requests whose matches may still be claimed and approved
MATCHABLE_REQUEST_STATUSES = {RequestStatus.OPEN, RequestStatus.MATCHED}

# Requests that can no longer be cancelled by the shopper directly
IN_PROGRESS_REQUEST_STATUSES = {
    RequestStatus.MATCHED,
    RequestStatus.ON_HOLD,
    RequestStatus.PURCHASE_PENDING,
    RequestStatus.PURCHASED,
    RequestStatus.IN_TRANSIT,
}


@dataclass
class BagItem:
    """One product line within a shopper request."""

    id: str
    name: str
    price: float  # unit price
    currency: str  # ISO 4217, upper case
    weight_kg: float  # unit weight
    quantity: int = 1
    is_fragile: bool = False
    requires_special_delivery: bool = False
    special_delivery_category: str | None = None
    product_link: str | None = None

    @property
    def total_weight(self) -> float:
        return self.weight_kg * self.quantity

    @property
    def total_value(self) -> float:
        return self.price * self.quantity

    @property
    def needs_special_delivery(self) -> bool:
        return self.requires_special_delivery or bool(self.special_delivery_category)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "currency": self.currency,
            "weight_kg": self.weight_kg,
            "quantity": self.quantity,
            "is_fragile": self.is_fragile,
            "requires_special_delivery": self.requires_special_delivery,
        }
        if self.special_delivery_category is not None:
            result["special_delivery_category"] = self.special_delivery_category
        if self.product_link is not None:
            result["product_link"] = self.product_link
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BagItem":
        return cls(
            id=data["id"],
            name=data["name"],
            price=data["price"],
            currency=data["currency"],
            weight_kg=data["weight_kg"],
            quantity=data.get("quantity", 1),
            is_fragile=data.get("is_fragile", False),
            requires_special_delivery=data.get("requires_special_delivery", False),
            special_delivery_category=data.get("special_delivery_category"),
            product_link=data.get("product_link"),
        )

    @classmethod
    def create(cls, name: str, price: float, currency: str, weight_kg: float, **kwargs: Any) -> "BagItem":
        """Create a new item with a generated ID."""
        return cls(
            id=generate_id(),
            name=name,
            price=price,
            currency=currency.upper(),
            weight_kg=weight_kg,
            **kwargs,
        )


@dataclass
class PriceSummary:
    """Price breakdown fixed when the request is created."""

    total_item_cost: float
    delivery_fee: float
    service_fee: float
    tax: float

    @property
    def total(self) -> float:
        return round(self.total_item_cost + self.delivery_fee + self.service_fee + self.tax, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_item_cost": self.total_item_cost,
            "delivery_fee": self.delivery_fee,
            "service_fee": self.service_fee,
            "tax": self.tax,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceSummary":
        return cls(
            total_item_cost=data["total_item_cost"],
            delivery_fee=data["delivery_fee"],
            service_fee=data["service_fee"],
            tax=data["tax"],
        )


@dataclass
class ShopperRequest:
    """A shopper's bundle of items to be bought abroad and delivered."""

    id: str
    shopper_id: str
    from_country: str
    to_country: str
    items: list[BagItem]
    price_summary: PriceSummary
    status: RequestStatus = RequestStatus.DRAFT
    delivery_start: datetime | None = None
    delivery_end: datetime | None = None
    # cooldown_ends_at and purchase_deadline are set and cleared together
    cooldown_ends_at: datetime | None = None
    purchase_deadline: datetime | None = None
    cooldown_processed: bool = False
    cancellation_reason: str | None = None
    version: int = 0
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def item_ids(self) -> list[str]:
        return [item.id for item in self.items]

    def items_by_ids(self, item_ids: list[str]) -> list[BagItem]:
        """Return the items with the given IDs, in the order requested."""
        by_id = {item.id: item for item in self.items}
        return [by_id[i] for i in item_ids if i in by_id]

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "shopper_id": self.shopper_id,
            "from_country": self.from_country,
            "to_country": self.to_country,
            "items": [item.to_dict() for item in self.items],
            "price_summary": self.price_summary.to_dict(),
            "status": self.status.value,
            "delivery_start": to_iso(self.delivery_start),
            "delivery_end": to_iso(self.delivery_end),
            "cooldown_ends_at": to_iso(self.cooldown_ends_at),
            "purchase_deadline": to_iso(self.purchase_deadline),
            "cooldown_processed": self.cooldown_processed,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.cancellation_reason is not None:
            result["cancellation_reason"] = self.cancellation_reason
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShopperRequest":
        return cls(
            id=data["id"],
            shopper_id=data["shopper_id"],
            from_country=data["from_country"],
            to_country=data["to_country"],
            items=[BagItem.from_dict(i) for i in data.get("items", [])],
            price_summary=PriceSummary.from_dict(data["price_summary"]),
            status=RequestStatus(data.get("status", RequestStatus.DRAFT.value)),
            delivery_start=from_iso(data.get("delivery_start")),
            delivery_end=from_iso(data.get("delivery_end")),
            cooldown_ends_at=from_iso(data.get("cooldown_ends_at")),
            purchase_deadline=from_iso(data.get("purchase_deadline")),
            cooldown_processed=data.get("cooldown_processed", False),
            cancellation_reason=data.get("cancellation_reason"),
            version=data.get("version", 0),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        shopper_id: str,
        from_country: str,
        to_country: str,
        items: list[BagItem],
        price_summary: PriceSummary,
        delivery_start: datetime | None = None,
        delivery_end: datetime | None = None,
    ) -> "ShopperRequest":
        """Create a new draft request with generated ID and timestamps."""
        now = _utc_now()
        return cls(
            id=generate_id(),
            shopper_id=shopper_id,
            from_country=from_country,
            to_country=to_country,
            items=list(items),
            price_summary=price_summary,
            delivery_start=delivery_start,
            delivery_end=delivery_end,
            created_at=now,
            updated_at=now,
        )


@dataclass
class Trip:
    """A traveler's journey and the baggage capacity they offer."""

    id: str
    traveler_id: str
    from_country: str
    to_country: str
    departure_at: datetime
    arrival_at: datetime
    available_carry_on_kg: float
    available_checked_kg: float
    timezone: str = "UTC"
    can_carry_fragile: bool = False
    can_handle_special_delivery: bool = False
    status: TripStatus = TripStatus.PENDING
    version: int = 0
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "traveler_id": self.traveler_id,
            "from_country": self.from_country,
            "to_country": self.to_country,
            "departure_at": to_iso(self.departure_at),
            "arrival_at": to_iso(self.arrival_at),
            "timezone": self.timezone,
            "available_carry_on_kg": self.available_carry_on_kg,
            "available_checked_kg": self.available_checked_kg,
            "can_carry_fragile": self.can_carry_fragile,
            "can_handle_special_delivery": self.can_handle_special_delivery,
            "status": self.status.value,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Trip":
        return cls(
            id=data["id"],
            traveler_id=data["traveler_id"],
            from_country=data["from_country"],
            to_country=data["to_country"],
            departure_at=from_iso(data["departure_at"]),
            arrival_at=from_iso(data["arrival_at"]),
            timezone=data.get("timezone", "UTC"),
            available_carry_on_kg=data["available_carry_on_kg"],
            available_checked_kg=data["available_checked_kg"],
            can_carry_fragile=data.get("can_carry_fragile", False),
            can_handle_special_delivery=data.get("can_handle_special_delivery", False),
            status=TripStatus(data.get("status", TripStatus.PENDING.value)),
            version=data.get("version", 0),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        traveler_id: str,
        from_country: str,
        to_country: str,
        departure_at: datetime,
        arrival_at: datetime,
        available_carry_on_kg: float,
        available_checked_kg: float,
        **kwargs: Any,
    ) -> "Trip":
        """Create a new trip with generated ID and timestamps."""
        now = _utc_now()
        return cls(
            id=generate_id(),
            traveler_id=traveler_id,
            from_country=from_country,
            to_country=to_country,
            departure_at=departure_at,
            arrival_at=arrival_at,
            available_carry_on_kg=available_carry_on_kg,
            available_checked_kg=available_checked_kg,
            created_at=now,
            updated_at=now,
            **kwargs,
        )


@dataclass
class Match:
    """A scored pairing of one shopper request with one trip."""

    id: str
    request_id: str
    trip_id: str
    traveler_id: str  # copied from the trip for querying
    match_score: float  # 0-100
    assigned_item_ids: list[str] = field(default_factory=list)
    status: MatchStatus = MatchStatus.PENDING
    version: int = 0
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def is_active(self) -> bool:
        return self.status != MatchStatus.REJECTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "trip_id": self.trip_id,
            "traveler_id": self.traveler_id,
            "match_score": self.match_score,
            "assigned_item_ids": list(self.assigned_item_ids),
            "status": self.status.value,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Match":
        return cls(
            id=data["id"],
            request_id=data["request_id"],
            trip_id=data["trip_id"],
            traveler_id=data["traveler_id"],
            match_score=data["match_score"],
            assigned_item_ids=list(data.get("assigned_item_ids", [])),
            status=MatchStatus(data.get("status", MatchStatus.PENDING.value)),
            version=data.get("version", 0),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        request_id: str,
        trip_id: str,
        traveler_id: str,
        match_score: float,
        assigned_item_ids: list[str] | None = None,
    ) -> "Match":
        """Create a new pending match with generated ID and timestamps."""
        now = _utc_now()
        return cls(
            id=generate_id(),
            request_id=request_id,
            trip_id=trip_id,
            traveler_id=traveler_id,
            match_score=match_score,
            assigned_item_ids=list(assigned_item_ids or []),
            status=MatchStatus.PENDING,
            created_at=now,
            updated_at=now,
        )


@dataclass
class TravelerProfile:
    """Reputation data for a traveler."""

    id: str
    name: str
    rating: float | None = None  # None until the first review
    max_rating: float = 5.0
    version: int = 0
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rating": self.rating,
            "max_rating": self.max_rating,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TravelerProfile":
        return cls(
            id=data["id"],
            name=data["name"],
            rating=data.get("rating"),
            max_rating=data.get("max_rating") or 5.0,
            version=data.get("version", 0),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )
