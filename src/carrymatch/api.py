"""FastAPI REST API for carrymatch."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import (
    CapabilityMismatchError,
    CapacityExceededError,
    CarrymatchError,
    ConcurrentUpdateError,
    InvalidStateError,
    MatchNotFoundError,
    NotFoundError,
    RequestNotFoundError,
    RulesFileError,
    TripNotFoundError,
    UnauthorizedError,
    ValidationError,
    WindowExpiredError,
)
from .models import BagItem, Match, TravelerProfile
from .scorer import MatchCriteria
from .services import Services, build_services
from .utils import parse_local_datetime, resolve_timezone


# --- Pydantic Schemas ---


class BagItemSchema(BaseModel):
    name: str
    price: float
    currency: str = "USD"
    weight_kg: float
    quantity: int = 1
    is_fragile: bool = False
    requires_special_delivery: bool = False
    special_delivery_category: Optional[str] = None
    product_link: Optional[str] = None


class RequestCreateRequest(BaseModel):
    """Request body for creating a draft shopper request."""

    from_country: str
    to_country: str
    items: list[BagItemSchema]
    delivery_start: Optional[datetime] = None
    delivery_end: Optional[datetime] = None


class PublishRequest(BaseModel):
    max_arrival_window_hours: Optional[float] = None
    min_score: Optional[float] = None
    limit: Optional[int] = Field(default=None, ge=1, le=100)


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class PreviewRequest(BaseModel):
    """Request body for scoring trips without creating matches."""

    from_country: str
    to_country: str
    items: list[BagItemSchema]
    delivery_start: Optional[datetime] = None
    delivery_end: Optional[datetime] = None
    max_arrival_window_hours: Optional[float] = None
    min_score: Optional[float] = None
    limit: Optional[int] = Field(default=None, ge=1, le=100)


class TripCreateRequest(BaseModel):
    """
    Request body for creating a trip.

    Times are given either as ISO datetimes (departure_at/arrival_at) or as
    local MM/dd/yyyy dates and HH:mm times in the trip's timezone.
    """

    from_country: str
    to_country: str
    departure_at: Optional[datetime] = None
    arrival_at: Optional[datetime] = None
    departure_date: Optional[str] = None
    departure_time: Optional[str] = None
    arrival_date: Optional[str] = None
    arrival_time: Optional[str] = None
    available_carry_on_kg: float
    available_checked_kg: float
    timezone: str = "UTC"
    can_carry_fragile: bool = False
    can_handle_special_delivery: bool = False


class TripUpdateRequest(BaseModel):
    from_country: Optional[str] = None
    to_country: Optional[str] = None
    departure_at: Optional[datetime] = None
    arrival_at: Optional[datetime] = None
    timezone: Optional[str] = None
    can_carry_fragile: Optional[bool] = None
    can_handle_special_delivery: Optional[bool] = None


class TravelerProfileRequest(BaseModel):
    name: str
    rating: Optional[float] = None
    max_rating: float = 5.0


class ClaimRequest(BaseModel):
    assigned_item_ids: list[str]


class SweepRequest(BaseModel):
    now: Optional[datetime] = None


class MatchSchema(BaseModel):
    id: str
    request_id: str
    trip_id: str
    traveler_id: str
    match_score: float
    assigned_item_ids: list[str]
    status: str
    version: int
    created_at: str
    updated_at: str


class MatchListResponse(BaseModel):
    matches: list[MatchSchema]
    count: int


# --- Helper Functions ---


_services: Optional[Services] = None


def get_services() -> Services:
    """Get the process-wide service container, building it on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    """Replace the service container (None rebuilds it lazily)."""
    global _services
    _services = services


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _trip_time(
    at: Optional[datetime], date_str: Optional[str], time_str: Optional[str], tz_name: str, label: str
) -> datetime:
    if at is not None:
        return _aware(at)
    if date_str and time_str:
        return parse_local_datetime(date_str, time_str, tz_name)
    raise ValidationError(
        f"Provide {label}_at or both {label}_date and {label}_time", field=f"{label}_at"
    )


def _bag_item(schema: BagItemSchema) -> BagItem:
    return BagItem.create(
        name=schema.name,
        price=schema.price,
        currency=schema.currency,
        weight_kg=schema.weight_kg,
        quantity=schema.quantity,
        is_fragile=schema.is_fragile,
        requires_special_delivery=schema.requires_special_delivery,
        special_delivery_category=schema.special_delivery_category,
        product_link=schema.product_link,
    )


def match_to_schema(match: Match) -> MatchSchema:
    return MatchSchema(**match.to_dict())


def _match_list(matches: list[Match]) -> MatchListResponse:
    return MatchListResponse(matches=[match_to_schema(m) for m in matches], count=len(matches))


# --- FastAPI App ---


app = FastAPI(
    title="carrymatch API",
    description="Matching and booking between shoppers and travelers",
    version="0.1.0",
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handler ---


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    NotFoundError: 404,
    MatchNotFoundError: 404,
    RequestNotFoundError: 404,
    TripNotFoundError: 404,
    UnauthorizedError: 403,
    InvalidStateError: 409,
    CapacityExceededError: 422,
    CapabilityMismatchError: 422,
    WindowExpiredError: 409,
    ValidationError: 400,
    ConcurrentUpdateError: 409,
    RulesFileError: 500,
}


@app.exception_handler(CarrymatchError)
async def carrymatch_error_handler(request: Request, exc: CarrymatchError) -> JSONResponse:
    """Map CarrymatchError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


# --- Endpoints ---


@app.get("/api/health")
def health_check():
    services = get_services()
    return {"status": "ok", "data_dir": str(services.store.data_dir)}


# --- Shopper Request Endpoints ---


@app.post("/api/requests", status_code=201)
def create_request(body: RequestCreateRequest, x_user_id: str = Header()):
    services = get_services()
    request = services.publisher.create_request(
        shopper_id=x_user_id,
        from_country=body.from_country,
        to_country=body.to_country,
        items=[_bag_item(i) for i in body.items],
        delivery_start=_aware(body.delivery_start),
        delivery_end=_aware(body.delivery_end),
    )
    return request.to_dict()


@app.get("/api/requests/{request_id}")
def get_request(request_id: str, x_user_id: str = Header()):
    return get_services().publisher.get_request(x_user_id, request_id).to_dict()


@app.post("/api/requests/{request_id}/publish")
def publish_request(request_id: str, x_user_id: str = Header(), body: Optional[PublishRequest] = None):
    """
    Publish a draft request and create matches for its best trips.

    Returns the opened request, the new matches and how many trips were
    skipped because they were already matched.
    """
    body = body or PublishRequest()
    result = get_services().publisher.publish_request(
        x_user_id,
        request_id,
        max_arrival_window_hours=body.max_arrival_window_hours,
        min_score=body.min_score,
        limit=body.limit,
    )
    return result.to_dict()


@app.get("/api/requests/{request_id}/matches", response_model=MatchListResponse)
def list_request_matches(request_id: str, x_user_id: str = Header()):
    services = get_services()
    services.publisher.get_request(x_user_id, request_id)
    return _match_list(services.publisher.active_matches(request_id))


@app.post("/api/requests/{request_id}/refresh", response_model=MatchListResponse)
def refresh_request_matches(request_id: str, x_user_id: str = Header()):
    return _match_list(get_services().publisher.refresh_matches(x_user_id, request_id))


@app.post("/api/requests/{request_id}/cancel")
def cancel_request(request_id: str, x_user_id: str = Header(), body: Optional[CancelRequest] = None):
    body = body or CancelRequest()
    return get_services().publisher.cancel_request(x_user_id, request_id, body.reason).to_dict()


# --- Trip Endpoints ---


@app.get("/api/trips")
def list_trips(x_user_id: str = Header()):
    trips = get_services().trips.traveler_trips(x_user_id)
    return {"trips": [t.to_dict() for t in trips], "count": len(trips)}


@app.post("/api/trips", status_code=201)
def create_trip(body: TripCreateRequest, x_user_id: str = Header()):
    resolve_timezone(body.timezone)
    departure_at = _trip_time(
        body.departure_at, body.departure_date, body.departure_time, body.timezone, "departure"
    )
    arrival_at = _trip_time(body.arrival_at, body.arrival_date, body.arrival_time, body.timezone, "arrival")

    trip = get_services().trips.create_trip(
        traveler_id=x_user_id,
        from_country=body.from_country,
        to_country=body.to_country,
        departure_at=departure_at,
        arrival_at=arrival_at,
        available_carry_on_kg=body.available_carry_on_kg,
        available_checked_kg=body.available_checked_kg,
        timezone=body.timezone,
        can_carry_fragile=body.can_carry_fragile,
        can_handle_special_delivery=body.can_handle_special_delivery,
    )
    return trip.to_dict()


@app.get("/api/trips/{trip_id}")
def get_trip(trip_id: str, x_user_id: str = Header()):
    return get_services().trips.get_trip(x_user_id, trip_id).to_dict()


@app.patch("/api/trips/{trip_id}")
def update_trip(trip_id: str, body: TripUpdateRequest, x_user_id: str = Header()):
    """Edit route, schedule, timezone or handling capabilities of an open trip."""
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    for name in ("departure_at", "arrival_at"):
        if name in changes:
            changes[name] = _aware(changes[name])
    return get_services().trips.update_trip(x_user_id, trip_id, **changes).to_dict()


@app.post("/api/trips/{trip_id}/activate")
def activate_trip(trip_id: str, x_user_id: str = Header()):
    return get_services().trips.activate_trip(x_user_id, trip_id).to_dict()


@app.post("/api/trips/{trip_id}/complete")
def complete_trip(trip_id: str, x_user_id: str = Header()):
    return get_services().trips.complete_trip(x_user_id, trip_id).to_dict()


@app.post("/api/trips/{trip_id}/cancel")
def cancel_trip(trip_id: str, x_user_id: str = Header(), body: Optional[CancelRequest] = None):
    body = body or CancelRequest()
    return get_services().trips.cancel_trip(x_user_id, trip_id, body.reason).to_dict()


@app.get("/api/trips/{trip_id}/capacity")
def check_trip_capacity(trip_id: str, weight_kg: float = Query()):
    return get_services().trips.check_capacity(trip_id, weight_kg).to_dict()


@app.get("/api/trips/{trip_id}/matches", response_model=MatchListResponse)
def list_trip_matches(trip_id: str, x_user_id: str = Header()):
    services = get_services()
    services.trips.get_trip(x_user_id, trip_id, "view matches for")
    return _match_list(services.lifecycle.matches_for_trip(trip_id))


@app.put("/api/travelers/{traveler_id}")
def save_traveler_profile(traveler_id: str, body: TravelerProfileRequest):
    if body.rating is not None and not 0 <= body.rating <= body.max_rating:
        raise ValidationError("rating must be between 0 and max_rating", field="rating")
    travelers = get_services().store.travelers
    profile = travelers.find_by_id(traveler_id) or TravelerProfile(id=traveler_id, name=body.name)
    profile.name = body.name
    profile.rating = body.rating
    profile.max_rating = body.max_rating
    return travelers.save(profile).to_dict()


# --- Match Endpoints ---


@app.post("/api/matches/preview")
def preview_matches(body: PreviewRequest):
    """Score trips for a bundle without creating anything."""
    criteria = MatchCriteria(
        from_country=body.from_country,
        to_country=body.to_country,
        delivery_start=_aware(body.delivery_start),
        delivery_end=_aware(body.delivery_end),
        max_arrival_window_hours=body.max_arrival_window_hours,
        min_score=body.min_score,
    )
    results = get_services().publisher.preview_matches(
        [_bag_item(i) for i in body.items], criteria, body.limit
    )
    return {"results": [r.to_dict() for r in results], "count": len(results)}


@app.get("/api/matches/{match_id}", response_model=MatchSchema)
def get_match(match_id: str):
    return match_to_schema(get_services().lifecycle.get_match(match_id))


@app.post("/api/matches/{match_id}/claim", response_model=MatchSchema)
def claim_match(match_id: str, body: ClaimRequest, x_user_id: str = Header()):
    lifecycle = get_services().lifecycle
    return match_to_schema(lifecycle.claim_match(x_user_id, match_id, body.assigned_item_ids))


@app.post("/api/matches/{match_id}/approve", response_model=MatchSchema)
def approve_match(match_id: str, x_user_id: str = Header()):
    return match_to_schema(get_services().lifecycle.approve_match(x_user_id, match_id))


@app.post("/api/matches/{match_id}/cancel", response_model=MatchSchema)
def cancel_match(match_id: str, x_user_id: str = Header(), body: Optional[CancelRequest] = None):
    body = body or CancelRequest()
    lifecycle = get_services().lifecycle
    return match_to_schema(lifecycle.cancel_during_cooldown(x_user_id, match_id, body.reason))


@app.post("/api/matches/{match_id}/complete", response_model=MatchSchema)
def complete_match(match_id: str, x_user_id: str = Header()):
    return match_to_schema(get_services().lifecycle.complete_match(x_user_id, match_id))


@app.post("/api/matches/{match_id}/reject", response_model=MatchSchema)
def reject_match(match_id: str, x_user_id: str = Header()):
    return match_to_schema(get_services().lifecycle.reject_match(x_user_id, match_id))


# --- Sweep Endpoints ---


@app.post("/api/sweeps/run")
def run_sweeps(body: Optional[SweepRequest] = None):
    """Run the cooldown and purchase-deadline sweeps now (or at the given time)."""
    body = body or SweepRequest()
    services = get_services()
    cooldowns, deadlines = services.scheduler().run_once(_aware(body.now))
    return {"cooldowns": cooldowns.to_dict(), "deadlines": deadlines.to_dict()}
