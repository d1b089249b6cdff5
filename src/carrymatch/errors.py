"""Custom exceptions for carrymatch."""

from typing import Any


class CarrymatchError(Exception):
    """Base exception for all carrymatch errors."""

    pass


class NotFoundError(CarrymatchError):
    """Raised when a referenced entity doesn't exist."""

    entity = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found: {entity_id}")


class MatchNotFoundError(NotFoundError):
    entity = "Match"


class RequestNotFoundError(NotFoundError):
    entity = "Shopper request"


class TripNotFoundError(NotFoundError):
    entity = "Trip"


class UnauthorizedError(CarrymatchError):
    """Raised when the caller is not a party to the entity."""

    def __init__(self, user_id: str, action: str, entity_id: str):
        self.user_id = user_id
        self.action = action
        self.entity_id = entity_id
        super().__init__(f"User {user_id} is not allowed to {action} {entity_id}")


class InvalidStateError(CarrymatchError):
    """Raised when an operation is attempted from a state that does not permit it."""

    def __init__(
        self,
        entity_id: str,
        current: str,
        expected: tuple[str, ...] = (),
        reason: str | None = None,
    ):
        self.entity_id = entity_id
        self.current = current
        self.expected = expected
        if reason is None:
            reason = f"expected {' or '.join(expected)}" if expected else "transition not allowed"
        super().__init__(f"{entity_id} is '{current}': {reason}")


class CapacityExceededError(CarrymatchError):
    """Raised when assigned item weight exceeds the trip's remaining capacity."""

    def __init__(self, total_weight: float, carry_on_kg: float, checked_kg: float):
        self.total_weight = total_weight
        self.carry_on_kg = carry_on_kg
        self.checked_kg = checked_kg
        self.shortfall = round(total_weight - max(carry_on_kg, checked_kg), 3)
        super().__init__(
            f"Total weight {total_weight:g}kg exceeds available capacity "
            f"({carry_on_kg:g}kg carry-on, {checked_kg:g}kg checked); "
            f"short by {self.shortfall:g}kg"
        )


class CapabilityMismatchError(CarrymatchError):
    """Raised when a trip cannot handle fragile or special-delivery items."""

    def __init__(self, trip_id: str, issues: list[str]):
        self.trip_id = trip_id
        self.issues = issues
        super().__init__(f"Trip {trip_id} cannot carry this bundle: {'; '.join(issues)}")


class WindowExpiredError(CarrymatchError):
    """Raised when cancellation is attempted after the cooldown window closed."""

    def __init__(self, match_id: str, cooldown_ends_at: str | None):
        self.match_id = match_id
        self.cooldown_ends_at = cooldown_ends_at
        if cooldown_ends_at:
            msg = f"Cooldown period for match {match_id} expired at {cooldown_ends_at}"
        else:
            msg = f"Match {match_id} has no open cooldown period"
        super().__init__(msg)


class ValidationError(CarrymatchError):
    """Raised for malformed item, assignment or criteria input."""

    def __init__(self, message: str, field: str | None = None, details: list[Any] | None = None):
        self.field = field
        self.details = details or []
        super().__init__(message)


class ConcurrentUpdateError(CarrymatchError):
    """Raised when a document changed between read and write."""

    def __init__(self, entity: str, entity_id: str, expected: int, found: int):
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        self.found = found
        super().__init__(
            f"{entity} {entity_id} was modified concurrently "
            f"(expected version {expected}, found {found})"
        )


class RulesFileError(CarrymatchError):
    """Raised when a business rules file can't be read."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid rules file {path}: {reason}")
