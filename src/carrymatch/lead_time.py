"""Minimum advance notice a trip needs, scaled by order complexity."""

from dataclasses import dataclass
from datetime import datetime

from .rules import LeadTimeRules
from .utils import days_until, utc_now


@dataclass(frozen=True)
class OrderComplexity:
    item_count: int = 1
    total_value: float = 0.0
    has_special_delivery: bool = False


@dataclass(frozen=True)
class LeadTimeCheck:
    valid: bool
    required_days: int
    actual_days: int
    message: str | None = None


def required_lead_days(
    item_count: int,
    total_value: float,
    has_special_delivery: bool,
    rules: LeadTimeRules | None = None,
) -> int:
    """Base minimum plus one extra day per complexity modifier that applies."""
    rules = rules or LeadTimeRules()
    extra = 0
    if total_value > rules.high_value_threshold:
        extra += rules.high_value_extra_days
    if item_count > rules.multi_item_threshold:
        extra += rules.multi_item_extra_days
    if has_special_delivery:
        extra += rules.special_delivery_extra_days
    return rules.minimum_days_before_departure + extra


def trip_meets_lead_time(
    departure_at: datetime,
    complexity: OrderComplexity | None = None,
    now: datetime | None = None,
    rules: LeadTimeRules | None = None,
) -> LeadTimeCheck:
    """
    Check whether a trip departs far enough ahead for an order.

    Without a complexity the base minimum applies.
    """
    rules = rules or LeadTimeRules()
    now = now or utc_now()
    actual = days_until(departure_at, now)

    if complexity is None:
        required = rules.minimum_days_before_departure
    else:
        required = required_lead_days(
            complexity.item_count,
            complexity.total_value,
            complexity.has_special_delivery,
            rules,
        )

    if actual >= required:
        return LeadTimeCheck(True, required, actual)
    return LeadTimeCheck(
        False,
        required,
        actual,
        f"Trip must depart at least {required} days from now. Current: {actual} days.",
    )
