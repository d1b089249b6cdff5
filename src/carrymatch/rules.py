"""Business rules: thresholds, scoring weights, time windows and sweep cadence."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import RulesFileError

# Can be overridden via CARRYMATCH_RULES environment variable
RULES_ENV_VAR = "CARRYMATCH_RULES"


@dataclass
class LeadTimeRules:
    minimum_days_before_departure: int = 5
    high_value_threshold: float = 500.0     # bundle value, in item currency
    high_value_extra_days: int = 1
    multi_item_threshold: int = 3           # more than this many item lines
    multi_item_extra_days: int = 1
    special_delivery_extra_days: int = 1


@dataclass
class MatchingRules:
    route_weight: float = 30.0
    arrival_window_weight: float = 20.0
    carry_on_fit_weight: float = 25.0
    checked_fit_weight: float = 15.0
    reputation_weight: float = 10.0
    fragile_bonus: float = 10.0
    special_delivery_bonus: float = 5.0
    default_max_rating: float = 5.0
    max_score: float = 100.0
    max_results_per_search: int = 50


@dataclass
class CooldownRules:
    shopper_cooldown_hours: float = 24.0
    traveler_purchase_window_hours: float = 24.0


@dataclass
class PricingRules:
    delivery_fee: float = 25.0
    service_fee: float = 15.0
    tax_rate: float = 0.08


@dataclass
class ScheduleRules:
    cooldown_interval_minutes: float = 5.0
    purchase_deadline_interval_minutes: float = 10.0


@dataclass
class BusinessRules:
    lead_time: LeadTimeRules = field(default_factory=LeadTimeRules)
    matching: MatchingRules = field(default_factory=MatchingRules)
    cooldowns: CooldownRules = field(default_factory=CooldownRules)
    pricing: PricingRules = field(default_factory=PricingRules)
    schedule: ScheduleRules = field(default_factory=ScheduleRules)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_SECTIONS = {
    "lead_time": LeadTimeRules,
    "matching": MatchingRules,
    "cooldowns": CooldownRules,
    "pricing": PricingRules,
    "schedule": ScheduleRules,
}


def load_rules(path: str | Path) -> BusinessRules:
    """
    Load business rules from a YAML file.

    Sections and keys that are not recognised are ignored; missing ones
    keep their defaults.

    Raises:
        RulesFileError: If the file can't be read or isn't a mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise RulesFileError(str(path), e.strerror or str(e))
    except yaml.YAMLError as e:
        raise RulesFileError(str(path), f"not valid YAML ({e})")

    if not isinstance(data, dict):
        raise RulesFileError(str(path), "top level must be a mapping")
    return rules_from_dict(data)


def rules_from_dict(data: dict[str, Any]) -> BusinessRules:
    rules = BusinessRules()
    for section in _SECTIONS:
        values = data.get(section)
        if not isinstance(values, dict):
            continue
        obj = getattr(rules, section)
        for key, value in values.items():
            if hasattr(obj, key):
                setattr(obj, key, value)
    return rules


def default_rules() -> BusinessRules:
    """Rules from $CARRYMATCH_RULES if set, else built-in defaults."""
    path = os.environ.get(RULES_ENV_VAR)
    if path:
        return load_rules(path)
    return BusinessRules()
