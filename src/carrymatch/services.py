"""Wiring of store, rules and services shared by the API and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from .lifecycle import MatchLifecycle
from .notifications import LoggingNotifier, Notifier
from .publisher import RequestPublisher
from .rules import BusinessRules, default_rules
from .scheduler import Sweeper, SweepScheduler
from .scorer import CompatibilityScorer
from .store import JsonStore
from .trips import TripManager
from .utils import utc_now


@dataclass
class Services:
    store: JsonStore
    rules: BusinessRules
    notifier: Notifier
    scorer: CompatibilityScorer
    lifecycle: MatchLifecycle
    publisher: RequestPublisher
    trips: TripManager
    sweeper: Sweeper

    def scheduler(self, clock: Callable[[], datetime] = utc_now) -> SweepScheduler:
        return SweepScheduler(self.sweeper, self.rules.schedule, clock)


def build_services(
    data_dir: Path | None = None,
    rules: BusinessRules | None = None,
    notifier: Notifier | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> Services:
    store = JsonStore(data_dir)
    rules = rules or default_rules()
    notifier = notifier or LoggingNotifier()

    scorer = CompatibilityScorer(store.trips, store.travelers, rules, clock)
    lifecycle = MatchLifecycle(store.matches, store.requests, store.trips, notifier, rules, clock)
    publisher = RequestPublisher(store.requests, store.matches, scorer, lifecycle, rules)
    sweeper = Sweeper(store.requests, store.matches, notifier)
    trips = TripManager(store.trips, store.matches)
    return Services(
        store=store,
        rules=rules,
        notifier=notifier,
        scorer=scorer,
        lifecycle=lifecycle,
        publisher=publisher,
        trips=trips,
        sweeper=sweeper,
    )
