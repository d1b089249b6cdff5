"""Periodic sweeps that advance requests past their cooldown and purchase deadlines."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .models import MatchStatus, RequestStatus
from .notifications import LoggingNotifier, NotificationDispatcher, Notifier
from .repositories import MatchRepository, ShopperRequestRepository
from .rules import ScheduleRules
from .utils import to_iso, utc_now

logger = logging.getLogger(__name__)

DEADLINE_MISSED_REASON = "purchase deadline missed by traveler"


@dataclass
class SweepResult:
    processed: int = 0
    failed_ids: list[str] = field(default_factory=list)
    matches_rejected: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "failed_ids": list(self.failed_ids),
            "matches_rejected": self.matches_rejected,
        }


class Sweeper:
    """Time-driven request transitions.

    A record that fails is logged and left for the next run; the rest of the
    batch still goes through.
    """

    def __init__(
        self,
        requests: ShopperRequestRepository,
        matches: MatchRepository,
        notifier: Notifier | None = None,
    ):
        self.requests = requests
        self.matches = matches
        self.notices = NotificationDispatcher(notifier or LoggingNotifier())

    def process_expired_cooldowns(self, now: datetime) -> SweepResult:
        """Move on-hold requests whose cooldown has ended into purchase_pending."""
        result = SweepResult()
        for request in self.requests.find_expired_cooldowns(now):
            try:
                request.status = RequestStatus.PURCHASE_PENDING
                request.cooldown_processed = True
                self.requests.update(request)
                result.processed += 1
                logger.info(
                    "Request %s cooldown ended at %s; now purchase_pending",
                    request.id,
                    to_iso(request.cooldown_ends_at),
                )
            except Exception:
                logger.exception("Failed to process cooldown for request %s", request.id)
                result.failed_ids.append(request.id)

        if result.processed or result.failed_ids:
            logger.info(
                "Cooldown sweep at %s: %d processed, %d failed",
                to_iso(now),
                result.processed,
                len(result.failed_ids),
            )
        return result

    def process_missed_purchase_deadlines(self, now: datetime) -> SweepResult:
        """Cancel requests whose traveler didn't purchase in time and reject their booked matches.

        Matches are rejected before the request is cancelled. If any match
        write fails the request stays purchase_pending and the next run
        picks it up again; matches already rejected are skipped then.
        """
        result = SweepResult()
        for request in self.requests.find_missed_deadlines(now):
            try:
                for match in self.matches.find_by_request(request.id):
                    if match.status != MatchStatus.APPROVED:
                        continue
                    match.status = MatchStatus.REJECTED
                    self.matches.update(match)
                    result.matches_rejected += 1
                    self.notices.purchase_deadline_missed(
                        match.traveler_id, request.shopper_id, match.id
                    )

                request.status = RequestStatus.CANCELLED
                request.cancellation_reason = DEADLINE_MISSED_REASON
                self.requests.update(request)
                result.processed += 1
                logger.warning(
                    "Request %s cancelled: purchase deadline %s missed",
                    request.id,
                    to_iso(request.purchase_deadline),
                )
            except Exception:
                logger.exception("Failed to process purchase deadline for request %s", request.id)
                result.failed_ids.append(request.id)

        if result.processed or result.failed_ids:
            logger.info(
                "Deadline sweep at %s: %d cancelled, %d matches rejected, %d failed",
                to_iso(now),
                result.processed,
                result.matches_rejected,
                len(result.failed_ids),
            )
        return result


class SweepScheduler:
    """Runs both sweeps on their own intervals in background threads."""

    def __init__(
        self,
        sweeper: Sweeper,
        schedule: ScheduleRules | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.sweeper = sweeper
        self.schedule = schedule or ScheduleRules()
        self.clock = clock
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def run_once(self, now: datetime | None = None) -> tuple[SweepResult, SweepResult]:
        """Run both sweeps immediately and return (cooldowns, deadlines)."""
        now = now or self.clock()
        return (
            self.sweeper.process_expired_cooldowns(now),
            self.sweeper.process_missed_purchase_deadlines(now),
        )

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(
                target=self._loop,
                args=(self.schedule.cooldown_interval_minutes, self.sweeper.process_expired_cooldowns),
                name="carrymatch-cooldown-sweep",
                daemon=True,
            ),
            threading.Thread(
                target=self._loop,
                args=(
                    self.schedule.purchase_deadline_interval_minutes,
                    self.sweeper.process_missed_purchase_deadlines,
                ),
                name="carrymatch-deadline-sweep",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        logger.info(
            "Sweeps started (cooldowns every %s min, deadlines every %s min)",
            self.schedule.cooldown_interval_minutes,
            self.schedule.purchase_deadline_interval_minutes,
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Sweeps stopped")

    def _loop(self, interval_minutes: float, sweep: Callable[[datetime], SweepResult]) -> None:
        # First sweep runs as soon as the thread starts
        while True:
            try:
                sweep(self.clock())
            except Exception:
                logger.exception("Sweep %s failed", sweep.__name__)
            if self._stop.wait(interval_minutes * 60):
                break
