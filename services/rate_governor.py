from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import date
from typing import Callable, Deque

from utils.errors import QuotaExhaustedError

LOGGER = logging.getLogger(__name__)

SAFETY_BUFFER_SECONDS = 0.1
NON_ESSENTIAL_THRESHOLD = 0.8


@dataclass(frozen=True, slots=True)
class RateUsage:
    current_requests: int
    max_requests: int
    daily_usage: int
    daily_limit: int
    seconds_until_slot: float


class RateGovernor:
    """Per-minute sliding window plus a calendar-day budget for remote model calls.

    One instance is built per process and shared by every component that talks
    to the model. ``clock`` returns seconds, ``today`` the current date and
    ``sleep`` suspends the caller; all three can be replaced in tests.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        daily_limit: int,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.daily_limit = daily_limit
        self._clock = clock
        self._today = today
        self._sleep = sleep
        self._requests: Deque[float] = deque()
        self._daily_usage = 0
        self._last_reset = self._today().isoformat()

    @property
    def daily_usage(self) -> int:
        self._reset_daily_counter_if_needed()
        return self._daily_usage

    def can_proceed(self) -> bool:
        self._reset_daily_counter_if_needed()
        self._prune()
        if self._daily_usage >= self.daily_limit:
            LOGGER.warning("Daily API limit reached (%s). Skipping request.", self.daily_limit)
            return False
        return len(self._requests) < self.max_requests

    def daily_exhausted(self) -> bool:
        return self.daily_usage >= self.daily_limit

    def record(self, success: bool) -> None:
        """Count a call against both budgets; failed calls consume quota too."""

        self._reset_daily_counter_if_needed()
        self._requests.append(self._clock())
        self._daily_usage += 1
        if success:
            LOGGER.debug("API call succeeded. Daily usage: %s/%s", self._daily_usage, self.daily_limit)
        else:
            LOGGER.info("API call failed. Daily usage: %s/%s", self._daily_usage, self.daily_limit)

    def seconds_until_slot(self) -> float:
        self._prune()
        if len(self._requests) < self.max_requests:
            return 0.0
        oldest = self._requests[0]
        return max(0.0, self.window_seconds - (self._clock() - oldest))

    def wait_if_needed(self) -> None:
        if self.can_proceed():
            return
        if self.daily_exhausted():
            raise QuotaExhaustedError(f"Daily quota of {self.daily_limit} model calls exhausted")
        wait = self.seconds_until_slot()
        if wait > 0:
            LOGGER.info("Rate limit hit. Waiting %.1fs...", wait)
            self._sleep(wait + SAFETY_BUFFER_SECONDS)

    def should_skip_non_essential(self) -> bool:
        usage = self.daily_usage / self.daily_limit if self.daily_limit else 1.0
        if usage > NON_ESSENTIAL_THRESHOLD:
            LOGGER.warning("Daily quota at %.1f%% - skipping non-essential analysis", usage * 100)
            return True
        return False

    def usage(self) -> RateUsage:
        self._reset_daily_counter_if_needed()
        return RateUsage(
            current_requests=len(self._prune()),
            max_requests=self.max_requests,
            daily_usage=self._daily_usage,
            daily_limit=self.daily_limit,
            seconds_until_slot=self.seconds_until_slot(),
        )

    def _prune(self) -> Deque[float]:
        now = self._clock()
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()
        return self._requests

    def _reset_daily_counter_if_needed(self) -> None:
        today = self._today().isoformat()
        if today != self._last_reset:
            self._daily_usage = 0
            self._last_reset = today
            LOGGER.info("Daily API usage counter reset for %s", today)
