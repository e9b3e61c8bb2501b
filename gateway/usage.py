"""Daily token budget tracking.

``UsageGovernor`` owns the usage counters and the midnight reset task. A
reservation is only a guard: it never debits. Reservation and commit are two
separate critical sections, so concurrent requests that all pass ``reserve``
before any commits can overshoot the cap by at most one request's cost.
"""

import asyncio
import logging
import math
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

# System prompt plus request framing
FIXED_OVERHEAD_TOKENS = 150
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Character-count heuristic: ``ceil(len/4) + 1 + overhead``."""
    return math.ceil(len(text) / CHARS_PER_TOKEN) + 1 + FIXED_OVERHEAD_TOKENS


def seconds_until_next_midnight(now: datetime) -> float:
    """Seconds from ``now`` to the next local midnight."""
    midnight = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)
    return max((midnight - now).total_seconds(), 0.0)


@dataclass
class UsageState:
    """Token usage for the current calendar day."""

    tokens_used_today: int
    daily_limit: int
    last_reset_date: date
    total_requests: int = 0
    failed_requests: int = 0

    @property
    def percent_used(self) -> float:
        if self.daily_limit <= 0:
            return 0.0
        return self.tokens_used_today / self.daily_limit * 100.0


class UsageGovernor:
    """Tracks token usage against a daily cap with automatic midnight reset.

    ``reserve`` and ``commit`` are safe to call from concurrent requests; the
    counters are guarded by a single lock.
    """

    def __init__(
        self,
        daily_limit: int,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the governor.

        Args:
            daily_limit: Positive token cap per calendar day.
            today: Returns the current local date.
            now: Returns the current local time, used to schedule the reset.
        """
        if daily_limit <= 0:
            raise ValueError(f"daily_limit must be positive, got {daily_limit}")

        self._today = today
        self._now = now
        self._lock = threading.Lock()
        self._state = UsageState(
            tokens_used_today=0,
            daily_limit=daily_limit,
            last_reset_date=today(),
        )
        self._reset_task: Optional[asyncio.Task] = None

    @staticmethod
    def estimate(text: str) -> int:
        return estimate_tokens(text)

    def reserve(self, estimate: int) -> bool:
        """Check whether ``estimate`` more tokens fit in today's budget.

        Does not change the counters.
        """
        if estimate < 0:
            raise ValueError(f"estimate must be non-negative, got {estimate}")

        with self._lock:
            self._rollover_locked()
            state = self._state
            allowed = state.tokens_used_today + estimate <= state.daily_limit
            if not allowed:
                logger.warning(
                    f"Token limit would be exceeded: "
                    f"{state.tokens_used_today} + {estimate} > {state.daily_limit}"
                )
            return allowed

    def commit(self, actual_tokens: int) -> bool:
        """Record tokens spent by a completed request.

        The tokens are always recorded, since the backend already charged for
        them. Returns False when the total now exceeds the daily limit, in
        which case every later ``reserve`` fails until the next reset.
        """
        if actual_tokens < 0:
            raise ValueError(f"actual_tokens must be non-negative, got {actual_tokens}")

        with self._lock:
            self._rollover_locked()
            state = self._state
            state.tokens_used_today += actual_tokens
            state.total_requests += 1

            if state.tokens_used_today > state.daily_limit:
                state.failed_requests += 1
                logger.warning(
                    f"Token limit exceeded! {state.tokens_used_today - actual_tokens} + "
                    f"{actual_tokens} > {state.daily_limit}"
                )
                return False

            logger.debug(f"Recorded {actual_tokens} tokens, total usage: {state.tokens_used_today}")
            return True

    def record_failure(self) -> None:
        """Count a request that failed before any tokens were spent."""
        with self._lock:
            self._state.total_requests += 1
            self._state.failed_requests += 1

    def rollover_if_new_day(self) -> bool:
        """Reset the counter when the local date changed. Idempotent.

        Returns:
            True if a reset happened.
        """
        with self._lock:
            return self._rollover_locked()

    def _rollover_locked(self) -> bool:
        today = self._today()
        if today == self._state.last_reset_date:
            return False
        logger.info(
            f"Resetting token usage counters "
            f"({self._state.last_reset_date.isoformat()} -> {today.isoformat()})"
        )
        self._state.tokens_used_today = 0
        self._state.last_reset_date = today
        return True

    def reset_usage(self) -> None:
        """Reset today's token counter unconditionally."""
        with self._lock:
            logger.info("Resetting token usage counters")
            self._state.tokens_used_today = 0
            self._state.last_reset_date = self._today()

    def is_approaching_limit(self) -> bool:
        """True when more than 80% of the daily limit is used."""
        with self._lock:
            # Integer form of used > 0.8 * limit
            return self._state.tokens_used_today * 5 > self._state.daily_limit * 4

    def set_daily_limit(self, daily_limit: int) -> None:
        if daily_limit <= 0:
            raise ValueError(f"daily_limit must be positive, got {daily_limit}")
        with self._lock:
            self._state.daily_limit = daily_limit
        logger.info(f"Daily token limit set to {daily_limit}")

    def snapshot(self) -> UsageState:
        """Return a copy of the current state."""
        with self._lock:
            return replace(self._state)

    def restore(self, state: UsageState) -> None:
        """Load previously persisted counters, then apply any pending rollover.

        The configured daily limit is kept; persisted limits are informational.
        """
        with self._lock:
            self._state = replace(state, daily_limit=self._state.daily_limit)
            self._rollover_locked()
        logger.info(
            f"Restored usage state: {state.tokens_used_today} tokens "
            f"on {state.last_reset_date.isoformat()}"
        )

    def get_usage_statistics(self) -> Dict[str, Any]:
        """Current usage statistics for display."""
        with self._lock:
            state = self._state
            return {
                "tokens_used_today": state.tokens_used_today,
                "daily_limit": state.daily_limit,
                "percent_used": state.percent_used,
                "total_requests": state.total_requests,
                "failed_requests": state.failed_requests,
                "last_reset_date": state.last_reset_date.isoformat(),
            }

    @property
    def is_scheduled(self) -> bool:
        return self._reset_task is not None and not self._reset_task.done()

    def start(self) -> None:
        """Schedule the recurring midnight reset on the running event loop."""
        if self.is_scheduled:
            logger.warning("Usage reset task is already running")
            return
        self._reset_task = asyncio.get_running_loop().create_task(self._run_reset_loop())
        logger.info("Scheduled daily token usage reset")

    async def shutdown(self) -> None:
        """Cancel the reset task. Safe to call more than once."""
        task, self._reset_task = self._reset_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Usage reset task stopped")

    async def _run_reset_loop(self) -> None:
        while True:
            # Recomputed every time so an early wake still lands past midnight
            await asyncio.sleep(seconds_until_next_midnight(self._now()))
            try:
                self.rollover_if_new_day()
            except Exception as e:
                logger.error(f"Error in usage reset task: {e}", exc_info=True)
