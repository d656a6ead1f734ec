"""Client-side rate limiting from server-reported quota."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from stargazer_sync.config.api import APIConfig
from stargazer_sync.data.models import RateLimitInfo


class RateLimiter:
    """Tracks remaining request quota and decides when to throttle.

    Purely in-memory and single-writer. One instance per run and per quota
    (the GraphQL page quota and the REST content quota are separate on GitHub).
    Until the first response is tracked the limiter never throttles, so a
    cold start cannot deadlock waiting for a reset that was never reported.
    """

    def __init__(
        self,
        threshold: float = APIConfig.RATE_LIMIT_THRESHOLD,
        default_limit: int = APIConfig.DEFAULT_RATE_LIMIT,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.threshold = threshold
        self.logger = logger_obj or logging.getLogger(__name__)
        self._limit = default_limit
        self._remaining: Optional[int] = None
        self._used = 0
        self._reset_at: Optional[datetime] = None

    def track_query(
        self,
        cost: int,
        remaining: int,
        reset_at: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> None:
        """Update quota state after a remote call."""
        try:
            if limit is not None and int(limit) > 0:
                self._limit = int(limit)
            remaining = max(0, int(remaining))
        except (TypeError, ValueError):
            self.logger.warning(f"Ignoring unparseable rate limit values: remaining={remaining!r}, limit={limit!r}")
            return

        self._remaining = min(remaining, self._limit)
        self._used = self._limit - self._remaining
        if reset_at is not None:
            self._reset_at = reset_at if reset_at.tzinfo else reset_at.replace(tzinfo=timezone.utc)

        self.logger.debug(
            f"Rate limit tracked: cost={cost} remaining={self._remaining}/{self._limit} reset_at={self._reset_at}"
        )

    def update(self, info: Optional[RateLimitInfo]) -> None:
        """Track a RateLimitInfo snapshot, if the response carried one."""
        if info is None:
            return
        self.track_query(info.cost, info.remaining, info.reset_at, info.limit)

    def should_throttle(self) -> bool:
        """True when remaining/limit drops below the threshold (exactly at it does not throttle)."""
        if self._remaining is None or self._limit <= 0:
            return False
        return self._remaining / self._limit < self.threshold

    def get_time_until_reset(self, now: Optional[datetime] = None) -> timedelta:
        """Time left until the quota resets, never negative."""
        if self._reset_at is None:
            return timedelta(0)
        now = now or datetime.now(timezone.utc)
        return max(timedelta(0), self._reset_at - now)

    @property
    def info(self) -> Optional[RateLimitInfo]:
        """Current quota snapshot, or None before anything was tracked."""
        if self._remaining is None:
            return None
        return RateLimitInfo(
            limit=self._limit,
            remaining=self._remaining,
            used=self._used,
            reset_at=self._reset_at,
            cost=0,
        )
