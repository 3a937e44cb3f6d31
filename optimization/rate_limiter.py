"""
Admission Controller: Per-User Fixed-Window Quotas
===================================================

Bounds how many analysis requests and how many characters each user may
submit per window. Real-time requests get a larger request allowance and
a smaller character allowance than full analyses.

The read-modify-write on a user's window runs inside one store
transaction, so concurrent requests can never both pass a limit that only
one of them fits under. When the store is unreachable the controller
admits the request: availability of analysis outranks quota precision.

Architecture: Strategy Pattern (injected store) + Pure Decision Core
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from loguru import logger

from config.settings import RateLimitSettings
from core.enums import ErrorCode
from core.exceptions import InfrastructureError
from core.models import AnalysisError, RateLimitStatus, RateWindow
from infrastructure.monitoring import MetricsCollector
from infrastructure.stores import AdmissionStore


def epoch_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# DECISIONS
# =============================================================================


@dataclass(frozen=True)
class Limits:
    max_requests: int
    max_characters: int


@dataclass(frozen=True)
class Admit:
    """Request admitted; ``window`` is None when admitted without a store."""

    window: Optional[RateWindow] = None
    fail_open: bool = False

    @property
    def admitted(self) -> bool:
        return True


@dataclass(frozen=True)
class Reject:
    """Request over quota."""

    retry_after: int
    reason: str
    limit: int
    window: Optional[RateWindow] = None

    @property
    def admitted(self) -> bool:
        return False

    @property
    def message(self) -> str:
        minutes = math.ceil(self.retry_after / 60)
        if self.reason == "requests":
            return f"Too many analysis requests. Please try again in {minutes} minutes."
        return f"Too much content analyzed. Please try again in {minutes} minutes."

    @property
    def details(self) -> str:
        if self.reason == "requests":
            return f"Request limit: {self.limit} per hour"
        return f"Character limit: {self.limit:,} per hour"

    def to_error(self) -> AnalysisError:
        return AnalysisError(
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            message=self.message,
            details=self.details,
            retry_after=self.retry_after,
        )


Decision = Union[Admit, Reject]


# =============================================================================
# CONTROLLER
# =============================================================================


class AdmissionController:
    """
    Per-user quota enforcement.

    Usage:
        controller = AdmissionController(store, settings.rate_limit)
        decision = await controller.check(user_id, len(text))
        if not decision.admitted:
            return decision.to_error()
    """

    def __init__(
        self,
        store: AdmissionStore,
        config: RateLimitSettings,
        clock: Optional[Callable[[], int]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.config = config
        self.clock = clock or epoch_ms
        self.metrics = metrics

    def limits_for(self, realtime: bool) -> Limits:
        if not realtime:
            return Limits(self.config.max_requests, self.config.max_characters)
        return Limits(
            max_requests=math.floor(self.config.max_requests * self.config.realtime_request_multiplier),
            max_characters=math.floor(
                self.config.max_characters * self.config.realtime_character_multiplier
            ),
        )

    def evaluate(
        self,
        user_id: str,
        current: Optional[RateWindow],
        char_count: int,
        now: int,
        limits: Limits,
    ) -> tuple[Optional[RateWindow], Decision]:
        """
        Decide admission against the current window.

        Pure: returns the window to persist (None on rejection) and the
        decision. May be invoked several times per check when the store
        transaction is retried.
        """
        window_ms = self.config.window_ms
        if current is None or now - current.window_start >= window_ms:
            window = RateWindow(user_id=user_id, window_start=now, last_request=now)
        else:
            window = current

        retry_after = math.ceil((window.window_start + window_ms - now) / 1000)

        if window.request_count + 1 > limits.max_requests:
            return None, Reject(retry_after, "requests", limits.max_requests, window)

        if window.character_count + char_count > limits.max_characters:
            return None, Reject(retry_after, "characters", limits.max_characters, window)

        updated = window.model_copy(
            update={
                "request_count": window.request_count + 1,
                "character_count": window.character_count + char_count,
                "last_request": now,
            }
        )
        return updated, Admit(updated)

    async def check(self, user_id: str, char_count: int, *, realtime: bool = False) -> Decision:
        """
        Admit or reject one request and record its usage when admitted.

        Args:
            user_id: Authenticated caller
            char_count: Length of the submitted text
            realtime: Apply the real-time allowances

        Returns:
            ``Admit`` or ``Reject`` with a retry hint in seconds
        """
        limits = self.limits_for(realtime)
        now = self.clock()

        def mutate(current: Optional[RateWindow]):
            return self.evaluate(user_id, current, char_count, now, limits)

        try:
            decision = await self.store.update_window(user_id, mutate)
        except InfrastructureError as e:
            logger.warning(f"Rate limit store unavailable for {user_id}, admitting: {e}")
            if self.metrics:
                self.metrics.record_fail_open()
            return Admit(fail_open=True)

        if isinstance(decision, Reject):
            logger.info(
                f"Rate limit exceeded | user={user_id} | reason={decision.reason} "
                f"| retry_after={decision.retry_after}s"
            )
            if self.metrics:
                self.metrics.record_admission_rejection(decision.reason)

        return decision

    async def status(self, user_id: str, *, realtime: bool = False) -> RateLimitStatus:
        """Current usage and remaining allowance for a user."""
        limits = self.limits_for(realtime)
        now = self.clock()
        empty = RateLimitStatus(
            requests_used=0,
            requests_remaining=limits.max_requests,
            characters_used=0,
            characters_remaining=limits.max_characters,
            window_reset_time=now + self.config.window_ms,
        )

        try:
            window = await self.store.get_window(user_id)
        except InfrastructureError as e:
            logger.error(f"Failed to read rate limit status for {user_id}: {e}")
            return empty

        if window is None or now - window.window_start >= self.config.window_ms:
            return empty

        return RateLimitStatus(
            requests_used=window.request_count,
            requests_remaining=max(0, limits.max_requests - window.request_count),
            characters_used=window.character_count,
            characters_remaining=max(0, limits.max_characters - window.character_count),
            window_reset_time=window.window_start + self.config.window_ms,
        )

    async def cleanup_expired(self, older_than_hours: int = 24) -> int:
        """
        Delete windows idle for longer than ``older_than_hours``.

        Processes at most one batch per call.

        Returns:
            Number of windows deleted (0 on store failure)
        """
        cutoff = self.clock() - older_than_hours * 3600 * 1000
        try:
            deleted = await self.store.delete_inactive(cutoff, self.config.cleanup_batch_size)
        except InfrastructureError as e:
            logger.error(f"Rate limit cleanup failed: {e}")
            return 0

        if deleted:
            logger.info(f"Cleaned up {deleted} expired rate limit windows")
        return deleted


__all__ = ["AdmissionController", "Admit", "Reject", "Decision", "Limits", "epoch_ms"]
