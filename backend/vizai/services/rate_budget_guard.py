"""
Per-user request-rate and daily-spend guard.

Every generation call is preceded by ``admit`` and followed by ``record``.
Counters live in the rate_limits table, not in process memory: workers are
short-lived and may run concurrently, so each call re-reads the record,
rolls expired windows forward with the pure ``roll_windows`` and writes the
result back through a version compare-and-set, retrying on conflict.

Budget denial is a hard stop: it sets ``budget_blocked`` and every later
admission that day is denied, however small.

An admitted call reserves its estimated cost until ``record`` books the
actual cost (or ``release`` returns it), so calls admitted concurrently for
the same user cannot jointly overrun the budget.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import Settings
from ..database import utcnow
from ..exceptions import StorageTimeoutError
from ..generation.pricing import ModelPricing, resolve_pricing
from ..repositories import RateLimitRepository
from .failure_classifier import FailureKind
from .recovery_policy import next_daily_reset

logger = logging.getLogger(__name__)

MINUTE = timedelta(minutes=1)

# Compare-and-set attempts before contention is reported as a storage timeout.
MAX_CAS_RETRIES = 5


@dataclass(frozen=True)
class WindowState:
    requests_this_minute: int
    minute_window_start: datetime
    daily_cost_usd: float
    daily_reset_at: datetime
    budget_blocked: bool
    reserved_cost_usd: float = 0.0

    @property
    def committed_usd(self) -> float:
        """Spend already booked plus spend admitted but not yet booked."""
        return self.daily_cost_usd + self.reserved_cost_usd


def roll_windows(state: WindowState, now: datetime) -> WindowState:
    """Reset counters whose window *now* has left.

    Pure and idempotent: after a roll the stored boundaries lie in the
    future, so calling it again within the same window changes nothing.
    """
    if now >= state.minute_window_start + MINUTE:
        state = replace(
            state,
            requests_this_minute=0,
            minute_window_start=now.replace(second=0, microsecond=0),
        )
    if now >= state.daily_reset_at:
        state = replace(
            state,
            daily_cost_usd=0.0,
            reserved_cost_usd=0.0,
            daily_reset_at=next_daily_reset(now),
            budget_blocked=False,
        )
    return state


@dataclass(frozen=True)
class Admission:
    allowed: bool
    kind: Optional[FailureKind] = None
    retry_at: Optional[datetime] = None
    estimated_cost: float = 0.0

    @classmethod
    def allow(cls, estimated_cost: float) -> "Admission":
        return cls(allowed=True, estimated_cost=estimated_cost)

    @classmethod
    def deny(cls, kind: FailureKind, retry_at: datetime, estimated_cost: float) -> "Admission":
        return cls(allowed=False, kind=kind, retry_at=retry_at, estimated_cost=estimated_cost)


class RateBudgetGuard:
    """Gate generation calls on requests-per-minute and daily spend."""

    def __init__(
        self,
        db: Session,
        rpm_limit: int = 5,
        daily_budget_usd: float = 0.50,
        pricing: Optional[ModelPricing] = None,
    ):
        self.repo = RateLimitRepository(db)
        self.rpm_limit = rpm_limit
        self.daily_budget_usd = daily_budget_usd
        self.pricing = pricing or ModelPricing(input_per_million=0.075, output_per_million=0.30)

    @classmethod
    def from_settings(cls, db: Session, settings: Settings, model: Optional[str] = None) -> "RateBudgetGuard":
        fallback = ModelPricing(
            input_per_million=settings.price_input_per_million,
            output_per_million=settings.price_output_per_million,
        )
        return cls(
            db,
            rpm_limit=settings.rpm_limit,
            daily_budget_usd=settings.daily_budget_usd,
            pricing=resolve_pricing(model if model is not None else settings.generation_model, fallback),
        )

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return self.pricing.cost(input_tokens, output_tokens)

    def admit(
        self,
        user_id: str,
        input_tokens: int,
        output_tokens: int,
        now: Optional[datetime] = None,
    ) -> Admission:
        """Admit or deny a call estimated at the given token counts."""
        return self.admit_cost(user_id, self.estimate_cost(input_tokens, output_tokens), now)

    def admit_cost(self, user_id: str, estimated_cost: float, now: Optional[datetime] = None) -> Admission:
        now = now or utcnow()
        for _ in range(MAX_CAS_RETRIES):
            record = self.repo.get_or_create(user_id, now, next_daily_reset(now))
            version = record.version
            state = roll_windows(self._state(record), now)

            if state.budget_blocked or state.committed_usd + estimated_cost > self.daily_budget_usd:
                decision = Admission.deny(FailureKind.RATE_LIMIT_BUDGET, state.daily_reset_at, estimated_cost)
                state = replace(state, budget_blocked=True)
            elif state.requests_this_minute + 1 > self.rpm_limit:
                decision = Admission.deny(
                    FailureKind.RATE_LIMIT_RPM, state.minute_window_start + MINUTE, estimated_cost
                )
            else:
                decision = Admission.allow(estimated_cost)
                state = replace(
                    state,
                    requests_this_minute=state.requests_this_minute + 1,
                    reserved_cost_usd=state.reserved_cost_usd + estimated_cost,
                )

            if self.repo.compare_and_set(user_id, version, **self._fields(state)):
                if not decision.allowed:
                    logger.info(
                        f"Denied generation call for user {user_id}: {decision.kind.value}",
                        extra={"user_id": user_id, "kind": decision.kind.value,
                               "retry_at": decision.retry_at.isoformat()},
                    )
                return decision
            logger.debug(f"Rate limit record for {user_id} changed concurrently, retrying")

        raise StorageTimeoutError(f"Could not update rate limit record for {user_id}: too much contention")

    def record(
        self,
        user_id: str,
        input_tokens: int,
        output_tokens: int,
        now: Optional[datetime] = None,
        reserved: float = 0.0,
    ) -> float:
        """Add the actual cost of a finished call to today's spend.

        Args:
            reserved: The estimate this call was admitted with; it is
                released from the user's reservations.

        Returns:
            The cost that was recorded, in USD.
        """
        now = now or utcnow()
        cost = self.estimate_cost(input_tokens, output_tokens)
        for _ in range(MAX_CAS_RETRIES):
            record = self.repo.get_or_create(user_id, now, next_daily_reset(now))
            version = record.version
            state = roll_windows(self._state(record), now)
            state = replace(
                state,
                daily_cost_usd=state.daily_cost_usd + cost,
                reserved_cost_usd=max(0.0, state.reserved_cost_usd - reserved),
            )
            if self.repo.compare_and_set(user_id, version, **self._fields(state)):
                if state.daily_cost_usd > self.daily_budget_usd:
                    logger.warning(
                        f"User {user_id} spend ${state.daily_cost_usd:.6f} exceeds daily budget "
                        f"${self.daily_budget_usd:.2f} after reconciliation"
                    )
                return cost
        raise StorageTimeoutError(f"Could not record usage for {user_id}: too much contention")

    def release(self, user_id: str, reserved: float, now: Optional[datetime] = None) -> None:
        """Return an admitted estimate whose call never completed."""
        if reserved <= 0:
            return
        now = now or utcnow()
        for _ in range(MAX_CAS_RETRIES):
            record = self.repo.get_or_create(user_id, now, next_daily_reset(now))
            version = record.version
            state = roll_windows(self._state(record), now)
            state = replace(state, reserved_cost_usd=max(0.0, state.reserved_cost_usd - reserved))
            if self.repo.compare_and_set(user_id, version, **self._fields(state)):
                return
        raise StorageTimeoutError(f"Could not release reservation for {user_id}: too much contention")

    def snapshot(self, user_id: str, now: Optional[datetime] = None) -> WindowState:
        """Current counters for *user_id* with expired windows rolled (read-only)."""
        now = now or utcnow()
        record = self.repo.get_or_create(user_id, now, next_daily_reset(now))
        return roll_windows(self._state(record), now)

    @staticmethod
    def _state(record) -> WindowState:
        return WindowState(
            requests_this_minute=record.requests_this_minute or 0,
            minute_window_start=record.minute_window_start,
            daily_cost_usd=float(record.daily_cost_usd or 0.0),
            daily_reset_at=record.daily_reset_at,
            budget_blocked=bool(record.budget_blocked),
            reserved_cost_usd=float(record.reserved_cost_usd or 0.0),
        )

    @staticmethod
    def _fields(state: WindowState) -> dict:
        return {
            "requests_this_minute": state.requests_this_minute,
            "minute_window_start": state.minute_window_start,
            "daily_cost_usd": state.daily_cost_usd,
            "daily_reset_at": state.daily_reset_at,
            "budget_blocked": state.budget_blocked,
            "reserved_cost_usd": state.reserved_cost_usd,
        }
