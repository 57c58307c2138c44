"""
Recovery policy table: one place that decides what happens after a failure.

Every call site classifies its error and asks ``policy_for``; none of them
carries its own retry loop or backoff arithmetic.

    RATE_LIMIT_RPM      retry when the guard's minute window ends + 0-5s jitter
    RATE_LIMIT_BUDGET   pause the project until the next daily reset
    UNPARSEABLE_JSON    substitute the step's fallback payload, continue
    GENERATION_TIMEOUT  retry after 2^attempts * 2000ms, at most 3 attempts
    STORAGE_TIMEOUT     persist partial state, retry in 5s from the checkpoint
    PERMANENT_FAILURE   fail the project and flag it for review
    UNKNOWN             same as PERMANENT_FAILURE

Retries that would reach ``max_attempts`` escalate to PERMANENT_FAILURE.
Budget pauses do not consume an attempt.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .failure_classifier import FailureKind

BACKOFF_BASE_MS = 2000


class RecoveryAction(str, Enum):
    RETRY = "retry"
    PAUSE = "pause"
    FALLBACK = "fallback"
    ESCALATE = "escalate"


ACTIONS: dict[FailureKind, RecoveryAction] = {
    FailureKind.RATE_LIMIT_RPM: RecoveryAction.RETRY,
    FailureKind.RATE_LIMIT_BUDGET: RecoveryAction.PAUSE,
    FailureKind.UNPARSEABLE_JSON: RecoveryAction.FALLBACK,
    FailureKind.GENERATION_TIMEOUT: RecoveryAction.RETRY,
    FailureKind.STORAGE_TIMEOUT: RecoveryAction.RETRY,
    FailureKind.PERMANENT_FAILURE: RecoveryAction.ESCALATE,
    FailureKind.UNKNOWN: RecoveryAction.ESCALATE,
}


@dataclass(frozen=True)
class RecoveryDecision:
    """What the scheduler should do with a failed job.

    ``kind`` is the effective kind: an exhausted retry is reported as
    PERMANENT_FAILURE even though the triggering error was transient.
    """

    kind: FailureKind
    action: RecoveryAction
    retry_at: Optional[datetime] = None
    delay_ms: int = 0
    consumes_attempt: bool = False
    persist_partial: bool = False
    reason: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.action == RecoveryAction.ESCALATE


def backoff_delay_ms(attempts: int, base_ms: int = BACKOFF_BASE_MS) -> int:
    """Exponential backoff for the given post-increment attempt count."""
    return (2 ** attempts) * base_ms


def next_minute_boundary(now: datetime) -> datetime:
    return now.replace(second=0, microsecond=0) + timedelta(minutes=1)


def next_daily_reset(now: datetime) -> datetime:
    """Next UTC midnight strictly after *now*."""
    return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)


class RecoveryPolicyTable:
    def __init__(
        self,
        backoff_base_ms: int = BACKOFF_BASE_MS,
        rpm_jitter_seconds: float = 5.0,
        storage_retry_seconds: float = 5.0,
        rng: Optional[random.Random] = None,
    ):
        self.backoff_base_ms = backoff_base_ms
        self.rpm_jitter_seconds = rpm_jitter_seconds
        self.storage_retry_seconds = storage_retry_seconds
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings, rng: Optional[random.Random] = None) -> "RecoveryPolicyTable":
        return cls(
            backoff_base_ms=settings.backoff_base_ms,
            rpm_jitter_seconds=settings.rpm_jitter_seconds,
            storage_retry_seconds=settings.storage_retry_seconds,
            rng=rng,
        )

    def action_for(self, kind: FailureKind) -> RecoveryAction:
        """The table entry for *kind*, before attempt limits are applied."""
        return ACTIONS.get(kind, RecoveryAction.ESCALATE)

    def policy_for(
        self,
        kind: FailureKind,
        attempts: int,
        max_attempts: int,
        now: datetime,
        window_reset_at: Optional[datetime] = None,
    ) -> RecoveryDecision:
        """Decide recovery for a failure.

        Args:
            kind: Classified failure.
            attempts: Attempts consumed before this failure.
            max_attempts: The job's attempt ceiling.
            now: Current time (UTC).
            window_reset_at: For rate-limit denials, when the guard's counting
                window resets. Defaults to the next minute boundary (RPM) or
                the next UTC midnight (budget).
        """
        action = self.action_for(kind)

        if action == RecoveryAction.FALLBACK:
            return RecoveryDecision(kind=kind, action=action, reason="substitute fallback payload")

        if action == RecoveryAction.PAUSE:
            return RecoveryDecision(
                kind=kind,
                action=action,
                retry_at=window_reset_at or next_daily_reset(now),
                reason="daily budget exhausted",
            )

        if action == RecoveryAction.ESCALATE:
            return RecoveryDecision(
                kind=FailureKind.PERMANENT_FAILURE,
                action=action,
                reason="unrecoverable failure" if kind != FailureKind.UNKNOWN else "unclassified failure",
            )

        next_attempts = attempts + 1
        if next_attempts >= max_attempts:
            return RecoveryDecision(
                kind=FailureKind.PERMANENT_FAILURE,
                action=RecoveryAction.ESCALATE,
                consumes_attempt=True,
                persist_partial=kind == FailureKind.STORAGE_TIMEOUT,
                reason=f"{kind.value} after {next_attempts} of {max_attempts} attempts",
            )

        if kind == FailureKind.RATE_LIMIT_RPM:
            window_end = max(window_reset_at, now) if window_reset_at else next_minute_boundary(now)
            retry_at = window_end + timedelta(
                seconds=self._rng.uniform(0, self.rpm_jitter_seconds)
            )
            delay_ms = int((retry_at - now).total_seconds() * 1000)
            return RecoveryDecision(
                kind=kind, action=action, retry_at=retry_at, delay_ms=delay_ms,
                consumes_attempt=True, reason="next minute window",
            )

        if kind == FailureKind.STORAGE_TIMEOUT:
            delay_ms = int(self.storage_retry_seconds * 1000)
            return RecoveryDecision(
                kind=kind, action=action, retry_at=now + timedelta(milliseconds=delay_ms),
                delay_ms=delay_ms, consumes_attempt=True, persist_partial=True,
                reason="resume from last checkpoint",
            )

        delay_ms = backoff_delay_ms(next_attempts, self.backoff_base_ms)
        return RecoveryDecision(
            kind=kind, action=action, retry_at=now + timedelta(milliseconds=delay_ms),
            delay_ms=delay_ms, consumes_attempt=True, reason=f"backoff {delay_ms}ms",
        )
