"""Per-model circuit breaker and the timed call wrapper around it.

A model endpoint that keeps failing is cut off for a cooldown, so a dead
provider costs one timeout budget instead of one per queued job.

    CLOSED --(threshold consecutive failures)--> OPEN
    OPEN --(cooldown elapsed)--> HALF_OPEN, one probe passes
    HALF_OPEN --(probe ok)--> CLOSED
    HALF_OPEN --(probe fails)--> OPEN

``run_with_timeout`` abandons a call that overruns its deadline instead
of waiting for it; Python threads cannot be preempted, so the worker
thread finishes on its own and its result is dropped.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from enum import Enum
from typing import Any, Callable, Dict

from ..exceptions import GenerationTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 60


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(GenerationTimeoutError):
    """The endpoint is cut off. Recovered like a generation timeout."""

    def __init__(self, endpoint: str, retry_after: float):
        self.endpoint = endpoint
        self.retry_after = retry_after
        super().__init__(f"Model endpoint '{endpoint}' is cut off for another {retry_after:.0f}s")


class CircuitBreaker:
    """Failure counter for one model endpoint. Safe to share between threads."""

    def __init__(
        self,
        endpoint: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.endpoint = endpoint
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failures

    def _move(self, target: CircuitState, why: str) -> None:
        # Caller holds the lock.
        if target == self._state:
            return
        log = logger.warning if target == CircuitState.OPEN else logger.info
        log(f"Circuit {self.endpoint}: {self._state.name} -> {target.name} ({why})")
        self._state = target
        if target == CircuitState.OPEN:
            self._opened_at = self._clock()

    def check(self) -> None:
        """Let a call through or raise CircuitBreakerOpen."""
        with self._lock:
            if self._state != CircuitState.OPEN:
                return
            remaining = self.cooldown_seconds - (self._clock() - self._opened_at)
            if remaining > 0:
                raise CircuitBreakerOpen(self.endpoint, remaining)
            self._move(CircuitState.HALF_OPEN, "cooldown over, probing")

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._move(CircuitState.CLOSED, "call succeeded")

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN:
                self._move(CircuitState.OPEN, "probe failed")
            elif self._failures >= self.failure_threshold:
                self._move(CircuitState.OPEN, f"{self._failures} failures in a row")


_breakers: Dict[str, CircuitBreaker] = {}
_breakers_lock = threading.Lock()


def get_breaker(endpoint: str) -> CircuitBreaker:
    """The process-wide breaker for *endpoint*, created on first use."""
    with _breakers_lock:
        breaker = _breakers.get(endpoint)
        if breaker is None:
            breaker = _breakers[endpoint] = CircuitBreaker(endpoint)
        return breaker


def breaker_states() -> Dict[str, str]:
    """Current state per known endpoint, for health output."""
    with _breakers_lock:
        breakers = list(_breakers.values())
    return {b.endpoint: b.state.value for b in breakers}


def reset_all() -> None:
    """Forget every breaker (tests)."""
    with _breakers_lock:
        _breakers.clear()


def run_with_timeout(fn: Callable[[], Any], timeout: float, label: str) -> Any:
    """Call *fn* under a deadline, feeding the outcome to *label*'s breaker.

    Raises:
        CircuitBreakerOpen: the endpoint is cut off; *fn* is not called.
        GenerationTimeoutError: *fn* did not return within *timeout* seconds.
        Exception: whatever *fn* raised.
    """
    breaker = get_breaker(label)
    breaker.check()

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="generation")
    try:
        result = pool.submit(fn).result(timeout=timeout)
    except FuturesTimeoutError:
        breaker.record_failure()
        logger.error(f"Call to {label} abandoned after {timeout:.1f}s")
        raise GenerationTimeoutError(f"{label} exceeded {timeout:.1f}s timeout", timeout_seconds=timeout)
    except Exception:
        breaker.record_failure()
        raise
    finally:
        pool.shutdown(wait=False)
    breaker.record_success()
    return result
