"""
Circuit breaker and retry wrapper around unreliable upstream calls

One ``CircuitBreaker`` is shared process-wide per upstream (the reasoning
model). ``ResilientCall`` combines it with a bounded per-attempt wait and
exponential-backoff retries, and answers with a caller-supplied fallback
whenever the call cannot produce a result.
"""
import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Deque, Optional, Tuple, Type, TypeVar

from bankguard.core.config import Settings
from bankguard.core.errors import CircuitOpenError, MalformedModelOutput, UpstreamModelFailure
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.metrics import circuit_breaker_fallbacks_total, circuit_breaker_state, retries_total

logger = LoggingConfig.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "closed"
    HALF_OPEN = "half_open"
    OPEN = "open"


_STATE_GAUGE = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


@dataclass(frozen=True)
class ResiliencePolicy:
    failure_rate_threshold: float = 0.5
    sliding_window_size: int = 10
    minimum_calls: int = 5
    open_duration_seconds: float = 30.0
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    call_timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResiliencePolicy":
        return cls(
            failure_rate_threshold=settings.breaker_failure_rate_threshold,
            sliding_window_size=settings.breaker_sliding_window_size,
            minimum_calls=settings.breaker_minimum_calls,
            open_duration_seconds=settings.breaker_open_duration_seconds,
            max_attempts=settings.retry_max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            backoff_multiplier=settings.retry_backoff_multiplier,
            call_timeout_seconds=settings.llm_timeout_seconds,
        )


class CircuitBreaker:
    """
    Count-based sliding-window circuit breaker.

    CLOSED: calls pass; outcomes are recorded in a window of the last
    ``sliding_window_size`` calls. Once the window holds at least
    ``minimum_calls`` outcomes and the failure rate reaches
    ``failure_rate_threshold`` the circuit opens.
    OPEN: calls are rejected until ``open_duration_seconds`` have elapsed.
    HALF_OPEN: exactly one trial call is admitted; success closes the
    circuit (window cleared), failure re-opens it.
    """

    def __init__(self, name: str, policy: ResiliencePolicy,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.policy = policy
        self._clock = clock
        self._lock = threading.Lock()
        self._window: Deque[bool] = deque(maxlen=policy.sliding_window_size)
        self._state = CircuitState.CLOSED
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        circuit_breaker_state.labels(breaker=name).set(0)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._advance()
            return self._state

    @property
    def failure_rate(self) -> float:
        with self._lock:
            return self._failure_rate()

    def _failure_rate(self) -> float:
        if not self._window:
            return 0.0
        return sum(1 for ok in self._window if not ok) / len(self._window)

    def _transition(self, state: CircuitState):
        if state == self._state:
            return
        logger.warning(
            f"Circuit '{self.name}' {self._state.value} -> {state.value}",
            extra={"breaker": self.name, "from_state": self._state.value, "to_state": state.value}
        )
        self._state = state
        circuit_breaker_state.labels(breaker=self.name).set(_STATE_GAUGE[state])

    def _open(self):
        self._opened_at = self._clock()
        self._trial_in_flight = False
        self._transition(CircuitState.OPEN)

    def _advance(self):
        # OPEN becomes HALF_OPEN once the cool-down has elapsed
        if (self._state == CircuitState.OPEN and self._opened_at is not None
                and self._clock() - self._opened_at >= self.policy.open_duration_seconds):
            self._trial_in_flight = False
            self._transition(CircuitState.HALF_OPEN)

    def allow_request(self) -> bool:
        """Whether a call may proceed; reserves the half-open trial slot"""
        with self._lock:
            self._advance()
            if self._state == CircuitState.OPEN:
                return False
            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    return False
                self._trial_in_flight = True
            return True

    def record_success(self):
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._window.clear()
                self._trial_in_flight = False
                self._transition(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._window.append(True)

    def record_failure(self):
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._open()
            elif self._state == CircuitState.CLOSED:
                self._window.append(False)
                if (len(self._window) >= self.policy.minimum_calls
                        and self._failure_rate() >= self.policy.failure_rate_threshold):
                    self._open()

    def release_trial(self):
        """Give back a half-open trial slot without recording an outcome"""
        with self._lock:
            self._trial_in_flight = False

    def reset(self):
        with self._lock:
            self._window.clear()
            self._opened_at = None
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)


class ResilientCall:
    """Breaker + bounded wait + retry around one upstream"""

    def __init__(self, breaker: CircuitBreaker,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.breaker = breaker
        self.policy = breaker.policy
        self._sleep = sleep

    async def call(
        self,
        func: Callable[[], Awaitable[T]],
        fallback: Callable[[Exception], T],
        operation: str = "llm",
        retry: bool = True,
    ) -> T:
        """
        Run ``func`` under the breaker.

        Returns ``func``'s result, or ``fallback(error)`` when the circuit is
        open, every attempt failed, or the output was malformed. A whole call
        (all attempts together) counts as one outcome in the breaker window.
        """
        if not self.breaker.allow_request():
            circuit_breaker_fallbacks_total.labels(breaker=self.breaker.name, reason="open").inc()
            logger.info(
                f"Circuit '{self.breaker.name}' open, using fallback for {operation}",
                extra={"breaker": self.breaker.name, "operation": operation}
            )
            return fallback(CircuitOpenError(self.breaker.name))

        try:
            result = await self._attempt(func, operation, retry)
        except asyncio.CancelledError:
            self.breaker.release_trial()
            raise
        except MalformedModelOutput as e:
            self.breaker.record_failure()
            circuit_breaker_fallbacks_total.labels(breaker=self.breaker.name, reason="malformed").inc()
            logger.warning(
                f"Malformed output from {operation}: {e.message}",
                extra={"breaker": self.breaker.name, "operation": operation}
            )
            return fallback(e)
        except UpstreamModelFailure as e:
            self.breaker.record_failure()
            circuit_breaker_fallbacks_total.labels(breaker=self.breaker.name, reason="failure").inc()
            logger.error(
                f"Upstream call {operation} failed: {e.message}",
                extra={"breaker": self.breaker.name, "operation": operation}
            )
            return fallback(e)

        self.breaker.record_success()
        return result

    async def _attempt(self, func: Callable[[], Awaitable[T]], operation: str, retry: bool) -> T:
        attempts = self.policy.max_attempts if retry else 1
        delay = self.policy.backoff_seconds
        last_error: Optional[UpstreamModelFailure] = None

        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(func(), timeout=self.policy.call_timeout_seconds)
            except MalformedModelOutput:
                # Re-asking rarely fixes a schema violation
                raise
            except asyncio.TimeoutError as e:
                last_error = UpstreamModelFailure(
                    f"{operation} timed out after {self.policy.call_timeout_seconds}s",
                    {"attempt": attempt},
                )
                last_error.__cause__ = e
            except UpstreamModelFailure as e:
                last_error = e
            except Exception as e:
                last_error = UpstreamModelFailure(f"{operation} failed: {e}", {"attempt": attempt})
                last_error.__cause__ = e

            if attempt < attempts:
                retries_total.labels(operation=operation).inc()
                logger.warning(
                    f"{operation} attempt {attempt}/{attempts} failed, retrying in {delay:.2f}s",
                    extra={"operation": operation, "attempt": attempt, "error": last_error.message}
                )
                await self._sleep(delay)
                delay *= self.policy.backoff_multiplier

        raise last_error


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: ResiliencePolicy,
    operation: str,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Retry a read-like operation with backoff; the last error propagates"""
    delay = policy.backoff_seconds
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                raise
            retries_total.labels(operation=operation).inc()
            logger.warning(
                f"{operation} attempt {attempt}/{policy.max_attempts} failed: {e}",
                extra={"operation": operation, "attempt": attempt}
            )
            await sleep(delay)
            delay *= policy.backoff_multiplier
