# src/core/resilience/caller.py
"""
Retry + circuit breaker policy for collaborator calls.

Every outbound request/response call goes through ResilientCaller.call(target, fn, ...):
- per-attempt timeout
- exponential backoff on transient failures (base_delay * 2 ** attempt)
- one circuit breaker per logical target
Failures surface as DownstreamUnavailable(target); DispatchError passes through untouched.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from src.common.errors import DispatchError, DownstreamUnavailable
from src.common.logger import log_warning

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def is_transient(error: BaseException) -> bool:
    """Network-class failures worth retrying."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status >= 500 or status == 429
    return isinstance(error, (
        asyncio.TimeoutError,
        TimeoutError,
        ConnectionError,
        OSError,
        httpx.TransportError,
    ))


class CircuitBreaker:
    """
    Error-rate circuit breaker over a rolling time window.

    CLOSED    calls flow; opens when failures / calls >= threshold with at least min_calls
    OPEN      calls fail fast until reset_timeout has passed
    HALF_OPEN one trial call; success closes, failure re-opens
    """

    def __init__(
        self,
        target: str,
        error_threshold_percent: float = 50.0,
        rolling_window: float = 60.0,
        min_calls: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.target = target
        self.error_threshold_percent = error_threshold_percent
        self.rolling_window = rolling_window
        self.min_calls = min_calls
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._outcomes: deque[tuple[float, bool]] = deque()
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._trial_started_at = 0.0

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.reset_timeout:
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
        return self._state

    def allow_request(self) -> bool:
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state != CircuitState.HALF_OPEN:
            return False
        # a trial call that never reported back frees the slot after reset_timeout
        if self._trial_in_flight and self._clock() - self._trial_started_at < self.reset_timeout:
            return False
        self._trial_in_flight = True
        self._trial_started_at = self._clock()
        return True

    def release_half_open_slot(self) -> None:
        """Frees the half-open slot of a call that ended without an outcome."""
        self._trial_in_flight = False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._close()
            return
        self._record(True)

    def record_failure(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._open()
            return
        self._record(False)
        if self._should_open():
            self._open()

    def error_rate(self) -> float:
        """Failure percentage inside the rolling window."""
        self._prune()
        if not self._outcomes:
            return 0.0
        failures = sum(1 for _, ok in self._outcomes if not ok)
        return failures * 100.0 / len(self._outcomes)

    def _record(self, ok: bool) -> None:
        self._outcomes.append((self._clock(), ok))
        self._prune()

    def _prune(self) -> None:
        horizon = self._clock() - self.rolling_window
        while self._outcomes and self._outcomes[0][0] < horizon:
            self._outcomes.popleft()

    def _should_open(self) -> bool:
        return len(self._outcomes) >= self.min_calls and self.error_rate() >= self.error_threshold_percent

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._outcomes.clear()
        self._trial_in_flight = False


class ResilientCaller:
    """One retry/circuit policy shared by every collaborator client."""

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        call_timeout: Optional[float] = None,
        error_threshold_percent: Optional[float] = None,
        rolling_window: Optional[float] = None,
        min_calls: Optional[int] = None,
        reset_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        from src.config import settings

        cfg = settings.resilience
        self.max_attempts = max_attempts if max_attempts is not None else cfg.MAX_ATTEMPTS
        self.base_delay = base_delay if base_delay is not None else cfg.BASE_DELAY
        self.call_timeout = call_timeout if call_timeout is not None else cfg.CALL_TIMEOUT
        self._breaker_options = {
            "error_threshold_percent": error_threshold_percent if error_threshold_percent is not None else cfg.ERROR_THRESHOLD_PERCENT,
            "rolling_window": rolling_window if rolling_window is not None else cfg.ROLLING_WINDOW,
            "min_calls": min_calls if min_calls is not None else cfg.MIN_CALLS,
            "reset_timeout": reset_timeout if reset_timeout is not None else cfg.RESET_TIMEOUT,
        }
        self._clock = clock
        self._sleep = sleep
        self._breakers: dict[str, CircuitBreaker] = {}

    def breaker(self, target: str) -> CircuitBreaker:
        """Circuit breaker of a target (created on first use)."""
        if target not in self._breakers:
            self._breakers[target] = CircuitBreaker(target, clock=self._clock, **self._breaker_options)
        return self._breakers[target]

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given zero-based attempt."""
        return self.base_delay * (2 ** attempt)

    async def call(
        self,
        target: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Calls a collaborator under the retry/circuit policy.

        Args:
            target: Logical downstream name (one breaker per name)
            fn: Coroutine function performing the call

        Raises:
            DownstreamUnavailable: retries exhausted, circuit open, or a non-transient failure
            DispatchError: business errors raised by fn, unchanged
        """
        breaker = self.breaker(target)
        last_error: BaseException | None = None

        for attempt in range(self.max_attempts):
            if not breaker.allow_request():
                raise DownstreamUnavailable(target, "circuit open")

            try:
                result = await asyncio.wait_for(fn(*args, **kwargs), timeout=self.call_timeout)
            except DispatchError:
                # the downstream answered; this is a business outcome
                breaker.record_success()
                raise
            except Exception as e:
                breaker.record_failure()
                if not is_transient(e):
                    raise DownstreamUnavailable(target, f"{type(e).__name__}: {e}") from e

                last_error = e
                if attempt + 1 < self.max_attempts:
                    delay = self.backoff_delay(attempt)
                    await log_warning(
                        f"Call to {target} failed (attempt {attempt + 1}/{self.max_attempts}), retrying in {delay:.2f}s: {type(e).__name__}",
                        extra={"target": target, "attempt": attempt + 1},
                    )
                    await self._sleep(delay)
                continue
            except BaseException:
                # cancelled mid-call: no outcome to record
                breaker.release_half_open_slot()
                raise

            breaker.record_success()
            return result

        raise DownstreamUnavailable(
            target,
            f"{self.max_attempts} attempts failed, last error {type(last_error).__name__}",
        ) from last_error


_caller: ResilientCaller | None = None


def get_resilient_caller() -> ResilientCaller:
    """Process-wide caller built from configuration."""
    global _caller
    if _caller is None:
        _caller = ResilientCaller()
    return _caller
