"""
Retry and circuit breaking for IO-bound calls (model completions, dry runs).

``retry_async`` retries with exponential backoff up to a small fixed cap.
``CircuitBreaker`` counts consecutive failures; once open it rejects calls
immediately until the reset timeout passes, then lets a single trial call
through (half-open). Neither holds a lock across the awaited call.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from loguru import logger

from bizsql.utils.errors import CircuitOpenError, PipelineCancelled


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def state(self) -> CircuitState:
        if self._opened_at is None:
            return CircuitState.CLOSED
        if self._clock() - self._opened_at >= self.reset_timeout:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    async def call(self, func: Callable[[], Awaitable[Any]]) -> Any:
        state = self.state
        if state == CircuitState.OPEN or (state == CircuitState.HALF_OPEN and self._trial_in_flight):
            raise CircuitOpenError(f"Circuit '{self.name}' is open; failing fast")

        probing = state == CircuitState.HALF_OPEN
        if probing:
            self._trial_in_flight = True
        try:
            result = await func()
        except PipelineCancelled:
            raise
        except Exception:
            self._record_failure()
            raise
        finally:
            if probing:
                self._trial_in_flight = False

        self._record_success()
        return result

    def _record_failure(self) -> None:
        self._failures += 1
        if self._opened_at is not None or self._failures >= self.failure_threshold:
            # A failed trial call re-opens the circuit for another full timeout
            self._opened_at = self._clock()
            logger.warning(f"Circuit '{self.name}' opened after {self._failures} consecutive failures")

    def _record_success(self) -> None:
        if self._opened_at is not None:
            logger.info(f"Circuit '{self.name}' closed after successful trial call")
        self._failures = 0
        self._opened_at = None


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    max_attempts: int = 3,
    base_delay: float = 0.5,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    no_retry: Tuple[Type[BaseException], ...] = (CircuitOpenError, PipelineCancelled),
    description: str = "call",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Await ``func()`` up to ``max_attempts`` times with exponential backoff.

    Exceptions in ``no_retry`` propagate immediately; the last retried
    exception propagates once attempts are exhausted.
    """
    last_exception: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            return await func()
        except no_retry:
            raise
        except retry_on as e:
            last_exception = e
            if attempt < max_attempts - 1:
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    f"{description}: attempt {attempt + 1}/{max_attempts} failed: {e}. "
                    f"Retrying in {delay}s..."
                )
                await sleep(delay)
            else:
                logger.error(f"{description}: all {max_attempts} attempts failed: {e}")

    raise last_exception
