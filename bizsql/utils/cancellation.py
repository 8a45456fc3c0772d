"""
Request-scoped cancellation and deadline propagation.

One token is created per request and handed to every stage. Stages call
``raise_if_cancelled`` between steps, and IO-bound awaits go through
``run`` so that cancelling the token (or passing the deadline) aborts the
in-flight model call or dry run instead of waiting for it.
"""

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Optional

from bizsql.utils.errors import PipelineCancelled


class CancellationToken:
    """Caller-supplied cancellation signal with an optional deadline."""

    def __init__(
        self,
        deadline_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._deadline = clock() + deadline_seconds if deadline_seconds is not None else None
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if self._reason is None:
            self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self._reason = self._reason or "deadline exceeded"
            return True
        return False

    @property
    def reason(self) -> str:
        return self._reason or "cancelled"

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self.cancelled:
            raise PipelineCancelled(self.reason, stage=stage or None)

    def _effective_timeout(self, timeout: Optional[float]) -> Optional[float]:
        remaining = self.remaining()
        if timeout is None:
            return remaining
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    async def run(self, awaitable: Awaitable[Any], timeout: Optional[float] = None, stage: str = "") -> Any:
        """
        Await ``awaitable`` unless the token fires or the timeout elapses first.

        Raises:
            PipelineCancelled: token cancelled or deadline reached
            asyncio.TimeoutError: per-call timeout elapsed before the deadline
        """
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise PipelineCancelled(self.reason, stage=stage or None)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self._effective_timeout(timeout),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if task in done:
                return task.result()
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        if self.cancelled:
            raise PipelineCancelled(self.reason, stage=stage or None)
        raise asyncio.TimeoutError(f"{stage or 'call'} timed out after {timeout}s")
