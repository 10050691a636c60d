"""
Debounce and throttle for coroutine (or plain) callables on asyncio.

Used by the recommendation tracker to coalesce bursts of mutations into a
single Firestore write.

    save = Debouncer(tracker.save, wait=1.0)
    await save(uid)      # schedules; returns the last result
    await save(uid)      # restarts the quiet period
    await save.flush()   # runs the pending call now

A timer-driven invocation that raises is logged and the debouncer stays
usable; flush() propagates the error to its caller instead.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Delay calls to func until wait seconds have passed without a new call.

    Args:
        func: Sync or async callable, invoked with the latest arguments
        wait: Quiet period in seconds
        leading: Invoke at the start of a burst
        trailing: Invoke at the end of a burst
        max_wait: Longest a call may be delayed within a continuous burst
    """

    def __init__(
        self,
        func: Callable[..., Any],
        wait: float,
        *,
        leading: bool = False,
        trailing: bool = True,
        max_wait: Optional[float] = None,
    ):
        self.func = func
        self.wait = max(wait, 0.0)
        self.leading = leading
        self.trailing = trailing
        self.max_wait = max(max_wait, self.wait) if max_wait is not None else None

        self._timer: Optional[asyncio.Task] = None
        self._last_args: Optional[Tuple[Tuple[Any, ...], Dict[str, Any]]] = None
        self._last_call_time: Optional[float] = None
        self._last_invoke_time = 0.0
        self._result: Any = None

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    @property
    def pending(self) -> bool:
        """True while a trailing invocation is scheduled."""
        return self._timer is not None

    def _should_invoke(self, now: float) -> bool:
        if self._last_call_time is None:
            return True
        since_call = now - self._last_call_time
        since_invoke = now - self._last_invoke_time
        return (
            since_call >= self.wait
            or since_call < 0
            or (self.max_wait is not None and since_invoke >= self.max_wait)
        )

    def _remaining_wait(self, now: float) -> float:
        waiting = self.wait - (now - (self._last_call_time or now))
        if self.max_wait is None:
            return waiting
        return min(waiting, self.max_wait - (now - self._last_invoke_time))

    def _start_timer(self, delay: float) -> None:
        self._timer = asyncio.create_task(self._run_timer(delay))

    async def _run_timer(self, delay: float) -> None:
        while True:
            await asyncio.sleep(max(delay, 0.0))
            now = self._now()
            if self._should_invoke(now):
                break
            delay = self._remaining_wait(now)

        # Detach first so cancel() during the call cannot interrupt it
        self._timer = None
        try:
            await self._trailing_edge(now)
        except Exception as e:
            logger.exception(f"Debounced call to {getattr(self.func, '__name__', self.func)} failed: {e}")

    async def _invoke(self, now: float) -> Any:
        args, kwargs = self._last_args or ((), {})
        self._last_args = None
        self._last_invoke_time = now
        result = self.func(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        self._result = result
        return result

    async def _leading_edge(self, now: float) -> Any:
        self._last_invoke_time = now
        self._start_timer(self.wait)
        if self.leading:
            return await self._invoke(now)
        return self._result

    async def _trailing_edge(self, now: float) -> Any:
        if self.trailing and self._last_args is not None:
            return await self._invoke(now)
        self._last_args = None
        return self._result

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        now = self._now()
        is_invoking = self._should_invoke(now)

        self._last_args = (args, kwargs)
        self._last_call_time = now

        if is_invoking:
            if self._timer is None:
                return await self._leading_edge(now)
            if self.max_wait is not None:
                # Tight loop: restart the timer and invoke now
                self._timer.cancel()
                self._start_timer(self.wait)
                return await self._invoke(now)
        if self._timer is None:
            self._start_timer(self.wait)
        return self._result

    def cancel(self) -> None:
        """Drop the pending invocation, if any."""
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._last_args = None
        self._last_call_time = None
        self._last_invoke_time = 0.0

    async def flush(self) -> Any:
        """Run the pending invocation now and return its result."""
        if self._timer is None:
            return self._result
        self._timer.cancel()
        self._timer = None
        return await self._trailing_edge(self._now())


def throttle(
    func: Callable[..., Any],
    wait: float,
    *,
    leading: bool = True,
    trailing: bool = True,
) -> Debouncer:
    """Invoke func at most once every wait seconds."""
    return Debouncer(func, wait, leading=leading, trailing=trailing, max_wait=wait)
