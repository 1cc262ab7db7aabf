"""
Keyed debouncing of change notifications.

A burst of ``schedule()`` calls for the same key collapses into a single
invocation of the last scheduled action, ``delay`` seconds after the burst
ends. Timers run on an asyncio event loop, so actions execute on the same
thread as the code that scheduled them.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

DEFAULT_DELAY = 0.5


class Debouncer:
    """
    Per-key last-write-wins debounce timers.

    Example:
        debouncer = Debouncer(loop)
        for text in ('2', '2.', '2.5'):
            debouncer.schedule('CH1:SINE:frequency', model.apply)
        # model.apply() runs once, 0.5 s after the last call

    Callers must pick distinct keys for unrelated fields.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None,
                 delay: float = DEFAULT_DELAY):
        self._loop = loop
        self.delay = delay
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, key: str, action: Callable[..., Any], *args: Any,
                 delay: Optional[float] = None) -> None:
        """
        Arm (or re-arm) the timer for ``key``.

        Any pending action for the key is discarded and replaced by
        ``action(*args)``, which fires once ``delay`` seconds pass without
        another call for the same key.
        """
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

        if delay is None:
            delay = self.delay
        self._timers[key] = self.loop.call_later(delay, self._fire, key, action, args)

    def _fire(self, key: str, action: Callable[..., Any], args: tuple) -> None:
        self._timers.pop(key, None)
        action(*args)

    def pending(self, key: Optional[str] = None) -> bool:
        """Whether ``key`` (or any key, if None) has an armed timer."""
        if key is None:
            return bool(self._timers)
        return key in self._timers

    def __len__(self) -> int:
        return len(self._timers)
