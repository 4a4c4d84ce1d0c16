"""Restartable quiet-interval timer on the running event loop."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional


class Debouncer:
    """Call ``callback(generation)`` once ``delay_s`` passes without a restart.

    Every ``restart`` bumps the generation, so a callback that races a restart
    can be recognised as stale by its receiver.
    """

    def __init__(self, delay_s: float, callback: Callable[[int], None]) -> None:
        self.delay_s = max(0.0, float(delay_s))
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self.generation = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def restart(self) -> int:
        self.cancel()
        self.generation += 1
        generation = self.generation
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_s, self._fire, generation)
        return generation

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, generation: int) -> None:
        self._handle = None
        self._callback(generation)


__all__ = ["Debouncer"]
