"""Cooperative spacing between Xero API calls"""

import asyncio
import time
from typing import Awaitable, Callable, Optional


class RateLimiter:
    """
    Enforce a minimum interval between successive calls.

    Xero allows 60 calls/minute per tenant; a 1.1s spacing keeps a
    sequential run under that with some headroom.
    """

    def __init__(
        self,
        min_interval_seconds: float = 1.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval_seconds = min_interval_seconds
        self._sleep = sleep
        self._clock = clock
        self._last_call: Optional[float] = None

    async def wait(self) -> None:
        """Sleep just long enough to honour the spacing, then mark the call"""
        if self._last_call is not None:
            elapsed = self._clock() - self._last_call
            if elapsed < self.min_interval_seconds:
                await self._sleep(self.min_interval_seconds - elapsed)
        self._last_call = self._clock()
