"""
Time source shared by the fetcher and the cache.

Rate limiting, 429 reset handling and cache expiry all compare against
wall-clock epoch seconds, because servers advertise rate-limit resets as
epoch timestamps. Tests swap in a clock whose sleep() advances time
instantly.
"""

import asyncio
import time


class Clock:
    """Wall clock with cooperative sleeping."""

    def time(self) -> float:
        """Current time as epoch seconds."""
        return time.time()

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task without blocking the event loop."""
        if seconds > 0:
            await asyncio.sleep(seconds)


SYSTEM_CLOCK = Clock()
