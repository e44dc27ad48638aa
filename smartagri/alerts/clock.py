"""Time source for scheduled work.

Stream ticks, notification retry backoff, and the expiry sweep all read the
current time and wait through a ``Clock`` so tests can substitute a manual
clock and advance time without sleeping.
"""

import asyncio
from datetime import datetime, timezone


class Clock:
    """Wall-clock time and asyncio sleeping."""

    def now(self) -> datetime:
        """Current UTC time (timezone-aware)."""
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""
        await asyncio.sleep(seconds)


SYSTEM_CLOCK = Clock()
