"""
Clock used by the scheduler and countdown.

All waiting in the feature goes through ``Clock.sleep`` and all time reads
through ``Clock.now`` so tests can swap in a manually advanced clock.
"""

import asyncio
from datetime import UTC, datetime, tzinfo


class SystemClock:
    """Wall clock backed by the running event loop."""

    def __init__(self, tz: tzinfo = UTC):
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


system_clock = SystemClock()
