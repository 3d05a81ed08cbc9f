import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from feedback_portal.features.feedback_window.domain.models import MeetingRef
from feedback_portal.features.feedback_window.services.state_store import FeedbackStateStore
from feedback_portal.services.infrastructure.persistence import InMemoryPersistence
from feedback_portal.services.portal_client import PortalClient

DAY = datetime(2024, 5, 1, tzinfo=UTC)


async def settle(rounds: int = 25) -> None:
    """Let every ready task run until the loop is quiet."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Manually advanced clock; ``sleep`` only returns when ``advance`` passes its deadline."""

    def __init__(self, start: datetime):
        self._now = start
        self._waiters: list[tuple[datetime, asyncio.Future]] = []

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((self._now + timedelta(seconds=seconds), future))
        await future

    def jump(self, **delta) -> None:
        """Move time without waking sleepers, like a suspended host."""
        self._now += timedelta(**delta)

    async def advance(self, **delta) -> None:
        target = self._now + timedelta(**delta)
        while True:
            await settle()
            self._waiters = [(due, f) for due, f in self._waiters if not f.done()]
            due = [when for when, _ in self._waiters if when <= target]
            if not due:
                break
            self._now = max(self._now, min(due))
            for when, future in self._waiters:
                if when <= self._now and not future.done():
                    future.set_result(None)
        self._now = target
        await settle()


@pytest.fixture
def clock():
    return FakeClock(DAY.replace(hour=9))


@pytest.fixture
def make_meeting():
    def _make(meeting_id, hour: int, minute: int = 0, title: str | None = None) -> MeetingRef:
        return MeetingRef(
            id=meeting_id,
            title=title or f"Meeting {meeting_id}",
            start=DAY.replace(hour=hour, minute=minute),
        )

    return _make


@pytest.fixture
def feed_entry():
    def _entry(meeting_id, start_time: str | None, date: str = "2024-05-01", **extra) -> dict:
        entry = {"id": meeting_id, "title": f"Meeting {meeting_id}", "date": date}
        if start_time is not None:
            entry["startTime"] = start_time
        entry.update(extra)
        return entry

    return _entry


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def store(persistence):
    return FeedbackStateStore(persistence)


@pytest.fixture
def portal_client():
    client = MagicMock(spec=PortalClient)
    client.fetch_meetings.return_value = []
    client.fetch_questions.return_value = []
    client.fetch_my_meeting_feedback.return_value = []
    client.submit_feedback.return_value = {}
    client.fetch_responded_meeting_ids.return_value = []
    client.health_check.return_value = True
    return client
