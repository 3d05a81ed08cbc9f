"""
Typed access to persisted feedback state.

Keys and shapes:
    respondedMeetings -> [meetingId, ...]
    nextMeetingTimer  -> {meetingId, title, startDateTime, minutesLeft, secondsLeft}
    revealedMeetings  -> [meetingId, ...]

Values are JSON. Anything missing or corrupt reads as empty/absent so a
bad write never takes the dashboard down.
"""

from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from feedback_portal.features.feedback_window.domain.models import (
    MeetingId,
    NextMeetingTimer,
    coerce_meeting_id,
    meeting_id_sort_key,
)
from feedback_portal.infrastructure.observability.logging import get_logger
from feedback_portal.services.infrastructure.persistence import PersistenceAdapter

logger = get_logger(__name__)

RESPONDED_KEY = "respondedMeetings"
NEXT_MEETING_TIMER_KEY = "nextMeetingTimer"
REVEALED_KEY = "revealedMeetings"

_id_list = TypeAdapter(list[int | str])


class NextMeetingTimerPayload(BaseModel):
    """Wire shape of the persisted next-meeting timer."""

    model_config = ConfigDict(populate_by_name=True)

    meeting_id: int | str = Field(alias="meetingId")
    title: str = ""
    start_date_time: datetime = Field(alias="startDateTime")
    minutes_left: int = Field(alias="minutesLeft", ge=0)
    seconds_left: int = Field(alias="secondsLeft", ge=0, lt=60)

    @classmethod
    def from_domain(cls, timer: NextMeetingTimer) -> "NextMeetingTimerPayload":
        return cls(
            meeting_id=timer.meeting_id,
            title=timer.title,
            start_date_time=timer.start,
            minutes_left=timer.minutes_left,
            seconds_left=timer.seconds_left,
        )

    def to_domain(self) -> NextMeetingTimer:
        return NextMeetingTimer(
            meeting_id=coerce_meeting_id(self.meeting_id),
            title=self.title,
            start=self.start_date_time,
            minutes_left=self.minutes_left,
            seconds_left=self.seconds_left,
        )


def sorted_ids(ids: Iterable[MeetingId]) -> list[MeetingId]:
    return sorted(set(ids), key=meeting_id_sort_key)


class FeedbackStateStore:
    """Reads and writes the persisted feedback keys through a PersistenceAdapter."""

    def __init__(self, adapter: PersistenceAdapter):
        self.adapter = adapter

    async def _load_ids(self, key: str) -> frozenset[MeetingId]:
        raw = await self.adapter.get(key)
        if raw is None:
            return frozenset()
        try:
            values = _id_list.validate_json(raw)
            return frozenset(coerce_meeting_id(value) for value in values)
        except (ValidationError, ValueError) as e:
            logger.warning("Persisted id list corrupt, treating as empty", key=key, error=str(e))
            return frozenset()

    async def _save_ids(self, key: str, ids: Iterable[MeetingId]) -> bool:
        payload = _id_list.dump_json(sorted_ids(ids)).decode()
        saved = await self.adapter.set(key, payload)
        if not saved:
            logger.warning("Failed to persist id list", key=key)
        return saved

    async def load_responded(self) -> frozenset[MeetingId]:
        return await self._load_ids(RESPONDED_KEY)

    async def save_responded(self, ids: Iterable[MeetingId]) -> bool:
        return await self._save_ids(RESPONDED_KEY, ids)

    async def load_revealed(self) -> frozenset[MeetingId]:
        return await self._load_ids(REVEALED_KEY)

    async def save_revealed(self, ids: Iterable[MeetingId]) -> bool:
        return await self._save_ids(REVEALED_KEY, ids)

    async def load_next_meeting_timer(self) -> NextMeetingTimer | None:
        raw = await self.adapter.get(NEXT_MEETING_TIMER_KEY)
        if raw is None:
            return None
        try:
            return NextMeetingTimerPayload.model_validate_json(raw).to_domain()
        except (ValidationError, ValueError) as e:
            logger.warning("Persisted next meeting timer corrupt, ignoring", error=str(e))
            return None

    async def save_next_meeting_timer(self, timer: NextMeetingTimer) -> bool:
        payload = NextMeetingTimerPayload.from_domain(timer).model_dump_json(by_alias=True)
        return await self.adapter.set(NEXT_MEETING_TIMER_KEY, payload)

    async def clear_next_meeting_timer(self) -> bool:
        return await self.adapter.remove(NEXT_MEETING_TIMER_KEY)

    async def clear(self) -> None:
        """Drop every persisted key. Only used on logout."""
        for key in (RESPONDED_KEY, NEXT_MEETING_TIMER_KEY, REVEALED_KEY):
            await self.adapter.remove(key)
        logger.info("Persisted feedback state cleared")
