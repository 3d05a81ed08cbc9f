"""
Domain models for the feedback window feature.

These lightweight dataclasses describe the shapes the scheduler, the
countdown and the reconciler pass between each other. They intentionally
avoid I/O so they can be reused by services, jobs, and API layers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

MeetingId = int | str


def coerce_meeting_id(value) -> MeetingId:
    """Portal ids are integers; numeric strings from any source collapse onto them."""
    if value is None or isinstance(value, bool):
        raise ValueError(f"Invalid meeting id: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        raise ValueError("Empty meeting id")
    if text.lstrip("-").isdigit():
        return int(text)
    return text


def meeting_id_sort_key(value: MeetingId) -> tuple[int, int | str]:
    """Order ids deterministically even when ints and strings are mixed."""
    if isinstance(value, int):
        return (0, value)
    return (1, value)


class WindowPhase(str, Enum):
    """Classification of a meeting relative to now."""

    FAR = "Far"
    IMMINENT = "Imminent"
    ACTIVE = "Active"
    EXPIRED = "Expired"

    @property
    def accepts_feedback(self) -> bool:
        return self is WindowPhase.ACTIVE


@dataclass(slots=True, frozen=True)
class MeetingRef:
    """A scheduled meeting as seen by the scheduler. Read-only."""

    id: MeetingId
    title: str
    start: datetime | None
    end: datetime | None = None
    department_id: int | None = None
    year: int | None = None
    role: str | None = None
    time_defaulted: bool = False  # no time-of-day in the feed, start is midnight
    schedule_error: str | None = None

    @property
    def is_trackable(self) -> bool:
        return self.start is not None


@dataclass(slots=True, frozen=True)
class Question:
    """A feedback question attached to a meeting."""

    id: int
    text: str
    meeting_id: MeetingId | None = None
    role: str | None = None
    department_id: int | None = None
    year: int | None = None


@dataclass(slots=True, frozen=True)
class Answer:
    """User input for one question. A rating of 0 means not rated."""

    question_id: int
    rating: int
    notes: str = ""


@dataclass(slots=True, frozen=True)
class SubmissionRecord:
    """One accepted per-question submit call."""

    meeting_id: MeetingId
    question_id: int
    rating: int
    notes: str
    submitted_at: datetime


@dataclass(slots=True, frozen=True)
class NextMeetingTimer:
    """Countdown snapshot for the next meeting, persisted across restarts."""

    meeting_id: MeetingId
    title: str
    start: datetime
    minutes_left: int
    seconds_left: int


@dataclass(slots=True, frozen=True)
class CountdownStep:
    """One emitted frame of a countdown: the number shown and its progress ramp."""

    value: int
    progress: int  # 0..100, pacing only


@dataclass(slots=True)
class SessionSnapshot:
    """Point-in-time view of a feedback session, for the API layer."""

    tracked_meeting: MeetingRef | None
    phase: WindowPhase | None
    minutes_until_start: int | None
    questions_visible: bool
    questions: list[Question] = field(default_factory=list)
    countdown: CountdownStep | None = None
    countdown_context: str | None = None  # "reveal" or "submit"
    responded: list[MeetingId] = field(default_factory=list)
    already_submitted: bool = False
