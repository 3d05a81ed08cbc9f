"""
Time window evaluation for meeting feedback.

Maps (now, meeting) onto a WindowPhase. Everything here is pure: no clock
reads, no shared state, so concurrent evaluations may interleave freely.

The portal stores a meeting as a date field (either ``YYYY-MM-DD`` or a full
ISO date-time whose time part is meaningless) plus a separate ``HH:MM``
start time. ``normalize_instant`` is the one place those two are merged.
"""

from datetime import date, datetime, time, timedelta, tzinfo

from feedback_portal.features.feedback_window.domain.errors import InvalidSchedule
from feedback_portal.features.feedback_window.domain.models import MeetingRef, WindowPhase
from feedback_portal.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

LEAD_MINUTES = 5  # questions open this many minutes before start
GRACE_MINUTES = 60  # and stay open this long after scheduled start
DEFAULT_TIME_OF_DAY = "00:00"

_ONE_MINUTE_MS = 60_000


def _date_component(date_value) -> date:
    if isinstance(date_value, datetime):
        return date_value.date()
    if isinstance(date_value, date):
        return date_value
    if not isinstance(date_value, str):
        raise InvalidSchedule(
            f"Unsupported meeting date type: {type(date_value).__name__}", date_value=date_value
        )

    text = date_value.strip()
    if not text:
        raise InvalidSchedule("Meeting date is empty", date_value=date_value)

    # ISO date-times are truncated to their date; the time of day lives elsewhere
    text = text.split("T", 1)[0].split(" ", 1)[0]
    try:
        return date.fromisoformat(text)
    except ValueError as e:
        raise InvalidSchedule(f"Invalid meeting date: {date_value!r}", date_value=date_value) from e


def _time_component(time_value) -> time:
    if isinstance(time_value, time):
        return time_value.replace(tzinfo=None)
    if time_value is None:
        text = DEFAULT_TIME_OF_DAY
    elif isinstance(time_value, str):
        text = time_value.strip() or DEFAULT_TIME_OF_DAY
    else:
        raise InvalidSchedule(
            f"Unsupported meeting time type: {type(time_value).__name__}", time_value=time_value
        )
    try:
        return time.fromisoformat(text).replace(tzinfo=None)
    except ValueError as e:
        raise InvalidSchedule(f"Invalid meeting time: {time_value!r}", time_value=time_value) from e


def normalize_instant(date_value, time_value, tz: tzinfo) -> datetime:
    """
    Merge a meeting date field and time-of-day field into one aware instant.

    Args:
        date_value: ``YYYY-MM-DD``, an ISO date-time string, or a date/datetime
        time_value: ``HH:MM`` or ``HH:MM:SS``; empty means midnight
        tz: Timezone the portal's wall-clock times are expressed in

    Returns:
        datetime: Timezone-aware instant

    Raises:
        InvalidSchedule: If either component does not parse
    """
    day = _date_component(date_value)
    try:
        clock_time = _time_component(time_value)
    except InvalidSchedule as e:
        e.date_value = date_value
        raise
    return datetime.combine(day, clock_time, tzinfo=tz)


def minutes_until_start(now: datetime, start: datetime) -> int:
    """Whole minutes from now until start, floored toward negative infinity."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=start.tzinfo)
    delta_ms = (start - now) // timedelta(milliseconds=1)
    return delta_ms // _ONE_MINUTE_MS


def classify(
    mins_until_start: int,
    *,
    lead_minutes: int = LEAD_MINUTES,
    grace_minutes: int = GRACE_MINUTES,
) -> WindowPhase:
    """Phase for a given minute offset. The whole window reports ACTIVE."""
    if mins_until_start > lead_minutes:
        return WindowPhase.FAR
    if mins_until_start >= -grace_minutes:
        return WindowPhase.ACTIVE
    return WindowPhase.EXPIRED


def evaluate(
    now: datetime,
    meeting: MeetingRef,
    *,
    lead_minutes: int = LEAD_MINUTES,
    grace_minutes: int = GRACE_MINUTES,
) -> WindowPhase:
    """
    Classify a meeting relative to now.

    Meetings without a normalized start degrade to FAR ("don't show
    questions yet") instead of raising into callers.
    """
    if meeting.start is None:
        logger.debug(
            "Meeting has no valid start, treating as far",
            meeting_id=meeting.id,
            schedule_error=meeting.schedule_error,
        )
        return WindowPhase.FAR

    mins = minutes_until_start(now, meeting.start)
    return classify(mins, lead_minutes=lead_minutes, grace_minutes=grace_minutes)


def wake_time(meeting: MeetingRef, *, lead_minutes: int = LEAD_MINUTES) -> datetime | None:
    """Instant at which the meeting enters the feedback window."""
    if meeting.start is None:
        return None
    return meeting.start - timedelta(minutes=lead_minutes)
