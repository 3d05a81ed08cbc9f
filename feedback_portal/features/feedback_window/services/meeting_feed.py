"""
Meeting feed normalization and next-meeting selection.

The portal answers the "meetings for current user" request either with a
flat list or with ``pastMeetings``/``currentMeetings``/``futureMeetings``
buckets. Both are flattened into MeetingRefs here so nothing downstream
has to care which shape arrived.
"""

from collections.abc import Iterable
from datetime import datetime, tzinfo
from typing import Any

from feedback_portal.features.feedback_window.domain.errors import InvalidSchedule
from feedback_portal.features.feedback_window.domain.models import (
    MeetingId,
    MeetingRef,
    NextMeetingTimer,
    WindowPhase,
    coerce_meeting_id,
    meeting_id_sort_key,
)
from feedback_portal.features.feedback_window.services.window_evaluator import (
    GRACE_MINUTES,
    LEAD_MINUTES,
    evaluate,
    minutes_until_start,
    normalize_instant,
)
from feedback_portal.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FEED_BUCKETS = ("pastMeetings", "currentMeetings", "futureMeetings")
ROLE_IDS = {1: "student", 2: "staff"}


def _optional_int(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _role_of(raw: dict) -> str | None:
    role = raw.get("role")
    if isinstance(role, dict):
        role = role.get("name")
    if role:
        return str(role).replace("ROLE_", "").lower()
    return ROLE_IDS.get(_optional_int(raw.get("roleId")))


def meeting_from_payload(raw: dict[str, Any], tz: tzinfo) -> MeetingRef:
    """
    Build a MeetingRef from one raw feed entry.

    Unparseable schedules do not raise: the meeting is returned with
    ``start=None`` and the reason, which keeps it untrackable.

    Raises:
        ValueError: If the entry has no usable id
    """
    meeting_id = coerce_meeting_id(raw.get("id"))
    date_value = raw.get("date") or raw.get("meetingDate")
    start_time = raw.get("startTime")
    time_defaulted = not (isinstance(start_time, str) and start_time.strip())

    start = None
    end = None
    schedule_error = None
    try:
        start = normalize_instant(date_value, start_time, tz)
        if raw.get("endTime"):
            end = normalize_instant(date_value, raw.get("endTime"), tz)
    except InvalidSchedule as e:
        schedule_error = str(e)
        logger.warning(
            "Meeting schedule invalid, meeting will not be tracked",
            meeting_id=meeting_id,
            date_value=str(date_value),
            time_value=str(start_time),
            error=schedule_error,
        )

    if start is not None and time_defaulted:
        # Known ambiguity: absent time means start of day, which moves the window to midnight
        logger.warning(
            "Meeting has no start time, defaulting to midnight",
            meeting_id=meeting_id,
            start=start.isoformat(),
        )

    return MeetingRef(
        id=meeting_id,
        title=str(raw.get("title") or ""),
        start=start,
        end=end,
        department_id=_optional_int(raw.get("departmentId")),
        year=_optional_int(raw.get("year")),
        role=_role_of(raw),
        time_defaulted=time_defaulted and start is not None,
        schedule_error=schedule_error,
    )


def _flatten(payload: Any) -> list[dict]:
    if payload is None:
        return []
    if isinstance(payload, list):
        return [entry for entry in payload if isinstance(entry, dict)]
    if isinstance(payload, dict):
        if any(bucket in payload for bucket in FEED_BUCKETS):
            entries: list[dict] = []
            for bucket in FEED_BUCKETS:
                entries.extend(_flatten(payload.get(bucket)))
            return entries
        if "meetings" in payload:
            return _flatten(payload["meetings"])
    logger.warning("Unrecognized meeting feed shape", payload_type=type(payload).__name__)
    return []


def normalize_feed(payload: Any, tz: tzinfo) -> list[MeetingRef]:
    """Flatten a categorized or flat feed into unique MeetingRefs."""
    meetings: list[MeetingRef] = []
    seen: set[MeetingId] = set()

    for raw in _flatten(payload):
        try:
            meeting = meeting_from_payload(raw, tz)
        except ValueError as e:
            logger.warning("Skipping meeting without usable id", error=str(e))
            continue
        if meeting.id in seen:
            continue
        seen.add(meeting.id)
        meetings.append(meeting)

    logger.debug("Meeting feed normalized", meeting_count=len(meetings))
    return meetings


def select_next_meeting(
    meetings: Iterable[MeetingRef],
    now: datetime,
    *,
    exclude: Iterable[MeetingId] = (),
    lead_minutes: int = LEAD_MINUTES,
    grace_minutes: int = GRACE_MINUTES,
) -> MeetingRef | None:
    """
    Pick the single meeting the scheduler should track.

    Among trackable, non-expired, non-excluded meetings: the smallest
    non-negative minutes-until-start wins, ties to the earliest id. When
    every candidate has already started, the in-window meeting that started
    most recently is used so the grace window still reaches the user.
    """
    excluded = {coerce_meeting_id(value) for value in exclude}
    upcoming: list[tuple[int, tuple, MeetingRef]] = []
    started: list[tuple[int, tuple, MeetingRef]] = []

    for meeting in meetings:
        if not meeting.is_trackable or meeting.id in excluded:
            continue
        phase = evaluate(now, meeting, lead_minutes=lead_minutes, grace_minutes=grace_minutes)
        if phase is WindowPhase.EXPIRED:
            continue
        mins = minutes_until_start(now, meeting.start)
        entry = (abs(mins), meeting_id_sort_key(meeting.id), meeting)
        if mins >= 0:
            upcoming.append(entry)
        else:
            started.append(entry)

    pool = upcoming or started
    if not pool:
        return None
    return min(pool, key=lambda entry: (entry[0], entry[1]))[2]


def build_next_meeting_timer(meeting: MeetingRef, now: datetime) -> NextMeetingTimer | None:
    """Minutes/seconds left until start, clamped at zero."""
    if meeting.start is None:
        return None
    remaining = max(0, int((meeting.start - now).total_seconds()))
    return NextMeetingTimer(
        meeting_id=meeting.id,
        title=meeting.title,
        start=meeting.start,
        minutes_left=remaining // 60,
        seconds_left=remaining % 60,
    )
