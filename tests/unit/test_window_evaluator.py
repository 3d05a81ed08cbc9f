"""
Tests for meeting window classification and schedule normalization.
"""

from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from feedback_portal.features.feedback_window.domain.errors import InvalidSchedule
from feedback_portal.features.feedback_window.domain.models import MeetingRef, WindowPhase
from feedback_portal.features.feedback_window.services.window_evaluator import (
    classify,
    evaluate,
    minutes_until_start,
    normalize_instant,
    wake_time,
)

START = datetime(2024, 5, 1, 10, 0, tzinfo=UTC)
MEETING = MeetingRef(id=7, title="Planning", start=START)


@pytest.mark.parametrize(
    "mins, expected",
    [
        (60, WindowPhase.FAR),
        (6, WindowPhase.FAR),
        (5, WindowPhase.ACTIVE),
        (0, WindowPhase.ACTIVE),
        (-60, WindowPhase.ACTIVE),
        (-61, WindowPhase.EXPIRED),
    ],
)
def test_classify_boundaries(mins, expected):
    assert classify(mins) is expected


def test_meeting_day_scenario():
    """Meeting at 10:00: closed at 09:54, open 09:55 through 10:59, gone at 11:01."""
    assert evaluate(START.replace(hour=9, minute=54), MEETING) is WindowPhase.FAR
    assert evaluate(START.replace(hour=9, minute=55), MEETING) is WindowPhase.ACTIVE
    assert evaluate(START.replace(hour=10, minute=59), MEETING) is WindowPhase.ACTIVE
    assert evaluate(START.replace(hour=11, minute=1), MEETING) is WindowPhase.EXPIRED


def test_minutes_are_floored():
    assert minutes_until_start(START - timedelta(minutes=5, seconds=30), START) == 5
    assert minutes_until_start(START + timedelta(seconds=1), START) == -1
    assert minutes_until_start(START + timedelta(minutes=60, seconds=59), START) == -61


def test_just_inside_grace_is_still_active():
    now = START + timedelta(minutes=59, seconds=59)
    assert evaluate(now, MEETING) is WindowPhase.ACTIVE


def test_naive_now_is_read_in_meeting_timezone():
    assert minutes_until_start(datetime(2024, 5, 1, 9, 30), START) == 30


def test_custom_window():
    assert evaluate(START - timedelta(minutes=10), MEETING, lead_minutes=10) is WindowPhase.ACTIVE
    assert (
        evaluate(START + timedelta(minutes=20), MEETING, grace_minutes=15) is WindowPhase.EXPIRED
    )


def test_meeting_without_start_is_far():
    meeting = MeetingRef(id=1, title="Broken", start=None, schedule_error="bad date")
    assert evaluate(START, meeting) is WindowPhase.FAR
    assert wake_time(meeting) is None


def test_wake_time_is_lead_before_start():
    assert wake_time(MEETING) == START - timedelta(minutes=5)


def test_normalize_plain_date():
    assert normalize_instant("2024-05-01", "10:00", UTC) == START


def test_normalize_iso_datetime_ignores_its_time_part():
    assert normalize_instant("2024-05-01T00:00:00.000Z", "10:00", UTC) == START
    assert normalize_instant("2024-05-01 23:59:59", "10:00", UTC) == START


def test_normalize_accepts_seconds_and_date_objects():
    assert normalize_instant(date(2024, 5, 1), "10:00:00", UTC) == START
    assert normalize_instant(datetime(2024, 5, 1, 18, 30), "10:00", UTC) == START


def test_normalize_missing_time_defaults_to_midnight():
    assert normalize_instant("2024-05-01", None, UTC) == datetime(2024, 5, 1, tzinfo=UTC)
    assert normalize_instant("2024-05-01", "  ", UTC) == datetime(2024, 5, 1, tzinfo=UTC)


def test_normalize_uses_portal_timezone():
    tz = ZoneInfo("Europe/Berlin")
    instant = normalize_instant("2024-05-01", "10:00", tz)

    assert instant.tzinfo is tz
    assert instant.astimezone(UTC) == datetime(2024, 5, 1, 8, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    "date_value, time_value",
    [
        ("not-a-date", "10:00"),
        ("", "10:00"),
        ("2024-13-40", "10:00"),
        ("2024-05-01", "25:99"),
        ("2024-05-01", "ten"),
        (None, "10:00"),
        ("2024-05-01", 1000),
    ],
)
def test_normalize_rejects_garbage(date_value, time_value):
    with pytest.raises(InvalidSchedule) as exc_info:
        normalize_instant(date_value, time_value, UTC)

    assert exc_info.value.date_value == date_value
