"""Exception taxonomy for the feedback window feature."""

from feedback_portal.features.feedback_window.domain.models import MeetingId


class FeedbackError(Exception):
    """Base exception for feedback scheduling and submission."""

    def __init__(self, message: str, meeting_id: MeetingId | None = None):
        super().__init__(message)
        self.meeting_id = meeting_id


class InvalidSchedule(FeedbackError):
    """Meeting date/time could not be normalized into an instant."""

    def __init__(self, message: str, date_value=None, time_value=None, meeting_id=None):
        super().__init__(message, meeting_id=meeting_id)
        self.date_value = date_value
        self.time_value = time_value


class IncompleteAnswers(FeedbackError):
    """At least one question is unrated. Raised before any network call."""

    def __init__(self, message: str, unrated_question_ids: list[int], meeting_id=None):
        super().__init__(message, meeting_id=meeting_id)
        self.unrated_question_ids = unrated_question_ids


class SubmitError(FeedbackError):
    """One or more per-question submit calls failed."""

    def __init__(
        self,
        message: str,
        meeting_id: MeetingId | None = None,
        succeeded: list[int] | None = None,
        failed: dict[int, str] | None = None,
    ):
        super().__init__(message, meeting_id=meeting_id)
        self.succeeded = succeeded or []
        self.failed = failed or {}

    @property
    def retryable(self) -> bool:
        return bool(self.failed)


class ReconcileUnavailable(FeedbackError):
    """The authoritative responded list could not be fetched."""


class NoActiveMeeting(FeedbackError):
    """Submit was requested while no meeting accepts feedback."""


class AlreadySubmitted(FeedbackError):
    """Feedback for this meeting was already given."""
