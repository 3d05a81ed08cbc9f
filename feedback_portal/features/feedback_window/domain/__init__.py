"""Domain models and errors for the feedback window feature."""

from .errors import (  # noqa: F401
    AlreadySubmitted,
    FeedbackError,
    IncompleteAnswers,
    InvalidSchedule,
    NoActiveMeeting,
    ReconcileUnavailable,
    SubmitError,
)
from .models import (  # noqa: F401
    Answer,
    CountdownStep,
    MeetingId,
    MeetingRef,
    NextMeetingTimer,
    Question,
    SessionSnapshot,
    SubmissionRecord,
    WindowPhase,
)
