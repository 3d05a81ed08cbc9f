# feedback_portal/models/api/feedback_response.py
"""
Feedback API response models.
Used by routes for output formatting.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from feedback_portal.features.feedback_window.domain.models import (
    MeetingRef,
    Question,
    SessionSnapshot,
    SubmissionRecord,
)


class MeetingResponse(BaseModel):
    """Response model for the tracked meeting."""

    id: int | str = Field(..., description="Meeting ID")
    title: str = Field(..., description="Meeting title")
    start: datetime | None = Field(None, description="Meeting start instant")
    end: datetime | None = Field(None, description="Meeting end instant")
    time_defaulted: bool = Field(default=False, description="Start time missing, midnight assumed")

    @classmethod
    def from_domain(cls, meeting: MeetingRef) -> "MeetingResponse":
        return cls(
            id=meeting.id,
            title=meeting.title,
            start=meeting.start,
            end=meeting.end,
            time_defaulted=meeting.time_defaulted,
        )


class QuestionResponse(BaseModel):
    """Response model for a feedback question."""

    id: int = Field(..., description="Question ID")
    text: str = Field(..., description="Question text")


class CountdownResponse(BaseModel):
    """Current countdown frame."""

    value: int = Field(..., description="Number shown (3, 2, 1)")
    progress: int = Field(..., description="Progress ramp 0-100")
    context: str | None = Field(None, description="reveal or submit")


class FeedbackStatusResponse(BaseModel):
    """Response for the feedback window status."""

    meeting: MeetingResponse | None = Field(None, description="Tracked meeting")
    phase: str | None = Field(None, description="Far, Imminent, Active or Expired")
    minutes_until_start: int | None = Field(None, description="Whole minutes until start")
    questions_visible: bool = Field(..., description="Whether questions are offered")
    questions: list[QuestionResponse] = Field(default_factory=list, description="Visible questions")
    countdown: CountdownResponse | None = Field(None, description="Running countdown")
    responded_meeting_ids: list[int | str] = Field(
        default_factory=list, description="Meetings the user already gave feedback for"
    )
    already_submitted: bool = Field(default=False, description="Feedback for the active meeting exists")

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "FeedbackStatusResponse":
        countdown = None
        if snapshot.countdown is not None:
            countdown = CountdownResponse(
                value=snapshot.countdown.value,
                progress=snapshot.countdown.progress,
                context=snapshot.countdown_context,
            )
        return cls(
            meeting=MeetingResponse.from_domain(snapshot.tracked_meeting)
            if snapshot.tracked_meeting
            else None,
            phase=snapshot.phase.value if snapshot.phase else None,
            minutes_until_start=snapshot.minutes_until_start,
            questions_visible=snapshot.questions_visible,
            questions=[_question(q) for q in snapshot.questions],
            countdown=countdown,
            responded_meeting_ids=list(snapshot.responded),
            already_submitted=snapshot.already_submitted,
        )


def _question(question: Question) -> QuestionResponse:
    return QuestionResponse(id=question.id, text=question.text)


class SubmissionRecordResponse(BaseModel):
    """One accepted answer."""

    question_id: int
    rating: int
    notes: str
    submitted_at: datetime


class SubmitFeedbackResponse(BaseModel):
    """Response for a completed submission."""

    submitted: bool = Field(..., description="Whether the countdown completed and all answers were accepted")
    meeting_id: int | str | None = Field(None, description="Meeting the answers belong to")
    records: list[SubmissionRecordResponse] = Field(default_factory=list)

    @classmethod
    def from_records(cls, records: list[SubmissionRecord]) -> "SubmitFeedbackResponse":
        return cls(
            submitted=True,
            meeting_id=records[0].meeting_id if records else None,
            records=[
                SubmissionRecordResponse(
                    question_id=r.question_id,
                    rating=r.rating,
                    notes=r.notes,
                    submitted_at=r.submitted_at,
                )
                for r in records
            ],
        )
