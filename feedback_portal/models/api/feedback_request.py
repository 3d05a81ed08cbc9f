# feedback_portal/models/api/feedback_request.py
"""
Feedback API request models.
Used by routes for input validation.
"""

from pydantic import BaseModel, Field


class FeedbackViewRequest(BaseModel):
    """Request for opening or closing the feedback view."""

    open: bool = Field(..., description="Whether the feedback view is visible")


class AnswerRequest(BaseModel):
    """One rated question."""

    question_id: int = Field(..., description="Question ID")
    rating: int = Field(..., ge=0, le=5, description="Rating 1-5, 0 means not rated")
    notes: str = Field(default="", max_length=2000, description="Optional notes")


class SubmitFeedbackRequest(BaseModel):
    """Request for submitting feedback for the active meeting."""

    answers: list[AnswerRequest] = Field(..., description="One answer per question")
