"""
Feedback window routes.

Thin HTTP layer over the process-wide FeedbackSession held on app.state.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from feedback_portal.features.feedback_window.domain.errors import (
    AlreadySubmitted,
    IncompleteAnswers,
    NoActiveMeeting,
    SubmitError,
)
from feedback_portal.features.feedback_window.domain.models import Answer
from feedback_portal.features.feedback_window.services.session import FeedbackSession
from feedback_portal.infrastructure.observability.logging import get_logger
from feedback_portal.models.api.feedback_request import FeedbackViewRequest, SubmitFeedbackRequest
from feedback_portal.models.api.feedback_response import (
    FeedbackStatusResponse,
    SubmitFeedbackResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/feedback", tags=["feedback"])


def get_feedback_session(request: Request) -> FeedbackSession:
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Feedback session not started",
        )
    return session


@router.get("/status", response_model=FeedbackStatusResponse)
async def get_feedback_status(session: FeedbackSession = Depends(get_feedback_session)):
    """Tracked meeting, its phase, and the questions if they are offered."""
    return FeedbackStatusResponse.from_snapshot(session.snapshot())


@router.post("/view", response_model=FeedbackStatusResponse)
async def set_feedback_view(
    request: FeedbackViewRequest, session: FeedbackSession = Depends(get_feedback_session)
):
    """Open or close the feedback view. Open views are polled faster."""
    if request.open:
        snapshot = await session.open_view()
    else:
        snapshot = session.close_view()
    return FeedbackStatusResponse.from_snapshot(snapshot)


@router.post("/submit", response_model=SubmitFeedbackResponse)
async def submit_feedback(
    request: SubmitFeedbackRequest, session: FeedbackSession = Depends(get_feedback_session)
):
    """Submit answers for the active meeting."""
    if session.submit_in_flight:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Submit already in progress")

    answers = [
        Answer(question_id=a.question_id, rating=a.rating, notes=a.notes) for a in request.answers
    ]

    try:
        records = await session.submit(answers)

    except (NoActiveMeeting, AlreadySubmitted) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    except IncompleteAnswers as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "unrated_question_ids": e.unrated_question_ids},
        )

    except SubmitError as e:
        logger.warning(
            "Feedback submission partially failed",
            meeting_id=e.meeting_id,
            succeeded=e.succeeded,
            failed=list(e.failed),
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": str(e),
                "meeting_id": e.meeting_id,
                "succeeded_question_ids": e.succeeded,
                "failed_question_ids": sorted(e.failed),
                "retryable": e.retryable,
            },
        )

    if records is None:
        return SubmitFeedbackResponse(submitted=False)
    return SubmitFeedbackResponse.from_records(records)
