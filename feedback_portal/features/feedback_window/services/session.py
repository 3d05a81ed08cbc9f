"""
Feedback session for one signed-in user.

Wires the meeting feed into the scheduler, runs the reveal countdown when a
meeting opens for feedback, loads its questions, and routes submissions
through the reconciler. Every dashboard reads the same session instead of
keeping its own timers and responded lists.
"""

import asyncio
from datetime import tzinfo

from feedback_portal.config import settings
from feedback_portal.features.feedback_window.domain.errors import AlreadySubmitted, NoActiveMeeting
from feedback_portal.features.feedback_window.domain.models import (
    Answer,
    CountdownStep,
    MeetingRef,
    Question,
    SessionSnapshot,
    SubmissionRecord,
    WindowPhase,
    meeting_id_sort_key,
)
from feedback_portal.features.feedback_window.services.clock import SystemClock, system_clock
from feedback_portal.features.feedback_window.services.countdown import (
    CountdownPresenter,
    CueListener,
)
from feedback_portal.features.feedback_window.services.meeting_feed import normalize_feed
from feedback_portal.features.feedback_window.services.reconciler import (
    SubmissionReconciler,
    validate_answers,
)
from feedback_portal.features.feedback_window.services.scheduler import FeedbackScheduler
from feedback_portal.features.feedback_window.services.state_store import FeedbackStateStore
from feedback_portal.features.feedback_window.services.window_evaluator import (
    GRACE_MINUTES,
    LEAD_MINUTES,
    evaluate,
)
from feedback_portal.infrastructure.observability.logging import get_logger
from feedback_portal.services.infrastructure.persistence import build_persistence
from feedback_portal.services.portal_client import PortalAPIError, PortalClient

logger = get_logger(__name__)

REVEAL = "reveal"
SUBMIT = "submit"


class FeedbackSession:
    """Owns the scheduler, countdown and reconciler for one user."""

    def __init__(
        self,
        client: PortalClient,
        store: FeedbackStateStore,
        *,
        tz: tzinfo,
        clock=system_clock,
        user_id: str | None = None,
        department_id: int | None = None,
        lead_minutes: int = LEAD_MINUTES,
        grace_minutes: int = GRACE_MINUTES,
        active_poll_seconds: float = 10.0,
        idle_poll_seconds: float = 60.0,
        responded_poll_seconds: float = 60.0,
        countdown_steps: int = 3,
        countdown_step_seconds: float = 1.0,
        on_cue: CueListener | None = None,
    ):
        self.client = client
        self.store = store
        self.tz = tz
        self.clock = clock
        self.lead_minutes = lead_minutes
        self.grace_minutes = grace_minutes
        self.responded_poll_seconds = responded_poll_seconds
        self.countdown_steps = countdown_steps

        self.reconciler = SubmissionReconciler(
            client, store, user_id=user_id, department_id=department_id, clock=clock
        )
        self.scheduler = FeedbackScheduler(
            clock=clock,
            store=store,
            on_active=self._on_meeting_active,
            lead_minutes=lead_minutes,
            grace_minutes=grace_minutes,
            active_poll_seconds=active_poll_seconds,
            idle_poll_seconds=idle_poll_seconds,
        )
        self.countdown = CountdownPresenter(
            clock, step_seconds=countdown_step_seconds, on_cue=on_cue
        )

        self._meetings: list[MeetingRef] = []
        self._revealed: set = set()
        self._active_meeting: MeetingRef | None = None
        self._questions: list[Question] = []
        self._questions_visible = False
        self._already_submitted = False
        self._countdown_context: str | None = None
        self._submit_in_flight = False
        self._activation_in_flight = False
        self._sync_task: asyncio.Task | None = None
        self._closed = False

    @classmethod
    def from_settings(cls, client: PortalClient | None = None, store: FeedbackStateStore | None = None):
        """Build a session from application settings."""
        tz = settings.portal_timezone()
        poll = settings.get_poll_config()
        return cls(
            client or PortalClient(),
            store or FeedbackStateStore(build_persistence()),
            tz=tz,
            clock=SystemClock(tz),
            user_id=settings.PORTAL_USER_ID,
            department_id=settings.PORTAL_DEPARTMENT_ID,
            lead_minutes=settings.FEEDBACK_LEAD_MINUTES,
            grace_minutes=settings.FEEDBACK_GRACE_MINUTES,
            active_poll_seconds=poll["active_seconds"],
            idle_poll_seconds=poll["idle_seconds"],
            responded_poll_seconds=settings.RESPONDED_POLL_SECONDS,
            countdown_steps=settings.COUNTDOWN_STEPS,
            countdown_step_seconds=settings.COUNTDOWN_STEP_SECONDS,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load persisted state, fetch the feed and start the background loops."""
        if self._closed:
            raise RuntimeError("Session is closed")

        await self.reconciler.load()
        self._revealed = set(await self.store.load_revealed())
        await self.refresh_meetings()
        self.scheduler.start()
        if self._sync_task is None or self._sync_task.done():
            self._sync_task = asyncio.create_task(self._sync_loop(), name="feedback-sync")
        logger.info("Feedback session started", meetings=len(self._meetings))

    async def close(self) -> None:
        """Tear down every timer; late results are discarded."""
        if self._closed:
            return
        self._closed = True

        self.countdown.cancel()
        self.reconciler.abandon()
        await self.scheduler.close()

        if self._sync_task is not None and self._sync_task is not asyncio.current_task():
            self._sync_task.cancel()
            await asyncio.gather(self._sync_task, return_exceptions=True)
        self._questions_visible = False
        logger.info("Feedback session closed")

    async def logout(self) -> None:
        """Close and drop every persisted key for this user."""
        await self.close()
        self.reconciler.reset()
        self._revealed.clear()
        await self.store.clear()

    async def _sync_loop(self) -> None:
        while not self._closed:
            await self.clock.sleep(self.responded_poll_seconds)
            try:
                await self.reconciler.refresh()
                await self.refresh_meetings()
            except Exception as e:
                logger.error("Error in feedback sync loop", error=str(e), error_type=type(e).__name__)

    # ------------------------------------------------------------------
    # Meetings
    # ------------------------------------------------------------------

    async def refresh_meetings(self) -> MeetingRef | None:
        """Re-fetch the feed and hand it to the scheduler. Feed errors keep the old list."""
        try:
            payload = await self.client.fetch_meetings()
        except PortalAPIError as e:
            logger.warning("Meeting feed unavailable, keeping previous list", error=str(e))
            return self.scheduler.tracked_meeting

        if self._closed:
            return None

        self._meetings = normalize_feed(payload, self.tz)
        known_ids = {meeting.id for meeting in self._meetings}
        if self._active_meeting is not None and self._active_meeting.id not in known_ids:
            logger.info("Active meeting left the feed", meeting_id=self._active_meeting.id)
            self._clear_active()

        return self.scheduler.update_meetings(self._meetings, exclude=self.reconciler.responded)

    def _clear_active(self) -> None:
        self._active_meeting = None
        self._questions = []
        self._questions_visible = False
        self._already_submitted = False

    def _phase_of(self, meeting: MeetingRef) -> WindowPhase:
        return evaluate(
            self.clock.now(),
            meeting,
            lead_minutes=self.lead_minutes,
            grace_minutes=self.grace_minutes,
        )

    # ------------------------------------------------------------------
    # Activation and reveal
    # ------------------------------------------------------------------

    async def _on_meeting_active(self, meeting: MeetingRef) -> None:
        if self._closed:
            return
        if self.reconciler.has_responded(meeting.id):
            logger.info("Feedback already given for meeting, not showing questions", meeting_id=meeting.id)
            return

        self._clear_active()
        self._active_meeting = meeting
        await self._load_and_reveal(meeting)

    async def _load_and_reveal(self, meeting: MeetingRef) -> None:
        if self._activation_in_flight:
            return
        self._activation_in_flight = True
        try:
            if not await self._load_questions(meeting):
                return
            if meeting.id in self._revealed:
                self._questions_visible = True
                return

            completed = await self._run_countdown(REVEAL)
            if not completed or self._closed or self._active_meeting is not meeting:
                return

            self._revealed.add(meeting.id)
            await self.store.save_revealed(self._revealed)
            self._questions_visible = True
            logger.info("Feedback questions revealed", meeting_id=meeting.id, questions=len(self._questions))
        finally:
            self._activation_in_flight = False

    async def _load_questions(self, meeting: MeetingRef) -> bool:
        try:
            questions = await self.client.fetch_questions(meeting.id)
        except PortalAPIError as e:
            logger.warning("Failed to load feedback questions", meeting_id=meeting.id, error=str(e))
            return False

        try:
            existing = await self.client.fetch_my_meeting_feedback(meeting.id)
        except PortalAPIError as e:
            logger.warning("Could not check existing feedback", meeting_id=meeting.id, error=str(e))
            existing = []

        if self._closed or self._active_meeting is not meeting:
            return False

        if existing:
            logger.info("Server already has feedback from this user", meeting_id=meeting.id)
            self._already_submitted = True
            await self.reconciler.mark_responded(meeting.id)
            return False

        self._questions = questions
        return bool(questions)

    async def _run_countdown(self, context: str) -> bool:
        self._countdown_context = context
        try:
            return await self.countdown.run(self.countdown_steps)
        finally:
            self._countdown_context = None

    async def open_view(self) -> SessionSnapshot:
        """
        The user opened the feedback view: poll faster, and show questions
        directly if this meeting was already revealed.
        """
        self.scheduler.feedback_open = True
        meeting = self._active_meeting
        if (
            meeting is not None
            and not self._questions_visible
            and not self._already_submitted
            and not self.countdown.running
            and self._phase_of(meeting) is WindowPhase.ACTIVE
            and not self.reconciler.has_responded(meeting.id)
        ):
            await self._load_and_reveal(meeting)
        return self.snapshot()

    def close_view(self) -> SessionSnapshot:
        self.scheduler.feedback_open = False
        return self.snapshot()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @property
    def submit_in_flight(self) -> bool:
        return self._submit_in_flight or self.reconciler.submit_in_flight

    async def submit(self, answers: list[Answer]) -> list[SubmissionRecord] | None:
        """
        Submit answers for the active meeting after the 3-2-1 countdown.

        Every revealed question needs a rated answer.

        Returns:
            Accepted records, or None if ignored (already submitting) or the
            countdown was cancelled

        Raises:
            NoActiveMeeting: If no meeting currently accepts feedback or its
                questions are not shown yet
            AlreadySubmitted: If feedback for the meeting was already given
            IncompleteAnswers: If any question is unrated or unknown
            SubmitError: If any question failed to submit
        """
        if self._submit_in_flight:
            logger.warning("Submit already in progress, ignoring duplicate")
            return None

        meeting = self._active_meeting
        if meeting is None or not self._phase_of(meeting).accepts_feedback:
            raise NoActiveMeeting("No meeting is open for feedback")
        if self._already_submitted or self.reconciler.has_responded(meeting.id):
            raise AlreadySubmitted("Feedback already submitted for this meeting", meeting_id=meeting.id)
        if not self._questions_visible or self.countdown.running:
            raise NoActiveMeeting("Feedback questions are not shown yet", meeting_id=meeting.id)
        validate_answers(meeting.id, answers, [question.id for question in self._questions])

        self._submit_in_flight = True
        try:
            if not await self._run_countdown(SUBMIT):
                return None

            records = await self.reconciler.submit(meeting.id, answers)
            if records is None or self._closed:
                return records

            self._questions_visible = False
            self._questions = []
            self._already_submitted = True
            self.scheduler.update_meetings(self._meetings, exclude=self.reconciler.responded)
            return records
        finally:
            self._submit_in_flight = False

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        """Current state for the API layer."""
        active = self._active_meeting
        visible = (
            self._questions_visible
            and active is not None
            and self._phase_of(active) is WindowPhase.ACTIVE
        )
        tracked = active if visible else self.scheduler.tracked_meeting or active

        if tracked is None:
            phase = None
            mins = None
        elif tracked is self.scheduler.tracked_meeting:
            phase = self.scheduler.current_phase()
            mins = self.scheduler.minutes_until_tracked_start()
        else:
            phase = self._phase_of(tracked)
            mins = None

        step: CountdownStep | None = self.countdown.current
        return SessionSnapshot(
            tracked_meeting=tracked,
            phase=phase,
            minutes_until_start=mins,
            questions_visible=visible,
            questions=list(self._questions) if visible else [],
            countdown=step,
            countdown_context=self._countdown_context if step is not None else None,
            responded=sorted(self.reconciler.responded, key=meeting_id_sort_key),
            already_submitted=self._already_submitted,
        )
