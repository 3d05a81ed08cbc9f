"""
Feedback availability scheduler.

Tracks the single "next meeting" and makes sure the activation listener is
told, exactly once per meeting, when that meeting enters its feedback
window. Two mechanisms feed the same re-evaluation:

    - a one-shot wakeup armed for ``start - lead``; low latency, but sleeps
      are unreliable across host suspend
    - a periodic poll, which is the source of truth

``track``/``untrack`` are the only ways to mutate the handle table.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from feedback_portal.features.feedback_window.domain.models import (
    MeetingId,
    MeetingRef,
    WindowPhase,
)
from feedback_portal.features.feedback_window.services.clock import system_clock
from feedback_portal.features.feedback_window.services.meeting_feed import (
    build_next_meeting_timer,
    select_next_meeting,
)
from feedback_portal.features.feedback_window.services.state_store import FeedbackStateStore
from feedback_portal.features.feedback_window.services.window_evaluator import (
    GRACE_MINUTES,
    LEAD_MINUTES,
    evaluate,
    minutes_until_start,
    wake_time,
)
from feedback_portal.infrastructure.observability.logging import get_logger, log_phase_change

logger = get_logger(__name__)

ActivationListener = Callable[[MeetingRef], Awaitable[None]]

DEFAULT_ACTIVE_POLL_SECONDS = 10.0
DEFAULT_IDLE_POLL_SECONDS = 60.0


@dataclass(slots=True, eq=False)
class ScheduleHandle:
    """A cancellable one-shot wakeup bound to one meeting."""

    meeting_id: MeetingId
    wake_at: datetime
    _task: asyncio.Task | None = field(default=None, repr=False)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()


class FeedbackScheduler:
    """
    Owns every timer of the feedback window.

    Only one meeting is tracked at a time. Switching to another meeting
    releases the previous one first, so two wakeups never race for the same
    slot.
    """

    def __init__(
        self,
        *,
        clock=system_clock,
        store: FeedbackStateStore | None = None,
        on_active: ActivationListener | None = None,
        lead_minutes: int = LEAD_MINUTES,
        grace_minutes: int = GRACE_MINUTES,
        active_poll_seconds: float = DEFAULT_ACTIVE_POLL_SECONDS,
        idle_poll_seconds: float = DEFAULT_IDLE_POLL_SECONDS,
    ):
        self.clock = clock
        self.store = store
        self.on_active = on_active
        self.lead_minutes = lead_minutes
        self.grace_minutes = grace_minutes
        self.active_poll_seconds = active_poll_seconds
        self.idle_poll_seconds = idle_poll_seconds
        self.feedback_open = False

        self._handles: dict[MeetingId, ScheduleHandle] = {}
        self._meetings: list[MeetingRef] = []
        self._exclude: frozenset[MeetingId] = frozenset()
        self._suppressed: set[MeetingId] = set()
        self._tracked: MeetingRef | None = None
        self._notified: set[MeetingId] = set()
        self._last_phase: dict[MeetingId, WindowPhase] = {}
        self._tasks: set[asyncio.Task] = set()
        self._tick_in_flight = False
        self._poll_task: asyncio.Task | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def tracked_meeting(self) -> MeetingRef | None:
        return self._tracked

    @property
    def poll_interval(self) -> float:
        return self.active_poll_seconds if self.feedback_open else self.idle_poll_seconds

    @property
    def closed(self) -> bool:
        return self._closed

    def live_handles(self) -> list[ScheduleHandle]:
        return [handle for handle in self._handles.values() if handle.active]

    def current_phase(self) -> WindowPhase | None:
        """
        Phase of the tracked meeting.

        A FAR meeting whose wakeup is armed is reported as IMMINENT: it is
        the next meeting and the scheduler is waiting on it.
        """
        if self._tracked is None:
            return None
        phase = self._evaluate(self.clock.now(), self._tracked)
        handle = self._handles.get(self._tracked.id)
        if phase is WindowPhase.FAR and handle is not None and handle.active:
            return WindowPhase.IMMINENT
        return phase

    def minutes_until_tracked_start(self) -> int | None:
        if self._tracked is None or self._tracked.start is None:
            return None
        return minutes_until_start(self.clock.now(), self._tracked.start)

    def _evaluate(self, now: datetime, meeting: MeetingRef) -> WindowPhase:
        phase = evaluate(
            now, meeting, lead_minutes=self.lead_minutes, grace_minutes=self.grace_minutes
        )
        previous = self._last_phase.get(meeting.id)
        if previous is not phase:
            self._last_phase[meeting.id] = phase
            mins = minutes_until_start(now, meeting.start) if meeting.start else None
            log_phase_change(meeting.id, previous.value if previous else None, phase.value, mins)
        return phase

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track(self, meeting: MeetingRef) -> ScheduleHandle | None:
        """
        Start tracking a meeting and arm its wakeup.

        Returns:
            ScheduleHandle for the armed wakeup, or None when the meeting
            has no valid start or is already expired
        """
        if self._closed:
            raise RuntimeError("Scheduler is closed")

        if self._tracked is not None and self._tracked.id != meeting.id:
            self._release(self._tracked.id)
        self._cancel_handle(meeting.id)
        self._suppressed.discard(meeting.id)

        if not meeting.is_trackable:
            logger.warning(
                "Meeting cannot be tracked without a valid start",
                meeting_id=meeting.id,
                schedule_error=meeting.schedule_error,
            )
            self._tracked = None
            return None

        now = self.clock.now()
        phase = self._evaluate(now, meeting)
        if phase is WindowPhase.EXPIRED:
            logger.info("Meeting feedback window already closed", meeting_id=meeting.id)
            self._tracked = None
            return None

        self._tracked = meeting
        wake_at = wake_time(meeting, lead_minutes=self.lead_minutes) if phase is WindowPhase.FAR else now
        delay = max(0.0, (wake_at - now).total_seconds())

        handle = ScheduleHandle(meeting_id=meeting.id, wake_at=wake_at)
        handle._task = self._spawn(self._fire(handle, delay), name=f"feedback-wakeup-{meeting.id}")
        self._handles[meeting.id] = handle

        logger.info(
            "Tracking meeting for feedback",
            meeting_id=meeting.id,
            phase=phase.value,
            wake_at=wake_at.isoformat(),
            delay_seconds=round(delay, 1),
        )
        return handle

    def untrack(self, meeting_id: MeetingId) -> None:
        """Cancel the meeting's wakeup and keep it out of subsequent polls."""
        self._release(meeting_id)
        self._suppressed.add(meeting_id)
        logger.info("Meeting untracked", meeting_id=meeting_id)

    def _release(self, meeting_id: MeetingId) -> None:
        self._cancel_handle(meeting_id)
        if self._tracked is not None and self._tracked.id == meeting_id:
            self._tracked = None

    def _cancel_handle(self, meeting_id: MeetingId) -> None:
        handle = self._handles.pop(meeting_id, None)
        if handle is not None:
            handle.cancel()

    def update_meetings(
        self, meetings: Iterable[MeetingRef], *, exclude: Iterable[MeetingId] = ()
    ) -> MeetingRef | None:
        """
        Replace the known meeting list and re-select the tracked meeting.

        The previous meeting is released before the new one is tracked.
        """
        self._meetings = list(meetings)
        self._exclude = frozenset(exclude)
        # suppression only lasts while the meeting stays in the feed
        self._suppressed &= {meeting.id for meeting in self._meetings}
        return self._reselect(self.clock.now())

    def _reselect(self, now: datetime) -> MeetingRef | None:
        next_meeting = select_next_meeting(
            self._meetings,
            now,
            exclude=self._exclude | self._suppressed,
            lead_minutes=self.lead_minutes,
            grace_minutes=self.grace_minutes,
        )

        if next_meeting is None:
            if self._tracked is not None:
                self._release(self._tracked.id)
            return None

        if next_meeting == self._tracked:
            return self._tracked

        self.track(next_meeting)
        return self._tracked

    # ------------------------------------------------------------------
    # Wakeups and polling
    # ------------------------------------------------------------------

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fire(self, handle: ScheduleHandle, delay: float) -> None:
        await self.clock.sleep(delay)
        if self._handles.get(handle.meeting_id) is not handle:
            return
        del self._handles[handle.meeting_id]
        await self._reevaluate(handle.meeting_id, source="wakeup")

    async def _reevaluate(self, meeting_id: MeetingId, *, source: str) -> WindowPhase | None:
        meeting = self._tracked
        if self._closed or meeting is None or meeting.id != meeting_id:
            return None

        now = self.clock.now()
        phase = self._evaluate(now, meeting)

        if phase is WindowPhase.ACTIVE:
            await self._notify(meeting, source)
        elif phase is WindowPhase.EXPIRED:
            self._release(meeting.id)
            self._reselect(now)
        elif source == "wakeup" and meeting.id not in self._handles:
            # Woke early (clock adjusted): arm again
            self.track(meeting)
        return phase

    async def _notify(self, meeting: MeetingRef, source: str) -> None:
        if self._closed or meeting.id in self._notified:
            return
        self._notified.add(meeting.id)
        logger.info("Feedback window open", meeting_id=meeting.id, title=meeting.title, source=source)

        if self.on_active is None:
            return
        try:
            await self.on_active(meeting)
        except Exception as e:
            logger.error(
                "Feedback activation listener failed",
                meeting_id=meeting.id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def tick(self) -> WindowPhase | None:
        """
        Re-evaluate the tracked meeting. Invoked by the poll loop.

        A tick arriving while another is still running is ignored.
        """
        if self._closed:
            return None
        if self._tick_in_flight:
            logger.debug("Feedback tick already in flight, skipping")
            return None

        self._tick_in_flight = True
        try:
            now = self.clock.now()
            if self._tracked is None:
                self._reselect(now)

            phase = None
            if self._tracked is not None:
                phase = await self._reevaluate(self._tracked.id, source="poll")

            await self._persist_timer()
            return phase
        finally:
            self._tick_in_flight = False

    async def _persist_timer(self) -> None:
        if self.store is None or self._closed:
            return
        if self._tracked is None:
            await self.store.clear_next_meeting_timer()
            return
        timer = build_next_meeting_timer(self._tracked, self.clock.now())
        if timer is not None:
            await self.store.save_next_meeting_timer(timer)

    def start(self) -> None:
        """Start the backstop poll loop. Requires a running event loop."""
        if self._closed:
            raise RuntimeError("Scheduler is closed")
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop(), name="feedback-poll")

    async def _poll_loop(self) -> None:
        logger.info(
            "Starting feedback poll loop",
            active_poll_seconds=self.active_poll_seconds,
            idle_poll_seconds=self.idle_poll_seconds,
        )
        while not self._closed:
            try:
                await self.tick()
            except Exception as e:
                logger.error(
                    "Error in feedback poll loop", error=str(e), error_type=type(e).__name__
                )
            await self.clock.sleep(self.poll_interval)

    async def close(self) -> None:
        """Cancel the poll loop and every outstanding wakeup."""
        if self._closed:
            return
        self._closed = True

        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._tracked = None

        tasks = list(self._tasks)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
        current = asyncio.current_task()
        tasks = [task for task in tasks if task is not current and not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Feedback scheduler closed", cancelled_tasks=len(tasks))
