"""
Submission and "already responded" reconciliation.

The set of meetings a user gave feedback for has two sources: the local
record written optimistically on submit, and the server's list fetched
periodically. Every consumer reads ``responded``, which is always
``local ∪ remote`` and is re-persisted after each merge.
"""

import asyncio
from collections.abc import Iterable

from feedback_portal.features.feedback_window.domain.errors import (
    AlreadySubmitted,
    IncompleteAnswers,
    ReconcileUnavailable,
    SubmitError,
)
from feedback_portal.features.feedback_window.domain.models import (
    Answer,
    MeetingId,
    SubmissionRecord,
    coerce_meeting_id,
)
from feedback_portal.features.feedback_window.services.clock import system_clock
from feedback_portal.features.feedback_window.services.state_store import FeedbackStateStore
from feedback_portal.infrastructure.observability.logging import get_logger
from feedback_portal.services.portal_client import PortalAPIError, PortalClient

logger = get_logger(__name__)


def reconcile(local: Iterable[MeetingId], remote: Iterable[MeetingId]) -> frozenset[MeetingId]:
    """Union of both sources. Idempotent and order-independent."""
    return frozenset(coerce_meeting_id(value) for value in local) | frozenset(
        coerce_meeting_id(value) for value in remote
    )


def validate_answers(
    meeting_id: MeetingId, answers: list[Answer], question_ids: Iterable[int] | None = None
) -> None:
    """
    Check answers before anything is sent.

    When ``question_ids`` is given, every one of those questions needs a
    rated answer and answers for other questions are refused.

    Raises:
        IncompleteAnswers: If there are no answers, a rating is zero, a
            question has no answer or an answer names an unknown question
    """
    if not answers:
        raise IncompleteAnswers("No answers to submit", unrated_question_ids=[], meeting_id=meeting_id)

    rated = {answer.question_id for answer in answers if answer.rating}
    unrated = [answer.question_id for answer in answers if not answer.rating]

    if question_ids is not None:
        expected = list(question_ids)
        unknown = sorted({answer.question_id for answer in answers} - set(expected))
        if unknown:
            raise IncompleteAnswers(
                f"Answers for unknown questions: {unknown}",
                unrated_question_ids=[],
                meeting_id=meeting_id,
            )
        unrated += [qid for qid in expected if qid not in rated and qid not in unrated]

    if unrated:
        raise IncompleteAnswers(
            "Please rate all questions before submitting",
            unrated_question_ids=unrated,
            meeting_id=meeting_id,
        )


class SubmissionReconciler:
    """
    Submits feedback and keeps the responded set consistent.

    Guarded by in-flight flags: a second submit or refresh arriving while
    one is running is ignored instead of racing it.
    """

    def __init__(
        self,
        client: PortalClient,
        store: FeedbackStateStore,
        *,
        user_id: str | None = None,
        department_id: int | None = None,
        clock=system_clock,
    ):
        self.client = client
        self.store = store
        self.user_id = user_id
        self.department_id = department_id
        self.clock = clock

        self._local: frozenset[MeetingId] = frozenset()
        self._remote: frozenset[MeetingId] = frozenset()
        # meeting_id -> question_id -> accepted record, kept until the meeting completes
        self._accepted: dict[MeetingId, dict[int, SubmissionRecord]] = {}
        self._submit_in_flight = False
        self._refresh_in_flight = False
        self._generation = 0
        self._refresh_tasks: set[asyncio.Task] = set()

    @property
    def responded(self) -> frozenset[MeetingId]:
        return reconcile(self._local, self._remote)

    @property
    def submit_in_flight(self) -> bool:
        return self._submit_in_flight

    def has_responded(self, meeting_id: MeetingId) -> bool:
        return coerce_meeting_id(meeting_id) in self.responded

    def accepted_questions(self, meeting_id: MeetingId) -> list[int]:
        return sorted(self._accepted.get(coerce_meeting_id(meeting_id), {}))

    async def load(self) -> frozenset[MeetingId]:
        """Seed the local set from persistence."""
        self._local = await self.store.load_responded()
        logger.info("Responded meetings loaded", count=len(self._local))
        return self.responded

    async def _persist(self) -> frozenset[MeetingId]:
        merged = self.responded
        await self.store.save_responded(merged)
        return merged

    async def mark_responded(self, meeting_id: MeetingId) -> frozenset[MeetingId]:
        """Record a meeting as responded locally (optimistic) and persist."""
        self._local = self._local | {coerce_meeting_id(meeting_id)}
        return await self._persist()

    async def submit(self, meeting_id: MeetingId, answers: list[Answer]) -> list[SubmissionRecord] | None:
        """
        Submit every answer for a meeting, one call per question.

        Questions accepted by an earlier, partially failed attempt are not
        sent again.

        Returns:
            list[SubmissionRecord]: All accepted records for the meeting, or
            None when another submit is already in flight

        Raises:
            IncompleteAnswers: Before any network call, if a rating is missing
            AlreadySubmitted: If the meeting is already in the responded set
            SubmitError: If any question failed; the meeting stays unanswered
        """
        meeting_id = coerce_meeting_id(meeting_id)
        validate_answers(meeting_id, answers)

        if self.has_responded(meeting_id):
            raise AlreadySubmitted("Feedback already submitted for this meeting", meeting_id=meeting_id)

        if self._submit_in_flight:
            logger.warning("Submit already in progress, ignoring duplicate", meeting_id=meeting_id)
            return None

        self._submit_in_flight = True
        generation = self._generation
        try:
            accepted = self._accepted.setdefault(meeting_id, {})
            failed: dict[int, str] = {}

            for answer in answers:
                if answer.question_id in accepted:
                    logger.debug(
                        "Question already accepted, skipping",
                        meeting_id=meeting_id,
                        question_id=answer.question_id,
                    )
                    continue
                try:
                    await self.client.submit_feedback(
                        meeting_id, answer.question_id, answer.rating, answer.notes
                    )
                except PortalAPIError as e:
                    failed[answer.question_id] = str(e)
                    logger.warning(
                        "Feedback submit failed for question",
                        meeting_id=meeting_id,
                        question_id=answer.question_id,
                        status_code=e.status_code,
                        error=str(e),
                    )
                    continue

                accepted[answer.question_id] = SubmissionRecord(
                    meeting_id=meeting_id,
                    question_id=answer.question_id,
                    rating=answer.rating,
                    notes=answer.notes,
                    submitted_at=self.clock.now(),
                )

            if failed:
                raise SubmitError(
                    f"Failed to submit {len(failed)} of {len(answers)} answers",
                    meeting_id=meeting_id,
                    succeeded=sorted(accepted),
                    failed=failed,
                )

            records = [accepted[answer.question_id] for answer in answers]
            self._accepted.pop(meeting_id, None)

            if generation != self._generation:
                logger.info("Submit finished after teardown, not recording", meeting_id=meeting_id)
                return records

            await self.mark_responded(meeting_id)
            logger.info("Feedback submitted", meeting_id=meeting_id, questions=len(records))
            self._schedule_refresh()
            return records
        finally:
            self._submit_in_flight = False

    def _schedule_refresh(self) -> None:
        task = asyncio.create_task(self.refresh(), name="responded-refresh")
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _fetch_remote(self) -> list[MeetingId]:
        try:
            return await self.client.fetch_responded_meeting_ids(self.user_id, self.department_id)
        except PortalAPIError as e:
            raise ReconcileUnavailable(f"Responded meetings unavailable: {e}") from e

    async def refresh(self) -> frozenset[MeetingId]:
        """
        Fetch the authoritative list and merge it in.

        Never raises for remote failures: the local set plus previously
        known remote entries stays in effect.
        """
        if self._refresh_in_flight:
            logger.debug("Responded refresh already in flight, skipping")
            return self.responded

        self._refresh_in_flight = True
        generation = self._generation
        try:
            try:
                remote = await self._fetch_remote()
            except ReconcileUnavailable as e:
                logger.warning("Reconcile unavailable, using local responded set", error=str(e))
                return self.responded

            if generation != self._generation:
                logger.info("Discarding responded refresh finished after teardown")
                return self.responded

            self._remote = self._remote | frozenset(remote)
            merged = await self._persist()
            logger.debug("Responded meetings reconciled", count=len(merged))
            return merged
        finally:
            self._refresh_in_flight = False

    def abandon(self) -> None:
        """Discard the result of anything still in flight."""
        self._generation += 1
        for task in list(self._refresh_tasks):
            task.cancel()

    def reset(self) -> None:
        """Forget everything in memory (logout)."""
        self.abandon()
        self._local = frozenset()
        self._remote = frozenset()
        self._accepted.clear()
