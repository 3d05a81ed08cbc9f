"""
Tests for feedback submission and responded-set reconciliation.
"""

import asyncio

import pytest

from feedback_portal.features.feedback_window.domain.errors import (
    AlreadySubmitted,
    IncompleteAnswers,
    SubmitError,
)
from feedback_portal.features.feedback_window.domain.models import Answer
from feedback_portal.features.feedback_window.services.reconciler import (
    SubmissionReconciler,
    reconcile,
    validate_answers,
)
from feedback_portal.services.portal_client import PortalAPIError

ANSWERS = [Answer(question_id=1, rating=4), Answer(question_id=2, rating=5, notes="great")]


def test_reconcile_is_a_union():
    assert reconcile({7}, {7, 9}) == {7, 9}
    assert reconcile({7}, set()) == {7}
    assert reconcile(["7"], [7]) == {7}


def test_reconcile_is_idempotent():
    once = reconcile({1, 2}, {3})
    assert reconcile(once, {3}) == once


@pytest.mark.asyncio
async def test_submit_records_meeting_locally(portal_client, store):
    reconciler = SubmissionReconciler(portal_client, store)

    records = await reconciler.submit(7, ANSWERS)

    assert [r.question_id for r in records] == [1, 2]
    assert portal_client.submit_feedback.await_count == 2
    portal_client.submit_feedback.assert_any_await(7, 2, 5, "great")
    assert reconciler.has_responded(7)
    assert await store.load_responded() == {7}
    await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_unrated_answer_makes_no_calls(portal_client, store):
    reconciler = SubmissionReconciler(portal_client, store)

    with pytest.raises(IncompleteAnswers) as exc_info:
        await reconciler.submit(7, [Answer(question_id=1, rating=4), Answer(question_id=2, rating=0)])

    assert exc_info.value.unrated_question_ids == [2]
    portal_client.submit_feedback.assert_not_awaited()
    assert not reconciler.has_responded(7)


@pytest.mark.asyncio
async def test_empty_answers_are_rejected(portal_client, store):
    reconciler = SubmissionReconciler(portal_client, store)

    with pytest.raises(IncompleteAnswers):
        await reconciler.submit(7, [])


@pytest.mark.asyncio
async def test_partial_failure_then_retry_only_resends_failures(portal_client, store):
    portal_client.submit_feedback.side_effect = [
        {},
        PortalAPIError("down", operation="submit_feedback", status_code=503),
    ]
    reconciler = SubmissionReconciler(portal_client, store)

    with pytest.raises(SubmitError) as exc_info:
        await reconciler.submit(7, ANSWERS)

    assert exc_info.value.succeeded == [1]
    assert list(exc_info.value.failed) == [2]
    assert exc_info.value.retryable is True
    assert not reconciler.has_responded(7)
    assert reconciler.accepted_questions(7) == [1]

    portal_client.submit_feedback.reset_mock()
    portal_client.submit_feedback.side_effect = None
    records = await reconciler.submit(7, ANSWERS)

    portal_client.submit_feedback.assert_awaited_once_with(7, 2, 5, "great")
    assert len(records) == 2
    assert reconciler.has_responded(7)
    await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_concurrent_submit_is_ignored(portal_client, store):
    gate = asyncio.Event()

    async def slow_submit(*args):
        await gate.wait()
        return {}

    portal_client.submit_feedback.side_effect = slow_submit
    reconciler = SubmissionReconciler(portal_client, store)

    first = asyncio.create_task(reconciler.submit(7, ANSWERS))
    await asyncio.sleep(0)

    assert reconciler.submit_in_flight is True
    assert await reconciler.submit(7, ANSWERS) is None

    gate.set()
    assert len(await first) == 2
    assert portal_client.submit_feedback.await_count == 2


@pytest.mark.asyncio
async def test_refresh_merges_remote_and_persists(portal_client, store):
    portal_client.fetch_responded_meeting_ids.return_value = [7, 9]
    reconciler = SubmissionReconciler(portal_client, store, user_id="u-1", department_id=4)
    await reconciler.mark_responded(7)

    merged = await reconciler.refresh()

    assert merged == {7, 9}
    portal_client.fetch_responded_meeting_ids.assert_awaited_once_with("u-1", 4)
    assert await store.load_responded() == {7, 9}


@pytest.mark.asyncio
async def test_remote_failure_keeps_local_set(portal_client, store):
    portal_client.fetch_responded_meeting_ids.side_effect = PortalAPIError("timeout")
    reconciler = SubmissionReconciler(portal_client, store)
    await reconciler.mark_responded(7)

    assert await reconciler.refresh() == {7}


@pytest.mark.asyncio
async def test_remote_never_shrinks_local(portal_client, store):
    portal_client.fetch_responded_meeting_ids.return_value = []
    reconciler = SubmissionReconciler(portal_client, store)
    await reconciler.mark_responded(7)

    assert await reconciler.refresh() == {7}


@pytest.mark.asyncio
async def test_load_seeds_from_persistence(portal_client, store):
    await store.save_responded([3, 4])
    reconciler = SubmissionReconciler(portal_client, store)

    assert await reconciler.load() == {3, 4}


@pytest.mark.asyncio
async def test_abandon_discards_late_refresh(portal_client, store):
    gate = asyncio.Event()

    async def slow_fetch(*args):
        await gate.wait()
        return [9]

    portal_client.fetch_responded_meeting_ids.side_effect = slow_fetch
    reconciler = SubmissionReconciler(portal_client, store)

    refresh = asyncio.create_task(reconciler.refresh())
    await asyncio.sleep(0)
    reconciler.abandon()
    gate.set()
    await refresh

    assert not reconciler.has_responded(9)
    assert await store.load_responded() == frozenset()


@pytest.mark.asyncio
async def test_reset_forgets_everything(portal_client, store):
    reconciler = SubmissionReconciler(portal_client, store)
    await reconciler.mark_responded(7)

    reconciler.reset()

    assert reconciler.responded == frozenset()


def test_every_revealed_question_needs_a_rating():
    with pytest.raises(IncompleteAnswers) as exc_info:
        validate_answers(7, [Answer(question_id=1, rating=4)], question_ids=[1, 2])

    assert exc_info.value.unrated_question_ids == [2]


def test_answers_for_unknown_questions_are_refused():
    with pytest.raises(IncompleteAnswers):
        validate_answers(7, [*ANSWERS, Answer(question_id=9, rating=3)], question_ids=[1, 2])


@pytest.mark.asyncio
async def test_answered_meeting_is_not_sent_again(portal_client, store):
    reconciler = SubmissionReconciler(portal_client, store)
    await reconciler.submit(7, ANSWERS)

    with pytest.raises(AlreadySubmitted):
        await reconciler.submit(7, ANSWERS)

    assert portal_client.submit_feedback.await_count == 2
    await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_records_are_stamped_with_the_injected_clock(portal_client, store, clock):
    reconciler = SubmissionReconciler(portal_client, store, clock=clock)

    records = await reconciler.submit(7, ANSWERS)

    assert {r.submitted_at for r in records} == {clock.now()}
    await asyncio.sleep(0)
