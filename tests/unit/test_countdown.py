"""
Tests for the 3-2-1 countdown presenter.
"""

import asyncio

import pytest

from feedback_portal.features.feedback_window.services.countdown import CountdownPresenter


@pytest.mark.asyncio
async def test_counts_down_with_progress_ramp(clock):
    frames = []
    cues = []
    presenter = CountdownPresenter(clock, on_step=frames.append, on_cue=cues.append)

    task = asyncio.create_task(presenter.run(3))
    await clock.advance(seconds=3)

    assert await task is True
    assert cues == [3, 2, 1]
    assert [f.value for f in frames if f.progress == 0] == [3, 2, 1]
    assert [f.progress for f in frames if f.value == 2] == [0, 25, 50, 75, 100]
    assert presenter.running is False
    assert presenter.current is None


@pytest.mark.asyncio
async def test_current_frame_while_running(clock):
    presenter = CountdownPresenter(clock)

    task = asyncio.create_task(presenter.run(3))
    await clock.advance(seconds=1.5)

    assert presenter.running is True
    assert presenter.current.value == 2
    assert presenter.current.progress == 50

    await clock.advance(seconds=2)
    assert await task is True


@pytest.mark.asyncio
async def test_cancel_stops_before_next_step(clock):
    cues = []
    presenter = CountdownPresenter(clock, on_cue=cues.append)

    task = asyncio.create_task(presenter.run(3))
    await clock.advance(seconds=1.25)
    presenter.cancel()
    await clock.advance(seconds=5)

    assert await task is False
    assert cues == [3, 2]
    assert presenter.current is None


@pytest.mark.asyncio
async def test_cancelling_caller_stops_sequence(clock):
    cues = []
    presenter = CountdownPresenter(clock, on_cue=cues.append)

    task = asyncio.create_task(presenter.run(3))
    await clock.advance(seconds=0.5)
    task.cancel()
    await clock.advance(seconds=5)

    assert task.cancelled()
    assert cues == [3]
    assert presenter.running is False


@pytest.mark.asyncio
async def test_second_run_while_running_is_rejected(clock):
    presenter = CountdownPresenter(clock)

    task = asyncio.create_task(presenter.run(3))
    await clock.advance(seconds=0)

    with pytest.raises(RuntimeError):
        await presenter.run(3)

    presenter.cancel()
    assert await task is False


@pytest.mark.asyncio
async def test_zero_steps_completes_immediately(clock):
    presenter = CountdownPresenter(clock)
    assert await presenter.run(0) is True
