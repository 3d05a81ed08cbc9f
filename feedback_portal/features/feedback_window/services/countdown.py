"""
3-2-1 countdown shown before questions are revealed and before submit.

The sequence runs in its own task so ``cancel()`` (or cancelling the
caller) stops it between frames; no listener is called after that.
"""

import asyncio
from collections.abc import Callable

from feedback_portal.features.feedback_window.domain.models import CountdownStep
from feedback_portal.features.feedback_window.services.clock import system_clock
from feedback_portal.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

StepListener = Callable[[CountdownStep], None]
CueListener = Callable[[int], None]

DEFAULT_STEPS = 3
DEFAULT_STEP_SECONDS = 1.0
RAMP_TICKS = 4  # progress frames per step: 0, 25, 50, 75, 100


class CountdownPresenter:
    """Cancellable staged countdown with a per-step progress ramp and optional cue."""

    def __init__(
        self,
        clock=system_clock,
        *,
        step_seconds: float = DEFAULT_STEP_SECONDS,
        ramp_ticks: int = RAMP_TICKS,
        on_step: StepListener | None = None,
        on_cue: CueListener | None = None,
    ):
        self.clock = clock
        self.step_seconds = step_seconds
        self.ramp_ticks = max(1, ramp_ticks)
        self.on_step = on_step
        self.on_cue = on_cue
        self._task: asyncio.Task | None = None
        self._current: CountdownStep | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def current(self) -> CountdownStep | None:
        return self._current if self.running else None

    async def run(self, steps: int = DEFAULT_STEPS) -> bool:
        """
        Run the countdown to completion.

        Returns:
            bool: True if every step was shown, False if it was cancelled

        Raises:
            RuntimeError: If a countdown is already running on this presenter
        """
        if self.running:
            raise RuntimeError("Countdown already running")
        if steps < 1:
            return True

        task = asyncio.create_task(self._sequence(steps), name="feedback-countdown")
        self._task = task
        try:
            await asyncio.wait({task})
        finally:
            # Caller cancelled: take the sequence down with it
            if not task.done():
                task.cancel()
            self._current = None

        if task.cancelled():
            logger.info("Countdown cancelled", steps=steps)
            return False
        task.result()
        return True

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._current = None

    async def _sequence(self, steps: int) -> None:
        tick_seconds = self.step_seconds / self.ramp_ticks
        for value in range(steps, 0, -1):
            if self.on_cue is not None:
                self.on_cue(value)
            for frame in range(self.ramp_ticks + 1):
                self._emit(CountdownStep(value=value, progress=round(100 * frame / self.ramp_ticks)))
                if frame < self.ramp_ticks:
                    await self.clock.sleep(tick_seconds)

    def _emit(self, step: CountdownStep) -> None:
        self._current = step
        if self.on_step is not None:
            self.on_step(step)
