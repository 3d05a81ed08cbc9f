"""
Headless feedback watcher.

Runs a FeedbackSession without the HTTP layer so the scheduler, the
responded sync and the persisted next-meeting timer keep working from a
worker process.
"""

import asyncio

from feedback_portal.features.feedback_window.services.session import FeedbackSession
from feedback_portal.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STATUS_LOG_INTERVAL_SECONDS = 300


async def start_feedback_watch(session: FeedbackSession | None = None) -> None:
    """
    Entry point for the feedback watch worker.

    Runs until cancelled, then tears the session down.
    """
    session = session or FeedbackSession.from_settings()
    await session.start()
    logger.info("Feedback watch started")

    try:
        while True:
            await asyncio.sleep(STATUS_LOG_INTERVAL_SECONDS)
            snapshot = session.snapshot()
            logger.info(
                "Feedback watch status",
                meeting_id=snapshot.tracked_meeting.id if snapshot.tracked_meeting else None,
                phase=snapshot.phase.value if snapshot.phase else None,
                minutes_until_start=snapshot.minutes_until_start,
                responded=len(snapshot.responded),
            )
    finally:
        await session.close()
        await session.client.close()
        await session.store.adapter.close()
        logger.info("Feedback watch stopped")


if __name__ == "__main__":
    asyncio.run(start_feedback_watch())
