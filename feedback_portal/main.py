"""
FastAPI application with feedback session lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from feedback_portal.config import settings
from feedback_portal.features.feedback_window.api.router import router as feedback_router
from feedback_portal.features.feedback_window.services.session import FeedbackSession
from feedback_portal.features.feedback_window.services.state_store import FeedbackStateStore
from feedback_portal.infrastructure.observability.logging import get_logger, log_request, setup_logging
from feedback_portal.routes import health
from feedback_portal.services.infrastructure.persistence import RedisPersistence, build_persistence
from feedback_portal.services.portal_client import PortalClient

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []
    persistence = build_persistence()
    client = PortalClient()
    session = None

    try:
        if isinstance(persistence, RedisPersistence):
            logger.info("Initializing Redis connection")
            await persistence.initialize()
        startup_tasks.append("persistence")

        session = FeedbackSession.from_settings(client=client, store=FeedbackStateStore(persistence))
        await session.start()
        startup_tasks.append("feedback_session")

        app.state.session = session
        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if session is not None:
            try:
                await session.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up feedback session", error=str(cleanup_error))
        await client.close()
        await persistence.close()
        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        await session.close()
    except Exception as e:
        logger.error("Error closing feedback session", error=str(e))
        shutdown_errors.append(f"Session: {e}")

    try:
        await client.close()
    except Exception as e:
        logger.error("Error closing portal client", error=str(e))
        shutdown_errors.append(f"Portal: {e}")

    try:
        await persistence.close()
    except Exception as e:
        logger.error("Error closing persistence", error=str(e))
        shutdown_errors.append(f"Persistence: {e}")

    app.state.session = None
    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Feedback Portal Scheduler",
    description="Meeting-relative feedback availability",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(feedback_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(request.method, request.url.path, response.status_code, round(process_time, 2))
    return response


def main() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
