"""
Health check endpoints.
"""

import time

from fastapi import APIRouter, Request

from feedback_portal.config import settings

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "feedback-portal"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: persistence, portal reachability and the scheduler.
    """
    checks = {}
    overall_ok = True
    session = getattr(request.app.state, "session", None)

    # 1) Persistence
    t0 = time.time()
    try:
        store_ok = bool(session is not None and await session.store.adapter.ping())
        checks["persistence"] = {
            "ok": store_ok,
            "backend": settings.PERSISTENCE_BACKEND,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and store_ok
    except Exception as e:
        checks["persistence"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Portal API
    t0 = time.time()
    try:
        portal_ok = bool(session is not None and await session.client.health_check())
        checks["portal"] = {"ok": portal_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        overall_ok = overall_ok and portal_ok
    except Exception as e:
        checks["portal"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 3) Scheduler
    scheduler_ok = session is not None and not session.scheduler.closed
    tracked = session.scheduler.tracked_meeting if scheduler_ok else None
    checks["scheduler"] = {
        "ok": scheduler_ok,
        "tracked_meeting_id": tracked.id if tracked else None,
    }
    overall_ok = overall_ok and scheduler_ok

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
