"""System API: health check, tracker and scheduler status, manual refresh, cycle logs."""

from fastapi import APIRouter, Depends

from tracker.api.deps import get_store, require_tracker
from tracker.engine.poll_cycle import PositionTracker
from tracker.models.cycle_log import CycleLog
from tracker.services.store import TrackedPositionStore

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/status")
def system_status(tracker: PositionTracker = Depends(require_tracker)):
    from tracker.engine.scheduler import get_scheduler_status

    last = tracker.store.list_cycle_logs(limit=1)
    return {
        "tracker": tracker.status(),
        "scheduler": get_scheduler_status(),
        "last_cycle": last[0] if last else None,
    }


@router.post("/refresh")
async def manual_refresh(tracker: PositionTracker = Depends(require_tracker)):
    """Run one poll cycle now with fresh prices. Skipped if a cycle is already running."""
    log = await tracker.run_cycle(refresh_prices=True)
    if log is None:
        return {"status": "skipped", "message": "A poll cycle is already in progress"}
    return {"status": log.status, "cycle": log}


@router.get("/logs", response_model=list[CycleLog])
def cycle_logs(
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    store: TrackedPositionStore = Depends(get_store),
):
    return store.list_cycle_logs(status=status, limit=limit, offset=offset)
