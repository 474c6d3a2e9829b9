"""Runtime settings. The refresh interval can change without a restart."""

from fastapi import APIRouter, Depends

from tracker.api.deps import require_tracker
from tracker.engine.poll_cycle import PositionTracker
from tracker.schemas.settings import RefreshSettings

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("", response_model=RefreshSettings)
def get_settings(tracker: PositionTracker = Depends(require_tracker)):
    return RefreshSettings(refresh_interval_seconds=tracker.refresh_interval_seconds)


@router.put("", response_model=RefreshSettings)
def update_settings(data: RefreshSettings, tracker: PositionTracker = Depends(require_tracker)):
    from tracker.engine.scheduler import reschedule_poll_job

    tracker.refresh_interval_seconds = data.refresh_interval_seconds
    reschedule_poll_job(data.refresh_interval_seconds)
    return data
