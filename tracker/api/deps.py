"""Shared API dependencies."""

from fastapi import Depends, HTTPException, status

from tracker.engine.poll_cycle import PositionTracker, get_tracker
from tracker.services.store import TrackedPositionStore


def require_tracker() -> PositionTracker:
    """Return the process tracker, or 503 while the app is still starting."""
    tracker = get_tracker()
    if tracker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tracker not initialized",
        )
    return tracker


def get_store(tracker: PositionTracker = Depends(require_tracker)) -> TrackedPositionStore:
    return tracker.store
