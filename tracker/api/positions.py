"""Tracked position records, history, analytics and hidden keys."""

from fastapi import APIRouter, Depends, HTTPException

from tracker.api.deps import get_store
from tracker.config import settings
from tracker.models.position_history import PositionHistory
from tracker.models.tracked_position import TrackedPosition, make_position_key
from tracker.schemas.wallet_address import normalize_address
from tracker.services.store import TrackedPositionStore
from tracker.utils.constants import POSITION_STATUSES

router = APIRouter(prefix="/api/positions", tags=["positions"])


def _path_key(position_key: str) -> str:
    """Lowercase the address half of an ``address-asset`` key."""
    address, sep, asset = position_key.partition("-")
    try:
        address = normalize_address(address)
    except ValueError:
        return position_key
    return make_position_key(address, asset) if sep else address


@router.get("/tracked", response_model=list[TrackedPosition])
def tracked_positions(status: str | None = None, store: TrackedPositionStore = Depends(get_store)):
    """Open records; ``status`` narrows to new or active."""
    if status is not None and status not in POSITION_STATUSES:
        raise HTTPException(status_code=422, detail=f"Unknown status: {status}")
    return store.get_tracked_positions(status)


@router.get("/new", response_model=list[TrackedPosition])
def new_positions(hours: float | None = None, store: TrackedPositionStore = Depends(get_store)):
    return store.get_new_positions(settings.new_position_window_hours if hours is None else hours)


@router.get("/closed", response_model=list[TrackedPosition])
def closed_positions(store: TrackedPositionStore = Depends(get_store)):
    return store.get_closed_positions()


@router.get("/all", response_model=list[TrackedPosition])
def all_positions(store: TrackedPositionStore = Depends(get_store)):
    return store.get_all_tracked_positions()


@router.get("/history", response_model=list[PositionHistory])
def position_history(
    address: str | None = None,
    limit: int = 100,
    offset: int = 0,
    store: TrackedPositionStore = Depends(get_store),
):
    return store.get_position_history(address=address.lower() if address else None, limit=limit, offset=offset)


@router.get("/analytics")
def position_analytics(address: str | None = None, store: TrackedPositionStore = Depends(get_store)):
    return store.get_position_analytics(address.lower() if address else None)


@router.get("/hidden")
def hidden_positions(store: TrackedPositionStore = Depends(get_store)):
    return sorted(store.get_hidden_positions())


@router.post("/hidden/{position_key}", status_code=201)
def hide_position(position_key: str, store: TrackedPositionStore = Depends(get_store)):
    position_key = _path_key(position_key)
    added = store.add_hidden_position(position_key)
    return {"position_key": position_key, "hidden": True, "changed": added}


@router.delete("/hidden/{position_key}", status_code=204)
def unhide_position(position_key: str, store: TrackedPositionStore = Depends(get_store)):
    position_key = _path_key(position_key)
    if not store.remove_hidden_position(position_key):
        raise HTTPException(status_code=404, detail="Position is not hidden")
