"""Open orders across all tracked addresses."""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from tracker.api.deps import require_tracker
from tracker.engine.poll_cycle import PositionTracker

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.get("")
async def open_orders(tracker: PositionTracker = Depends(require_tracker)):
    orders = await tracker.fetch_open_orders()
    return [asdict(o) for o in orders]
