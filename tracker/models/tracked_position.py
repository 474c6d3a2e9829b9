"""TrackedPosition model: lifecycle record per (address, asset) pair.

Records are never deleted; closing flips status/is_active and stamps closed_at.
"""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field

from tracker.utils.constants import STATUS_NEW


def make_position_key(address: str, asset: str) -> str:
    return f"{address}-{asset}"


class TrackedPosition(SQLModel, table=True):
    __tablename__ = "tracked_position"

    id: int | None = Field(default=None, primary_key=True)
    position_key: str = Field(index=True, unique=True)
    address: str = Field(index=True)
    asset: str
    side: str  # "LONG" or "SHORT"
    size: float  # absolute size, direction lives in side
    entry_price: float
    leverage: float | None = None
    status: str = Field(default=STATUS_NEW, index=True)  # "new", "active", "closed"
    is_active: bool | None = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    closed_at: datetime | None = None
    final_pnl: float | None = None
    holding_duration_minutes: int | None = None
