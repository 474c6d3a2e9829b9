"""CycleLog model: per-cycle execution log for the poller."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class CycleLog(SQLModel, table=True):
    __tablename__ = "cycle_log"

    id: int | None = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    status: str  # "success", "partial", "skipped", "error"
    addresses_polled: int = 0
    addresses_failed: int = 0
    positions_seen: int = 0
    new_positions: int = 0
    closed_positions: int = 0
    notifications_sent: int = 0
    error_count: int = 0
    duration_ms: int | None = None
    message: str | None = None
