"""PositionHistory model: immutable record written once per closed position."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class PositionHistory(SQLModel, table=True):
    __tablename__ = "position_history"

    id: int | None = Field(default=None, primary_key=True)
    position_key: str = Field(index=True)
    address: str = Field(index=True)
    asset: str
    side: str
    size: float
    entry_price: float
    exit_price: float
    leverage: float | None = None
    pnl: float
    pnl_percentage: float
    holding_duration_minutes: int | None = None
    opened_at: datetime
    closed_at: datetime = Field(index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
