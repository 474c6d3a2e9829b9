"""WalletAddress model: an exchange account the dashboard tracks."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field

from tracker.utils.constants import DEFAULT_ADDRESS_COLOR


class WalletAddress(SQLModel, table=True):
    __tablename__ = "wallet_address"

    id: int | None = Field(default=None, primary_key=True)
    address: str = Field(index=True, unique=True)
    alias: str | None = None
    color: str | None = DEFAULT_ADDRESS_COLOR
    notifications_enabled: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
