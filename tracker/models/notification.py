"""Notification recipients and the per-attempt audit log."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class NotificationEmail(SQLModel, table=True):
    __tablename__ = "notification_email"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationLog(SQLModel, table=True):
    __tablename__ = "notification_log"

    id: int | None = Field(default=None, primary_key=True)
    address: str = Field(index=True)
    asset: str
    side: str
    size: float
    entry_price: float
    sent: bool = False
    attempts: int = 0
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
