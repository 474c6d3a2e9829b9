"""HiddenPosition model: position keys the operator hid from default views."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class HiddenPosition(SQLModel, table=True):
    __tablename__ = "hidden_position"

    id: int | None = Field(default=None, primary_key=True)
    position_key: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
