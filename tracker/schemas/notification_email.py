"""Pydantic schemas for notification recipients."""

import re
from datetime import datetime
from pydantic import BaseModel, field_validator

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
BULK_SEPARATORS = re.compile(r"[\n,;]+")


def normalize_email(value: str) -> str:
    text = value.strip().lower()
    if not EMAIL_RE.match(text):
        raise ValueError(f"invalid email address: {value.strip()!r}")
    return text


class NotificationEmailCreate(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return normalize_email(value)


class NotificationEmailBulk(BaseModel):
    """Accepts a list, or one string separated by newlines, commas or semicolons.

    The whole batch is rejected if any entry is invalid.
    """

    emails: list[str]

    @field_validator("emails", mode="before")
    @classmethod
    def _split_and_validate(cls, value):
        if isinstance(value, str):
            value = BULK_SEPARATORS.split(value)
        parts = [str(p).strip() for p in value or [] if p and str(p).strip()]
        if not parts:
            raise ValueError("no email addresses given")
        invalid = [p for p in parts if not EMAIL_RE.match(p)]
        if invalid:
            raise ValueError(f"invalid email addresses: {', '.join(invalid)}")
        return list(dict.fromkeys(p.lower() for p in parts))


class NotificationEmailRead(BaseModel):
    id: int
    email: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationLogRead(BaseModel):
    id: int
    address: str
    asset: str
    side: str
    size: float
    entry_price: float
    sent: bool
    attempts: int
    error: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
