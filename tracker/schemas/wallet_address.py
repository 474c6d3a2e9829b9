"""Pydantic schemas for WalletAddress API."""

import re
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")


def normalize_address(value: str) -> str:
    text = value.strip()
    if not ADDRESS_RE.match(text):
        raise ValueError("must be a 0x-prefixed 40 hex character address")
    return text.lower()


def _clean_alias(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    return text or None


def _check_color(value: str | None) -> str | None:
    if value is None:
        return None
    if not COLOR_RE.match(value):
        raise ValueError("must be a hex color like #3b82f6")
    return value


class WalletAddressCreate(BaseModel):
    address: str
    alias: str | None = Field(default=None, max_length=64)
    color: str | None = None
    notifications_enabled: bool = True

    @field_validator("address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("alias")
    @classmethod
    def _trim_alias(cls, value: str | None) -> str | None:
        return _clean_alias(value)

    @field_validator("color")
    @classmethod
    def _validate_color(cls, value: str | None) -> str | None:
        return _check_color(value)


class WalletAddressUpdate(BaseModel):
    alias: str | None = Field(default=None, max_length=64)
    color: str | None = None
    notifications_enabled: bool | None = None

    @field_validator("alias")
    @classmethod
    def _trim_alias(cls, value: str | None) -> str | None:
        return _clean_alias(value)

    @field_validator("color")
    @classmethod
    def _validate_color(cls, value: str | None) -> str | None:
        return _check_color(value)

    @field_validator("notifications_enabled")
    @classmethod
    def _require_flag(cls, value: bool | None) -> bool:
        # Omit the field to leave it unchanged; null is not a valid setting
        if value is None:
            raise ValueError("must be true or false")
        return value


class NotificationToggle(BaseModel):
    enabled: bool


class WalletAddressRead(BaseModel):
    id: int
    address: str
    alias: str | None
    color: str | None
    notifications_enabled: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
