"""Pydantic schemas for runtime settings and dashboard view state."""

from pydantic import BaseModel, field_validator

from tracker.utils.constants import VALID_REFRESH_INTERVALS


class RefreshSettings(BaseModel):
    refresh_interval_seconds: int

    @field_validator("refresh_interval_seconds")
    @classmethod
    def _validate_interval(cls, value: int) -> int:
        if value not in VALID_REFRESH_INTERVALS:
            allowed = ", ".join(str(s) for s in VALID_REFRESH_INTERVALS)
            raise ValueError(f"must be one of: {allowed}")
        return value


class SortStateRead(BaseModel):
    key: str | None
    ascending: bool


class ViewStateRead(BaseModel):
    filters: dict
    sort: SortStateRead
    pages: dict[str, int]
