"""Position arithmetic shared by the reconciler and the display layer."""

from datetime import datetime, timezone

from tracker.utils.constants import SIDE_LONG


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def pnl_percentage(pnl: float, size: float, entry_price: float) -> float:
    notional = abs(size * entry_price)
    if notional == 0:
        return 0.0
    return pnl / notional * 100


def size_usd(size: float, current_price: float, leverage: float | None) -> float:
    return abs(size * current_price) / max(leverage or 1.0, 1.0)


def realized_pnl(side: str, size: float, entry_price: float, exit_price: float) -> float:
    """(exit - entry) * signed size."""
    direction = 1.0 if side == SIDE_LONG else -1.0
    return (exit_price - entry_price) * abs(size) * direction


def liquidation_distance_pct(current_price: float, liquidation_price: float | None) -> float | None:
    if liquidation_price is None:
        return None
    if current_price <= 0:
        return 0.0
    return abs(current_price - liquidation_price) / current_price * 100


def holding_minutes(opened_at: datetime, closed_at: datetime) -> int:
    return max(int((as_utc(closed_at) - as_utc(opened_at)).total_seconds() // 60), 0)
