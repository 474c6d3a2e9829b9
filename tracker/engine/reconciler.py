"""Position reconciliation: diff a fresh snapshot against tracked records.

Pure computation: no I/O, no database access. The poll cycle feeds it the
snapshot, the stored records and current prices, then applies the returned
writes and dispatches the returned alerts.

Lifecycle per position key:
1. Not tracked yet → ``new`` (alert if the address opted in)
2. Tracked as ``new`` → stays ``new`` inside the window, else ``active``
3. Tracked as ``active`` → ``active``
4. Tracked as ``closed`` and seen again → reopened as ``active`` with a
   fresh ``created_at``
5. Tracked as ``new``/``active`` but missing from the snapshot → closed,
   with realized P&L at the freshest price and one history record
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from tracker.config import settings
from tracker.engine.snapshot_fetcher import AddressSnapshot, RawPosition
from tracker.models.tracked_position import TrackedPosition, make_position_key
from tracker.models.wallet_address import WalletAddress
from tracker.services.display import DisplayPosition
from tracker.utils.constants import STATUS_ACTIVE, STATUS_CLOSED, STATUS_NEW
from tracker.utils.metrics import (
    as_utc,
    holding_minutes,
    liquidation_distance_pct,
    pnl_percentage,
    realized_pnl,
    size_usd,
)

logger = logging.getLogger(__name__)


@dataclass
class PositionUpsert:
    """Store write for one observed position, idempotent on position_key."""

    position_key: str
    address: str
    asset: str
    side: str
    size: float
    entry_price: float
    leverage: float
    status: str
    last_updated: datetime
    created_at: datetime | None = None  # None keeps the stored value


@dataclass
class NewPositionAlert:
    address: str
    asset: str
    side: str
    size: float
    entry_price: float
    alias: str | None = None


@dataclass
class PositionClosure:
    position_key: str
    address: str
    asset: str
    side: str
    size: float
    entry_price: float
    exit_price: float
    leverage: float | None
    final_pnl: float
    pnl_percentage: float
    opened_at: datetime
    closed_at: datetime
    holding_duration_minutes: int


@dataclass
class ReconcileResult:
    display_positions: list[DisplayPosition] = field(default_factory=list)
    upserts: list[PositionUpsert] = field(default_factory=list)
    notifications: list[NewPositionAlert] = field(default_factory=list)
    closures: list[PositionClosure] = field(default_factory=list)
    fresh_keys: set[str] = field(default_factory=set)
    # Addresses whose fetch failed; their tracked positions were left alone
    protected_addresses: set[str] = field(default_factory=set)

    @property
    def new_count(self) -> int:
        return sum(1 for u in self.upserts if u.status == STATUS_NEW and u.created_at is not None)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify(
    existing: TrackedPosition | None,
    now: datetime,
    new_window: timedelta,
) -> tuple[str, datetime | None]:
    """Return (status, created_at to store) for an observed position.

    ``created_at`` is None when the stored value must be kept.
    """
    if existing is None:
        return STATUS_NEW, now

    if existing.status == STATUS_CLOSED or existing.is_active is False:
        # Reopened: new lifecycle instance under the same key
        return STATUS_ACTIVE, now

    if existing.status == STATUS_NEW:
        if now - as_utc(existing.created_at) < new_window:
            return STATUS_NEW, None
        return STATUS_ACTIVE, None

    return STATUS_ACTIVE, None


def is_closable(record: TrackedPosition, fresh_keys: set[str]) -> bool:
    return (
        bool(record.position_key)
        and record.position_key not in fresh_keys
        and record.status in (STATUS_ACTIVE, STATUS_NEW)
        and (record.is_active is True or record.is_active is None)
    )


def _live_display(
    raw: RawPosition,
    address: WalletAddress,
    key: str,
    status: str,
    created_at: datetime,
    prices: dict[str, float],
) -> DisplayPosition:
    current_price = prices.get(raw.asset) or raw.entry_price
    liquidation = raw.estimated_liquidation_price()
    return DisplayPosition(
        position_key=key,
        source="live",
        address=address.address,
        alias=address.alias,
        color=address.color,
        asset=raw.asset,
        side=raw.side,
        size=raw.size,
        entry_price=raw.entry_price,
        current_price=current_price,
        leverage=raw.leverage,
        pnl=raw.unrealized_pnl,
        pnl_percentage=pnl_percentage(raw.unrealized_pnl, raw.size, raw.entry_price),
        size_usd=size_usd(raw.size, current_price, raw.leverage),
        liquidation_price=liquidation,
        liquidation_distance_pct=liquidation_distance_pct(current_price, liquidation),
        status=status,
        created_at=created_at,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def reconcile(
    snapshots: list[AddressSnapshot],
    tracked: list[TrackedPosition],
    prices: dict[str, float],
    now: datetime | None = None,
    new_window_hours: float | None = None,
) -> ReconcileResult:
    """Classify every observed position and decide which tracked ones closed.

    ``tracked`` must be every stored record (closed ones included) so that
    reopened positions are recognised. Closures are evaluated only after the
    complete fresh key set is known.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    hours = settings.new_position_window_hours if new_window_hours is None else new_window_hours
    new_window = timedelta(hours=hours)

    by_key = {t.position_key: t for t in tracked if t.position_key}
    result = ReconcileResult()

    # Steps 1-3: per-key classification and upserts (order-independent)
    for snapshot in snapshots:
        addr = snapshot.address
        if not snapshot.ok:
            result.protected_addresses.add(addr.address)
            continue

        for raw in snapshot.positions:
            key = make_position_key(addr.address, raw.asset)
            if key in result.fresh_keys:
                logger.warning(f"Duplicate position {key} in one snapshot, keeping the first")
                continue
            result.fresh_keys.add(key)

            existing = by_key.get(key)
            status, created_at = classify(existing, now, new_window)

            result.upserts.append(PositionUpsert(
                position_key=key,
                address=addr.address,
                asset=raw.asset,
                side=raw.side,
                size=raw.size,
                entry_price=raw.entry_price,
                leverage=raw.leverage,
                status=status,
                last_updated=now,
                created_at=created_at,
            ))

            if existing is None:
                logger.info(
                    f"New position: {addr.alias or addr.address} {raw.side} {raw.asset} "
                    f"size={raw.size} entry={raw.entry_price}"
                )
                if addr.notifications_enabled:
                    result.notifications.append(NewPositionAlert(
                        address=addr.address,
                        asset=raw.asset,
                        side=raw.side,
                        size=raw.size,
                        entry_price=raw.entry_price,
                        alias=addr.alias,
                    ))
            elif created_at is not None:
                logger.info(f"Reopened position: {key}")

            opened = created_at or as_utc(existing.created_at)
            result.display_positions.append(
                _live_display(raw, addr, key, status, opened, prices)
            )

    # Steps 4-5: closures against the complete fresh key set
    for record in tracked:
        if not is_closable(record, result.fresh_keys):
            continue
        if record.address in result.protected_addresses:
            logger.debug(f"Not closing {record.position_key}: address fetch failed this cycle")
            continue

        exit_price = prices.get(record.asset) or record.entry_price
        final_pnl = realized_pnl(record.side, record.size, record.entry_price, exit_price)
        result.closures.append(PositionClosure(
            position_key=record.position_key,
            address=record.address,
            asset=record.asset,
            side=record.side,
            size=record.size,
            entry_price=record.entry_price,
            exit_price=exit_price,
            leverage=record.leverage,
            final_pnl=final_pnl,
            pnl_percentage=pnl_percentage(final_pnl, record.size, record.entry_price),
            opened_at=as_utc(record.created_at),
            closed_at=now,
            holding_duration_minutes=holding_minutes(record.created_at, now),
        ))

    return result
