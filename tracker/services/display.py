"""Display aggregation for the dashboard tabs.

Live snapshot rows and historical tracked records are both turned into
``DisplayPosition`` rows tagged with their source, reduced through one
dedup pass, then filtered, sorted and paginated. Everything except
``ViewState`` is a pure function.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Literal

from pydantic import BaseModel

from tracker.models.tracked_position import TrackedPosition
from tracker.models.wallet_address import WalletAddress
from tracker.utils.constants import (
    DEDUP_PRIORITY,
    PAGE_SIZE,
    STATUS_CLOSED,
    STATUS_SORT_RANK,
    VIEW_TABS,
)
from tracker.utils.metrics import as_utc, pnl_percentage, realized_pnl, size_usd


class DisplayPosition(BaseModel):
    position_key: str
    source: Literal["live", "historical"]
    address: str
    alias: str | None = None
    color: str | None = None
    asset: str
    side: str
    size: float
    entry_price: float
    current_price: float = 0.0
    leverage: float | None = None
    pnl: float = 0.0
    pnl_percentage: float = 0.0
    size_usd: float = 0.0
    liquidation_price: float | None = None
    liquidation_distance_pct: float | None = None
    status: str
    created_at: datetime | None = None
    closed_at: datetime | None = None
    holding_duration_minutes: int | None = None
    is_hidden: bool = False


SORTABLE_FIELDS = set(DisplayPosition.model_fields) | {"duration"}


class ViewFilters(BaseModel):
    asset: str = ""
    trader: str = ""


@dataclass
class SortState:
    key: str | None = None
    ascending: bool = True

    def toggle(self, key: str) -> "SortState":
        """Same key flips direction; a new key starts ascending."""
        if key not in SORTABLE_FIELDS:
            raise ValueError(f"Unknown sort key: {key}")
        if key == self.key:
            return SortState(key=key, ascending=not self.ascending)
        return SortState(key=key, ascending=True)


class PositionPage(BaseModel):
    tab: str
    items: list[DisplayPosition]
    page: int
    total_pages: int
    total_items: int
    page_size: int = PAGE_SIZE


# ---------------------------------------------------------------------------
# Source conversion
# ---------------------------------------------------------------------------

def from_historical(
    record: TrackedPosition,
    addresses: dict[str, WalletAddress],
    prices: dict[str, float] | None = None,
) -> DisplayPosition:
    """Build a display row from a stored record.

    Open records are valued at the cached price when one exists; closed
    records show realized P&L and a zero placeholder price.
    """
    meta = addresses.get(record.address)
    closed = record.status == STATUS_CLOSED
    current_price = 0.0 if closed else (prices or {}).get(record.asset, 0.0)

    if closed:
        pnl = record.final_pnl or 0.0
    elif current_price > 0:
        pnl = realized_pnl(record.side, record.size, record.entry_price, current_price)
    else:
        pnl = 0.0

    return DisplayPosition(
        position_key=record.position_key,
        source="historical",
        address=record.address,
        alias=meta.alias if meta else None,
        color=meta.color if meta else None,
        asset=record.asset,
        side=record.side,
        size=record.size,
        entry_price=record.entry_price,
        current_price=current_price,
        leverage=record.leverage,
        pnl=pnl,
        pnl_percentage=pnl_percentage(pnl, record.size, record.entry_price),
        size_usd=size_usd(record.size, current_price, record.leverage),
        status=record.status,
        created_at=as_utc(record.created_at) if record.created_at else None,
        closed_at=as_utc(record.closed_at) if record.closed_at else None,
        holding_duration_minutes=record.holding_duration_minutes,
    )


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def _beats(candidate: DisplayPosition, current: DisplayPosition) -> bool:
    cand_rank = DEDUP_PRIORITY.get(candidate.status, len(DEDUP_PRIORITY))
    curr_rank = DEDUP_PRIORITY.get(current.status, len(DEDUP_PRIORITY))
    if cand_rank != curr_rank:
        return cand_rank < curr_rank
    # Equal priority: a real price beats a zero placeholder
    return candidate.current_price > 0 and current.current_price <= 0


def merge_positions(positions: Iterable[DisplayPosition]) -> list[DisplayPosition]:
    """Keep one row per position key: active > new > closed, then fresher price.

    Output keeps the order in which keys were first seen.
    """
    winners: dict[str, DisplayPosition] = {}
    for pos in positions:
        current = winners.get(pos.position_key)
        if current is None or _beats(pos, current):
            winners[pos.position_key] = pos
    return list(winners.values())


# ---------------------------------------------------------------------------
# Filter / sort / paginate
# ---------------------------------------------------------------------------

def _matches(needle: str, *haystacks: str | None) -> bool:
    needle = needle.strip().lower()
    if not needle:
        return True
    return any(h and needle in h.lower() for h in haystacks)


def apply_filters(positions: Iterable[DisplayPosition], filters: ViewFilters) -> list[DisplayPosition]:
    """Asset and trader filters, case-insensitive substring, ANDed."""
    return [
        p for p in positions
        if _matches(filters.asset, p.asset) and _matches(filters.trader, p.address, p.alias)
    ]


def _sort_value(position: DisplayPosition, key: str):
    if key == "duration":
        return position.created_at
    if key == "status":
        return STATUS_SORT_RANK.get(position.status, len(STATUS_SORT_RANK))
    return getattr(position, key)


def apply_sort(positions: list[DisplayPosition], sort: SortState) -> list[DisplayPosition]:
    """Stable sort; rows with no value for the key always go last."""
    if not sort.key:
        return list(positions)
    present = [p for p in positions if _sort_value(p, sort.key) is not None]
    missing = [p for p in positions if _sort_value(p, sort.key) is None]
    present.sort(key=lambda p: _sort_value(p, sort.key), reverse=not sort.ascending)
    return present + missing


def paginate(positions: list[DisplayPosition], page: int, page_size: int = PAGE_SIZE) -> tuple[list[DisplayPosition], int, int]:
    """Return (items, clamped page, total pages)."""
    total_pages = max(1, math.ceil(len(positions) / page_size))
    page = min(max(page, 1), total_pages)
    start = (page - 1) * page_size
    return positions[start:start + page_size], page, total_pages


# ---------------------------------------------------------------------------
# Tabs
# ---------------------------------------------------------------------------

def select_tab(
    tab: str,
    live: list[DisplayPosition],
    historical: list[DisplayPosition],
    hidden_keys: set[str],
) -> list[DisplayPosition]:
    """Deduplicated rows for a tab, before user filters."""
    if tab not in VIEW_TABS:
        raise ValueError(f"Unknown tab: {tab}")

    def _mark(rows: list[DisplayPosition]) -> list[DisplayPosition]:
        return [r.model_copy(update={"is_hidden": r.position_key in hidden_keys}) for r in rows]

    if tab in ("active", "new"):
        rows = merge_positions(p for p in live if p.status == tab)
        return _mark([r for r in rows if r.position_key not in hidden_keys])

    if tab == "closed":
        rows = merge_positions(p for p in historical if p.status == STATUS_CLOSED)
        return _mark([r for r in rows if r.position_key not in hidden_keys])

    everything = merge_positions([*live, *historical])
    if tab == "hidden":
        return _mark([r for r in everything if r.position_key in hidden_keys])
    # "all" keeps hidden rows visible
    return _mark(everything)


def build_view(
    tab: str,
    live: list[DisplayPosition],
    historical: list[DisplayPosition],
    hidden_keys: set[str],
    filters: ViewFilters | None = None,
    sort: SortState | None = None,
    page: int = 1,
) -> PositionPage:
    rows = select_tab(tab, live, historical, hidden_keys)
    rows = apply_filters(rows, filters or ViewFilters())
    rows = apply_sort(rows, sort or SortState())
    items, page, total_pages = paginate(rows, page)
    return PositionPage(tab=tab, items=items, page=page, total_pages=total_pages, total_items=len(rows))


def filter_options(rows: Iterable[DisplayPosition]) -> dict:
    """Distinct assets and traders for the filter dropdowns."""
    assets: set[str] = set()
    traders: dict[str, str | None] = {}
    for row in rows:
        assets.add(row.asset)
        traders.setdefault(row.address, row.alias)
    return {
        "assets": sorted(assets),
        "traders": [{"address": a, "alias": alias} for a, alias in sorted(traders.items())],
    }


@dataclass
class ViewState:
    """Filters, sort and per-tab page numbers for the operator dashboard."""

    filters: ViewFilters = field(default_factory=ViewFilters)
    sort: SortState = field(default_factory=SortState)
    pages: dict[str, int] = field(default_factory=lambda: {tab: 1 for tab in VIEW_TABS})

    def set_filters(self, filters: ViewFilters):
        self.filters = filters
        self.pages = {tab: 1 for tab in VIEW_TABS}

    def toggle_sort(self, key: str):
        self.sort = self.sort.toggle(key)

    def set_page(self, tab: str, page: int):
        if tab not in VIEW_TABS:
            raise ValueError(f"Unknown tab: {tab}")
        self.pages[tab] = max(page, 1)

    def view(
        self,
        tab: str,
        live: list[DisplayPosition],
        historical: list[DisplayPosition],
        hidden_keys: set[str],
    ) -> PositionPage:
        result = build_view(
            tab, live, historical, hidden_keys,
            filters=self.filters, sort=self.sort, page=self.pages.get(tab, 1),
        )
        self.pages[tab] = result.page
        return result
