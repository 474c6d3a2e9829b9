"""Snapshot fetcher: current open positions for every tracked address.

Addresses are polled in small fixed-size batches. Requests inside a batch run
concurrently; a short fixed pause separates batches. A failing address never
aborts the batch: it contributes no positions and is flagged ``ok=False``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from tracker.config import settings
from tracker.models.wallet_address import WalletAddress
from tracker.utils.constants import LIQUIDATION_MARGIN_FACTOR, SIDE_LONG, SIDE_SHORT

logger = logging.getLogger(__name__)

FetchState = Callable[[str], Awaitable[dict]]
FetchOrders = Callable[[str], Awaitable[list[dict]]]


@dataclass
class RawPosition:
    """One open position as reported by clearinghouseState."""

    asset: str
    signed_size: float
    entry_price: float
    unrealized_pnl: float
    liquidation_price: float | None
    leverage: float

    @property
    def side(self) -> str:
        return SIDE_LONG if self.signed_size > 0 else SIDE_SHORT

    @property
    def size(self) -> float:
        return abs(self.signed_size)

    def estimated_liquidation_price(self) -> float:
        """Upstream liquidation price, or a margin-based estimate when absent."""
        if self.liquidation_price is not None:
            return self.liquidation_price
        lev = max(self.leverage, 1.0)
        if self.side == SIDE_LONG:
            return self.entry_price * (1 - LIQUIDATION_MARGIN_FACTOR / lev)
        return self.entry_price * (1 + LIQUIDATION_MARGIN_FACTOR / lev)


@dataclass
class AddressSnapshot:
    address: WalletAddress
    positions: list[RawPosition] = field(default_factory=list)
    ok: bool = True
    error: str | None = None


@dataclass
class OpenOrder:
    order_key: str
    address: str
    asset: str
    side: str  # "BUY" or "SELL"
    order_type: str
    size: float
    limit_price: float | None
    trigger_price: float | None
    reduce_only: bool
    alias: str | None = None
    color: str | None = None
    has_position: bool = False


def _to_float(value, default: float | None = 0.0) -> float | None:
    if value is None or value == "":
        return default
    return float(value)


def parse_asset_positions(state: dict) -> list[RawPosition]:
    """Parse the assetPositions list of a clearinghouseState payload.

    Entries with a size of exactly zero are not open positions and are
    dropped. Malformed entries are skipped.
    """
    positions: list[RawPosition] = []
    for entry in state.get("assetPositions") or []:
        pos = entry.get("position") if isinstance(entry, dict) else None
        if not pos:
            continue
        try:
            signed_size = float(pos["szi"])
            if signed_size == 0:
                continue
            leverage_raw = pos.get("leverage") or {}
            leverage = _to_float(leverage_raw.get("value") if isinstance(leverage_raw, dict) else leverage_raw, 1.0)
            positions.append(RawPosition(
                asset=str(pos["coin"]),
                signed_size=signed_size,
                entry_price=_to_float(pos.get("entryPx")),
                unrealized_pnl=_to_float(pos.get("unrealizedPnl")),
                liquidation_price=_to_float(pos.get("liquidationPx"), None),
                leverage=leverage or 1.0,
            ))
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Skipping malformed position entry {pos!r}: {e}")
    return positions


def parse_open_orders(address: WalletAddress, orders: list[dict]) -> list[OpenOrder]:
    result: list[OpenOrder] = []
    for order in orders:
        try:
            coin = str(order["coin"])
            result.append(OpenOrder(
                order_key=f"{address.address}-{coin}-{order.get('oid')}",
                address=address.address,
                asset=coin,
                side="BUY" if order.get("side") in ("B", "BUY", "Bid") else "SELL",
                order_type=str(order.get("orderType") or "Limit"),
                size=float(order["sz"]),
                limit_price=_to_float(order.get("limitPx"), None),
                trigger_price=_to_float(order.get("triggerPx"), None),
                reduce_only=bool(order.get("reduceOnly", False)),
                alias=address.alias,
                color=address.color,
            ))
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Skipping malformed order for {address.address}: {e}")
    return result


class SnapshotFetcher:
    def __init__(
        self,
        fetch_state: FetchState | None = None,
        fetch_orders: FetchOrders | None = None,
        batch_size: int | None = None,
        batch_delay_ms: int | None = None,
    ):
        if fetch_state is None or fetch_orders is None:
            from tracker.services import market_data
            fetch_state = fetch_state or market_data.fetch_clearinghouse_state
            fetch_orders = fetch_orders or market_data.fetch_open_orders
        self._fetch_state = fetch_state
        self._fetch_orders = fetch_orders
        self.batch_size = batch_size or settings.fetch_batch_size
        self.batch_delay_ms = settings.fetch_batch_delay_ms if batch_delay_ms is None else batch_delay_ms

    async def _run_batched(self, items: list, worker) -> list:
        results = []
        for i in range(0, len(items), self.batch_size):
            batch = items[i:i + self.batch_size]
            results.extend(await asyncio.gather(*(worker(item) for item in batch)))

            # Delay between batches
            if i + self.batch_size < len(items):
                await asyncio.sleep(self.batch_delay_ms / 1000.0)
        return results

    async def fetch_snapshots(self, addresses: list[WalletAddress]) -> list[AddressSnapshot]:
        """Fetch open positions for every address, in input order."""
        targets = list(addresses)  # snapshot to avoid mutation during iteration
        snapshots = await self._run_batched(targets, self._fetch_one)
        failed = sum(1 for s in snapshots if not s.ok)
        if failed:
            logger.warning(f"Snapshot pass: {failed}/{len(snapshots)} addresses failed")
        return snapshots

    async def _fetch_one(self, address: WalletAddress) -> AddressSnapshot:
        try:
            state = await self._fetch_state(address.address)
        except Exception as e:
            logger.warning(f"Failed to fetch positions for {address.alias or address.address}: {e}")
            return AddressSnapshot(address=address, ok=False, error=str(e))
        return AddressSnapshot(address=address, positions=parse_asset_positions(state))

    async def fetch_open_orders(self, addresses: list[WalletAddress]) -> list[OpenOrder]:
        """Fetch resting orders for every address. Failed addresses contribute none."""
        async def _one(address: WalletAddress) -> list[OpenOrder]:
            try:
                raw = await self._fetch_orders(address.address)
            except Exception as e:
                logger.warning(f"Failed to fetch open orders for {address.alias or address.address}: {e}")
                return []
            return parse_open_orders(address, raw)

        per_address = await self._run_batched(list(addresses), _one)
        return [order for orders in per_address for order in orders]
