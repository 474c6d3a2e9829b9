"""Tests for snapshot parsing and batched fetching."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from tracker.engine.snapshot_fetcher import (
    RawPosition,
    SnapshotFetcher,
    parse_asset_positions,
    parse_open_orders,
)
from tracker.errors import UpstreamError
from tracker.models.wallet_address import WalletAddress


def _wallet(i: int, alias=None) -> WalletAddress:
    return WalletAddress(address="0x" + f"{i:x}" * 40, alias=alias)


def _entry(coin="ETH", szi="1.5", entry="100", upnl="3", liq="80", lev=5):
    return {"position": {
        "coin": coin,
        "szi": szi,
        "entryPx": entry,
        "unrealizedPnl": upnl,
        "liquidationPx": liq,
        "leverage": {"type": "cross", "value": lev},
    }}


# ---------------------------------------------------------------------------
# 1. Parsing
# ---------------------------------------------------------------------------

class TestParseAssetPositions:
    def test_parses_fields(self):
        [pos] = parse_asset_positions({"assetPositions": [_entry()]})
        assert pos == RawPosition(
            asset="ETH", signed_size=1.5, entry_price=100.0,
            unrealized_pnl=3.0, liquidation_price=80.0, leverage=5.0,
        )
        assert pos.side == "LONG"
        assert pos.size == 1.5

    def test_zero_size_dropped(self):
        state = {"assetPositions": [_entry(szi="0"), _entry(szi="0.0", coin="BTC")]}
        assert parse_asset_positions(state) == []

    def test_negative_size_is_short(self):
        [pos] = parse_asset_positions({"assetPositions": [_entry(szi="-2")]})
        assert pos.side == "SHORT"
        assert pos.size == 2.0

    def test_null_liquidation_price(self):
        [pos] = parse_asset_positions({"assetPositions": [_entry(liq=None)]})
        assert pos.liquidation_price is None

    def test_malformed_entries_skipped(self):
        state = {"assetPositions": [
            _entry(szi="abc"),
            {"position": {"szi": "1"}},
            "garbage",
            _entry(coin="SOL"),
        ]}
        assert [p.asset for p in parse_asset_positions(state)] == ["SOL"]

    def test_missing_asset_positions(self):
        assert parse_asset_positions({}) == []


class TestLiquidationEstimate:
    def test_upstream_value_wins(self):
        pos = RawPosition("ETH", 1.0, 100.0, 0.0, 77.0, 10.0)
        assert pos.estimated_liquidation_price() == 77.0

    def test_long_estimate_below_entry(self):
        pos = RawPosition("ETH", 1.0, 100.0, 0.0, None, 10.0)
        assert abs(pos.estimated_liquidation_price() - 91.0) < 1e-9

    def test_short_estimate_above_entry(self):
        pos = RawPosition("ETH", -1.0, 100.0, 0.0, None, 10.0)
        assert abs(pos.estimated_liquidation_price() - 109.0) < 1e-9


def test_parse_open_orders():
    wallet = _wallet(1, alias="whale")
    orders = parse_open_orders(wallet, [
        {"coin": "ETH", "side": "B", "sz": "2", "limitPx": "95", "oid": 7},
        {"coin": "BTC", "side": "A", "sz": "0.1", "limitPx": "70000", "oid": 8, "reduceOnly": True},
        {"coin": "SOL"},
    ])
    assert [(o.asset, o.side, o.size) for o in orders] == [("ETH", "BUY", 2.0), ("BTC", "SELL", 0.1)]
    assert orders[0].order_key == f"{wallet.address}-ETH-7"
    assert orders[1].reduce_only is True
    assert orders[0].alias == "whale"


# ---------------------------------------------------------------------------
# 2. Batched fetching
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fetch_snapshots_keeps_input_order():
    wallets = [_wallet(i) for i in range(1, 6)]

    async def fetch_state(address):
        return {"assetPositions": [_entry(coin=address[-1].upper())]}

    fetcher = SnapshotFetcher(fetch_state=fetch_state, fetch_orders=AsyncMock(), batch_size=2, batch_delay_ms=0)
    snaps = await fetcher.fetch_snapshots(wallets)

    assert [s.address.address for s in snaps] == [w.address for w in wallets]
    assert all(s.ok for s in snaps)


@pytest.mark.asyncio
async def test_failing_address_does_not_abort_batch():
    wallets = [_wallet(1), _wallet(2), _wallet(3)]

    async def fetch_state(address):
        if address == wallets[1].address:
            raise UpstreamError("timeout")
        return {"assetPositions": [_entry()]}

    fetcher = SnapshotFetcher(fetch_state=fetch_state, fetch_orders=AsyncMock(), batch_size=3, batch_delay_ms=0)
    snaps = await fetcher.fetch_snapshots(wallets)

    assert [s.ok for s in snaps] == [True, False, True]
    assert snaps[1].positions == []
    assert "timeout" in snaps[1].error


@pytest.mark.asyncio
async def test_batches_bounded_and_delayed():
    wallets = [_wallet(i) for i in range(1, 8)]
    in_flight = 0
    peak = 0

    async def fetch_state(address):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1
        return {"assetPositions": []}

    real_sleep = asyncio.sleep
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)
        await real_sleep(0)

    fetcher = SnapshotFetcher(fetch_state=fetch_state, fetch_orders=AsyncMock(), batch_size=3, batch_delay_ms=100)
    with patch("tracker.engine.snapshot_fetcher.asyncio.sleep", new=fake_sleep):
        await fetcher.fetch_snapshots(wallets)

    assert peak == 3
    # 7 addresses in batches of 3 -> 3 batches, 2 pauses
    assert [d for d in delays if d] == [0.1, 0.1]


@pytest.mark.asyncio
async def test_fetch_open_orders_skips_failed_addresses():
    wallets = [_wallet(1), _wallet(2)]
    fetch_orders = AsyncMock(side_effect=[
        [{"coin": "ETH", "side": "B", "sz": "1", "limitPx": "10", "oid": 1}],
        UpstreamError("down"),
    ])
    fetcher = SnapshotFetcher(fetch_state=AsyncMock(), fetch_orders=fetch_orders, batch_size=1, batch_delay_ms=0)
    orders = await fetcher.fetch_open_orders(wallets)
    assert [o.address for o in orders] == [wallets[0].address]
