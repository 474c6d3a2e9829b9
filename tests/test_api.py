"""API tests through the ASGI app with an in-memory store."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import pytest_asyncio

from tracker.engine import poll_cycle
from tracker.engine.poll_cycle import PositionTracker
from tracker.engine.snapshot_fetcher import SnapshotFetcher
from tracker.main import app
from tracker.services.price_cache import PriceCache

ADDR = "0x" + "c" * 40


def _entry(coin, szi="1", entry="100"):
    return {"position": {
        "coin": coin, "szi": szi, "entryPx": entry, "unrealizedPnl": "0",
        "liquidationPx": None, "leverage": {"value": 1},
    }}


@pytest.fixture
def exchange():
    return {"positions": {}, "orders": {}}


@pytest.fixture
def tracker(store, exchange):
    async def fetch_state(address):
        return {"assetPositions": exchange["positions"].get(address, [])}

    async def fetch_orders(address):
        return exchange["orders"].get(address, [])

    dispatcher = MagicMock()
    dispatcher.notify_new_position = AsyncMock(return_value=True)
    dispatcher.send_test_notification = AsyncMock(return_value=True)
    instance = PositionTracker(
        store,
        price_cache=PriceCache(fetch_mids=AsyncMock(return_value={"ETH": "100"}), ttl_seconds=0),
        fetcher=SnapshotFetcher(fetch_state=fetch_state, fetch_orders=fetch_orders, batch_delay_ms=0),
        dispatcher=dispatcher,
    )
    poll_cycle._tracker_instance = instance
    yield instance
    poll_cycle._tracker_instance = None


@pytest_asyncio.fixture
async def client(tracker):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# 1. System
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/system/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_uninitialized_tracker_returns_503():
    poll_cycle._tracker_instance = None
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        resp = await c.get("/api/addresses")
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_refresh_status_and_logs(client, exchange):
    await client.post("/api/addresses", json={"address": ADDR})
    exchange["positions"][ADDR] = [_entry("ETH")]

    resp = await client.post("/api/system/refresh")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "success"
    assert body["cycle"]["new_positions"] == 1

    status = (await client.get("/api/system/status")).json()
    assert status["tracker"]["live_positions"] == 1
    assert status["last_cycle"]["status"] == "success"
    assert "running" in status["scheduler"]

    logs = (await client.get("/api/system/logs")).json()
    assert [entry["status"] for entry in logs] == ["success"]


@pytest.mark.asyncio
async def test_settings_roundtrip(client):
    assert (await client.get("/api/settings")).json() == {"refresh_interval_seconds": 60}

    with patch("tracker.engine.scheduler.reschedule_poll_job") as reschedule:
        resp = await client.put("/api/settings", json={"refresh_interval_seconds": 300})
    assert resp.status_code == 200
    reschedule.assert_called_once_with(300)
    assert (await client.get("/api/settings")).json() == {"refresh_interval_seconds": 300}

    resp = await client.put("/api/settings", json={"refresh_interval_seconds": 45})
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# 2. Addresses
# ---------------------------------------------------------------------------

class TestAddresses:
    @pytest.mark.asyncio
    async def test_crud(self, client):
        resp = await client.post("/api/addresses", json={"address": ADDR.upper().replace("0X", "0x"), "alias": "whale"})
        assert resp.status_code == 201
        assert resp.json()["address"] == ADDR

        resp = await client.put(f"/api/addresses/{ADDR}", json={"alias": "fund", "color": "#000000"})
        assert resp.json()["alias"] == "fund"

        resp = await client.post(f"/api/addresses/{ADDR}/notifications", json={"enabled": False})
        assert resp.json()["notifications_enabled"] is False

        assert (await client.get(f"/api/addresses/{ADDR}")).json()["alias"] == "fund"
        listed = (await client.get("/api/addresses")).json()
        assert [a["alias"] for a in listed] == ["fund"]

        assert (await client.delete(f"/api/addresses/{ADDR}")).status_code == 204
        assert (await client.delete(f"/api/addresses/{ADDR}")).status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_address_not_stored(self, client, store):
        resp = await client.post("/api/addresses", json={"address": "0xnothex"})
        assert resp.status_code == 422
        assert store.list_addresses() == []

    @pytest.mark.asyncio
    async def test_duplicate_address_conflict(self, client, store):
        await client.post("/api/addresses", json={"address": ADDR})
        resp = await client.post("/api/addresses", json={"address": ADDR, "alias": "dup"})
        assert resp.status_code == 409
        assert len(store.list_addresses()) == 1

    @pytest.mark.asyncio
    async def test_update_unknown_address(self, client):
        resp = await client.put("/api/addresses/" + "0x" + "d" * 40, json={"alias": "x"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_null_notification_flag_rejected(self, client, store):
        await client.post("/api/addresses", json={"address": ADDR})
        resp = await client.put(f"/api/addresses/{ADDR}", json={"notifications_enabled": None})
        assert resp.status_code == 422
        assert store.get_address(ADDR).notifications_enabled is True


# ---------------------------------------------------------------------------
# 3. Emails
# ---------------------------------------------------------------------------

class TestEmails:
    @pytest.mark.asyncio
    async def test_add_list_remove(self, client):
        assert (await client.post("/api/emails", json={"email": "Ops@Example.com"})).status_code == 201
        assert (await client.post("/api/emails", json={"email": "ops@example.com"})).status_code == 409
        assert [e["email"] for e in (await client.get("/api/emails")).json()] == ["ops@example.com"]

        assert (await client.delete("/api/emails/ops@example.com")).status_code == 204
        assert (await client.get("/api/emails")).json() == []
        assert (await client.delete("/api/emails/ops@example.com")).status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_email_not_stored(self, client, store):
        resp = await client.post("/api/emails", json={"email": "nope"})
        assert resp.status_code == 422
        assert store.list_emails(active_only=False) == []

    @pytest.mark.asyncio
    async def test_bulk(self, client, store):
        await client.post("/api/emails", json={"email": "a@x.io"})
        resp = await client.post("/api/emails/bulk", json={"emails": "a@x.io, b@x.io; c@x.io"})
        assert resp.status_code == 201
        body = resp.json()
        assert sorted(e["email"] for e in body["added"]) == ["b@x.io", "c@x.io"]
        assert body["skipped"] == ["a@x.io"]

    @pytest.mark.asyncio
    async def test_bulk_with_bad_entry_writes_nothing(self, client, store):
        resp = await client.post("/api/emails/bulk", json={"emails": "a@x.io\nbroken"})
        assert resp.status_code == 422
        assert store.list_emails(active_only=False) == []

    @pytest.mark.asyncio
    async def test_send_test(self, client, tracker):
        assert (await client.post("/api/emails/test")).status_code == 400
        await client.post("/api/emails", json={"email": "a@x.io"})
        resp = await client.post("/api/emails/test")
        assert resp.status_code == 200
        tracker.dispatcher.send_test_notification.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_notification_logs(self, client, store):
        store.log_notification(ADDR, "ETH", "LONG", 1.0, 100.0, sent=True, attempts=1)
        logs = (await client.get("/api/emails/logs")).json()
        assert logs[0]["asset"] == "ETH"
        assert logs[0]["sent"] is True


# ---------------------------------------------------------------------------
# 4. Positions and views
# ---------------------------------------------------------------------------

async def _seed_cycle(client, exchange):
    await client.post("/api/addresses", json={"address": ADDR, "alias": "whale"})
    exchange["positions"][ADDR] = [_entry("ETH"), _entry("BTC")]
    await client.post("/api/system/refresh")
    exchange["positions"][ADDR] = [_entry("ETH")]
    await client.post("/api/system/refresh")


@pytest.mark.asyncio
async def test_position_endpoints(client, exchange):
    await _seed_cycle(client, exchange)

    tracked = (await client.get("/api/positions/tracked")).json()
    assert [p["asset"] for p in tracked] == ["ETH"]
    assert [p["asset"] for p in (await client.get("/api/positions/new")).json()] == ["ETH"]
    assert [p["asset"] for p in (await client.get("/api/positions/closed")).json()] == ["BTC"]
    assert len((await client.get("/api/positions/all")).json()) == 2
    assert [h["asset"] for h in (await client.get("/api/positions/history")).json()] == ["BTC"]

    analytics = (await client.get("/api/positions/analytics")).json()
    assert analytics["closed_positions"] == 1
    assert (await client.get("/api/positions/tracked", params={"status": "bogus"})).status_code == 422


@pytest.mark.asyncio
async def test_hidden_positions(client):
    key = f"{ADDR}-ETH"
    assert (await client.post(f"/api/positions/hidden/{key}")).status_code == 201
    assert (await client.get("/api/positions/hidden")).json() == [key]
    assert (await client.delete(f"/api/positions/hidden/{key}")).status_code == 204
    assert (await client.delete(f"/api/positions/hidden/{key}")).status_code == 404


@pytest.mark.asyncio
async def test_hidden_key_address_is_lowercased(client):
    mixed = "0x" + "C" * 40 + "-ETH"
    resp = await client.post(f"/api/positions/hidden/{mixed}")
    assert resp.json()["position_key"] == f"{ADDR}-ETH"
    assert (await client.get("/api/positions/hidden")).json() == [f"{ADDR}-ETH"]
    assert (await client.delete(f"/api/positions/hidden/{mixed}")).status_code == 204


@pytest.mark.asyncio
async def test_view_tabs_filters_and_sort(client, exchange, tracker):
    await _seed_cycle(client, exchange)

    new_tab = (await client.get("/api/view/new")).json()
    assert [p["asset"] for p in new_tab["items"]] == ["ETH"]
    assert new_tab["page"] == 1

    closed_tab = (await client.get("/api/view/closed")).json()
    assert [p["asset"] for p in closed_tab["items"]] == ["BTC"]

    await client.post(f"/api/positions/hidden/{ADDR}-ETH")
    assert (await client.get("/api/view/new")).json()["total_items"] == 0
    assert (await client.get("/api/view/all")).json()["total_items"] == 2

    tracker.view_state.pages["closed"] = 3
    resp = await client.put("/api/view/filters", json={"asset": "btc", "trader": "whale"})
    assert resp.json()["pages"]["closed"] == 1
    assert [p["asset"] for p in (await client.get("/api/view/all")).json()["items"]] == ["BTC"]
    assert (await client.get("/api/view/filters")).json() == {"asset": "btc", "trader": "whale"}

    first = (await client.post("/api/view/sort/pnl")).json()["sort"]
    second = (await client.post("/api/view/sort/pnl")).json()["sort"]
    assert first == {"key": "pnl", "ascending": True}
    assert second == {"key": "pnl", "ascending": False}
    assert (await client.post("/api/view/sort/bogus")).status_code == 422

    page = (await client.put("/api/view/all/page/5")).json()
    assert page["page"] == page["total_pages"] == 1
    assert (await client.get("/api/view/archived")).status_code == 404

    options = (await client.get("/api/view/options")).json()
    assert options["assets"] == ["BTC", "ETH"]


@pytest.mark.asyncio
async def test_open_orders(client, exchange):
    await client.post("/api/addresses", json={"address": ADDR})
    exchange["orders"][ADDR] = [{"coin": "ETH", "side": "B", "sz": "1", "limitPx": "90", "oid": 5}]
    orders = (await client.get("/api/orders")).json()
    assert orders[0]["order_key"] == f"{ADDR}-ETH-5"
    assert orders[0]["side"] == "BUY"
    assert orders[0]["has_position"] is False
