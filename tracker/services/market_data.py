"""Market data fetching.

Mid prices, account state and open orders come from the Hyperliquid info
API through the SDK's ``Info`` client. The client is synchronous, so every
call runs in the default executor to keep the event loop free.
"""

import asyncio
import logging
from typing import Any

from hyperliquid.info import Info

from tracker.config import settings
from tracker.errors import UpstreamError

logger = logging.getLogger(__name__)

# Reusable Hyperliquid Info client (no auth needed for public data).
# Created lazily: the constructor itself calls the API for exchange metadata.
_hl_info: Info | None = None


def _get_info() -> Info:
    global _hl_info
    if _hl_info is None:
        _hl_info = Info(base_url=settings.hyperliquid_api_url, skip_ws=True)
    return _hl_info


async def _run_info_call(label: str, method: str, *args: Any) -> Any:
    loop = asyncio.get_running_loop()
    try:
        info = await loop.run_in_executor(None, _get_info)
        return await loop.run_in_executor(None, getattr(info, method), *args)
    except Exception as e:
        raise UpstreamError(f"{label} failed: {e}") from e


async def fetch_all_mids() -> dict[str, str]:
    """Fetch mid prices for every listed asset ({type: "allMids"}).

    Returns a mapping of asset symbol to mid-price string.
    """
    data = await _run_info_call("allMids", "all_mids")
    if not isinstance(data, dict):
        raise UpstreamError(f"allMids returned {type(data).__name__}, expected object")
    return data


async def fetch_clearinghouse_state(address: str) -> dict:
    """Fetch account state for one address ({type: "clearinghouseState"}).

    The response carries ``assetPositions: [{position: {coin, szi, entryPx,
    unrealizedPnl, liquidationPx, leverage: {value}}}]``.
    """
    data = await _run_info_call(f"clearinghouseState({address})", "user_state", address)
    if not isinstance(data, dict):
        raise UpstreamError(f"clearinghouseState returned {type(data).__name__} for {address}")
    return data


async def fetch_open_orders(address: str) -> list[dict]:
    """Fetch resting orders for one address ({type: "openOrders"})."""
    data = await _run_info_call(f"openOrders({address})", "open_orders", address)
    if not isinstance(data, list):
        raise UpstreamError(f"openOrders returned {type(data).__name__} for {address}")
    return data
