"""Mark-price cache with a hard freshness window.

One instance is owned by the tracker and handed to whoever needs prices.
The whole map turns over at once; there is no per-asset eviction.
"""

import logging
import time
from typing import Awaitable, Callable, Iterable

from tracker.config import settings
from tracker.errors import UpstreamError

logger = logging.getLogger(__name__)

FetchMids = Callable[[], Awaitable[dict[str, str]]]


def parse_mids(raw: dict, assets: Iterable[str]) -> dict[str, float]:
    """Pick positive prices for the requested assets out of an allMids payload."""
    prices: dict[str, float] = {}
    for asset in assets:
        value = raw.get(asset)
        if value is None:
            continue
        try:
            price = float(value)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring unparsable mid for {asset}: {value!r}")
            continue
        if price > 0:
            prices[asset] = price
    return prices


class PriceCache:
    """Last-known mid prices plus the time they were fetched.

    A non-empty cache younger than ``ttl_seconds`` is returned as-is without
    touching the network. Otherwise one batched allMids request refreshes the
    whole cache. If that request fails the previous cache is served verbatim.
    """

    def __init__(
        self,
        fetch_mids: FetchMids | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if fetch_mids is None:
            from tracker.services.market_data import fetch_all_mids
            fetch_mids = fetch_all_mids
        self._fetch_mids = fetch_mids
        self.ttl_seconds = settings.price_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._prices: dict[str, float] = {}
        self._fetched_at: float | None = None

    def get(self) -> dict[str, float]:
        """Current cached prices, fresh or stale. Never hits the network."""
        return dict(self._prices)

    def set(self, prices: dict[str, float]):
        """Replace the cache and stamp it with the current time."""
        self._prices = dict(prices)
        self._fetched_at = self._clock()

    def invalidate(self):
        """Force the next ``get_prices`` call to refetch."""
        self._fetched_at = None

    @property
    def age_seconds(self) -> float | None:
        if self._fetched_at is None:
            return None
        return self._clock() - self._fetched_at

    def is_fresh(self) -> bool:
        age = self.age_seconds
        return bool(self._prices) and age is not None and age < self.ttl_seconds

    async def get_prices(self, assets: Iterable[str]) -> dict[str, float]:
        if self.is_fresh():
            return self.get()

        wanted = set(assets)
        try:
            raw = await self._fetch_mids()
        except UpstreamError as e:
            if self._prices:
                logger.warning(f"Price fetch failed, serving stale cache ({len(self._prices)} assets): {e}")
            else:
                logger.warning(f"Price fetch failed and cache is empty: {e}")
            return self.get()

        fresh = parse_mids(raw, wanted)
        # Keep the last known price for assets the upstream did not quote this time
        for asset in wanted - fresh.keys():
            if asset in self._prices:
                fresh[asset] = self._prices[asset]

        self.set(fresh)
        logger.debug(f"Price cache refreshed: {len(fresh)} assets")
        return self.get()
