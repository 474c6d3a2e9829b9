"""Poll cycle: the function the scheduler calls on every refresh tick.

It orchestrates:
snapshot fetch → price refresh → reconcile → store writes → alerts → cycle log.

``PositionTracker`` owns one instance of each component plus the latest live
snapshot the dashboard views are built from. A single process-wide tracker is
created at startup with ``init_tracker()``.
"""

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from tracker.config import settings
from tracker.engine.reconciler import NewPositionAlert, ReconcileResult, reconcile
from tracker.engine.snapshot_fetcher import OpenOrder, SnapshotFetcher
from tracker.models.cycle_log import CycleLog
from tracker.models.tracked_position import make_position_key
from tracker.services.display import (
    DisplayPosition,
    PositionPage,
    ViewState,
    filter_options,
    from_historical,
    merge_positions,
)
from tracker.services.notifier import NotificationDispatcher
from tracker.services.price_cache import PriceCache
from tracker.services.store import TrackedPositionStore
from tracker.utils.constants import STATUS_CLOSED

logger = logging.getLogger(__name__)

MAX_BACKGROUND_ERRORS = 50

_tracker_instance: Optional["PositionTracker"] = None


class PositionTracker:
    def __init__(
        self,
        store: TrackedPositionStore,
        price_cache: PriceCache | None = None,
        fetcher: SnapshotFetcher | None = None,
        dispatcher: NotificationDispatcher | None = None,
        new_window_hours: float | None = None,
    ):
        self.store = store
        self.price_cache = price_cache or PriceCache()
        self.fetcher = fetcher or SnapshotFetcher()
        self.dispatcher = dispatcher or NotificationDispatcher(store)
        self.new_window_hours = (
            settings.new_position_window_hours if new_window_hours is None else new_window_hours
        )
        self.refresh_interval_seconds = settings.refresh_interval_seconds
        self.view_state = ViewState()
        self.live_positions: list[DisplayPosition] = []
        self.last_refreshed: datetime | None = None
        self.background_errors: deque[dict] = deque(maxlen=MAX_BACKGROUND_ERRORS)
        self._lock = asyncio.Lock()

    @property
    def cycle_in_progress(self) -> bool:
        return self._lock.locked()

    async def run_cycle(self, refresh_prices: bool = False) -> CycleLog | None:
        """Run one cycle, skipping if a prior cycle is still in-flight.

        ``refresh_prices`` drops the cached prices first, only when the cycle
        actually runs.
        """
        if self._lock.locked():
            logger.warning("Skipping overlapping poll cycle")
            self._log_cycle("skipped", message="Skipped cycle because previous run is still in progress")
            return None

        async with self._lock:
            if refresh_prices:
                self.price_cache.invalidate()
            return await self._run_cycle_once()

    async def _run_cycle_once(self) -> CycleLog | None:
        started = time.monotonic()
        try:
            addresses = self.store.list_addresses()
            # With no addresses the snapshot is empty and every open record closes
            message = None if addresses else "No tracked addresses"
            logger.info(f"Poll cycle: {len(addresses)} addresses")
            snapshots = await self.fetcher.fetch_snapshots(addresses)
            tracked = self.store.get_all_tracked_positions()

            assets = {p.asset for s in snapshots for p in s.positions}
            assets |= {t.asset for t in tracked if t.status != STATUS_CLOSED}
            prices = await self.price_cache.get_prices(assets)

            result = reconcile(snapshots, tracked, prices, new_window_hours=self.new_window_hours)

            closed, write_errors = self._apply_writes(result)
            sent, notify_errors = await self._dispatch(result.notifications)

            # Keep the last known rows for addresses that failed this cycle
            carried = [p for p in self.live_positions if p.address in result.protected_addresses]
            self.live_positions = result.display_positions + carried
            self.last_refreshed = datetime.now(timezone.utc)

            failed = len(result.protected_addresses)
            errors = write_errors + notify_errors
            status = "success" if not failed and not errors else "partial"
            logger.info(
                f"Poll cycle done: {len(result.display_positions)} open, {result.new_count} new, "
                f"{closed} closed, {sent} alerts, {failed} failed addresses"
            )
            return self._log_cycle(
                status,
                started=started,
                message=message,
                addresses_polled=len(addresses),
                addresses_failed=failed,
                positions_seen=len(result.display_positions),
                new_positions=result.new_count,
                closed_positions=closed,
                notifications_sent=sent,
                error_count=errors,
            )

        except Exception as e:
            logger.error(f"Poll cycle error: {e}", exc_info=True)
            self._record_error(f"Poll cycle failed: {e}")
            return self._log_cycle("error", message=str(e), started=started, error_count=1)

    def _apply_writes(self, result: ReconcileResult) -> tuple[int, int]:
        """Apply upserts, then closures. Returns (closed count, failed writes)."""
        errors = 0
        for upsert in result.upserts:
            try:
                self.store.upsert_tracked_position(upsert)
            except SQLAlchemyError as e:
                errors += 1
                self._record_error(f"Upsert {upsert.position_key} failed: {e}")

        closed = 0
        for closure in result.closures:
            try:
                history = self.store.close_tracked_position(
                    closure.position_key,
                    final_pnl=closure.final_pnl,
                    exit_price=closure.exit_price,
                    closed_at=closure.closed_at,
                    pnl_pct=closure.pnl_percentage,
                )
            except SQLAlchemyError as e:
                errors += 1
                self._record_error(f"Close {closure.position_key} failed: {e}")
                continue
            if history is not None:
                closed += 1
        return closed, errors

    async def _dispatch(self, alerts: list[NewPositionAlert]) -> tuple[int, int]:
        """Send alerts concurrently. Returns (sent, failed with an exception)."""
        if not alerts:
            return 0, 0

        results = await asyncio.gather(
            *(
                self.dispatcher.notify_new_position(
                    a.address, a.asset, a.side, a.size, a.entry_price, alias=a.alias,
                )
                for a in alerts
            ),
            return_exceptions=True,
        )
        sent = errors = 0
        for alert, outcome in zip(alerts, results):
            if isinstance(outcome, Exception):
                errors += 1
                self._record_error(f"Alert for {alert.address}-{alert.asset} failed: {outcome}")
            elif outcome:
                sent += 1
        return sent, errors

    def _record_error(self, message: str):
        logger.error(message)
        self.background_errors.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": message,
        })

    def _log_cycle(self, status: str, started: float | None = None, **fields) -> CycleLog | None:
        """Write a CycleLog entry."""
        if started is not None:
            fields["duration_ms"] = int((time.monotonic() - started) * 1000)
        try:
            return self.store.log_cycle(status, **fields)
        except SQLAlchemyError as e:
            self._record_error(f"Cycle log write failed: {e}")
            return None

    # ------------------------------------------------------------------
    # Read side for the API
    # ------------------------------------------------------------------

    def historical_positions(self) -> list[DisplayPosition]:
        addresses = {a.address: a for a in self.store.list_addresses()}
        prices = self.price_cache.get()
        return [from_historical(r, addresses, prices) for r in self.store.get_all_tracked_positions()]

    def view(self, tab: str) -> PositionPage:
        return self.view_state.view(
            tab,
            self.live_positions,
            self.historical_positions(),
            self.store.get_hidden_positions(),
        )

    def filter_options(self) -> dict:
        return filter_options(merge_positions([*self.live_positions, *self.historical_positions()]))

    async def fetch_open_orders(self) -> list[OpenOrder]:
        orders = await self.fetcher.fetch_open_orders(self.store.list_addresses())
        live_keys = {p.position_key for p in self.live_positions}
        for order in orders:
            order.has_position = make_position_key(order.address, order.asset) in live_keys
        return orders

    def status(self) -> dict:
        return {
            "cycle_in_progress": self.cycle_in_progress,
            "last_refreshed": self.last_refreshed.isoformat() if self.last_refreshed else None,
            "refresh_interval_seconds": self.refresh_interval_seconds,
            "live_positions": len(self.live_positions),
            "price_cache_age_seconds": self.price_cache.age_seconds,
            "background_errors": list(self.background_errors),
        }


def init_tracker(store: TrackedPositionStore | None = None, **kwargs) -> PositionTracker:
    """Initialize and return the tracker singleton."""
    global _tracker_instance
    if store is None:
        from tracker.database import engine
        store = TrackedPositionStore(engine)
    _tracker_instance = PositionTracker(store, **kwargs)
    return _tracker_instance


def get_tracker() -> Optional[PositionTracker]:
    """Get the tracker singleton, or None if not initialized."""
    return _tracker_instance
