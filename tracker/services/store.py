"""Persistence accessor for tracked addresses, positions and audit logs.

Every method opens its own session and commits on its own; there are no
transactions spanning calls. A crash between two writes leaves the store
consistent per key, and the next poll re-upserts whatever was missed.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.engine import Engine
from sqlmodel import Session, func, or_, select

from tracker.engine.reconciler import PositionUpsert
from tracker.errors import DuplicateError
from tracker.models.cycle_log import CycleLog
from tracker.models.hidden_position import HiddenPosition
from tracker.models.notification import NotificationEmail, NotificationLog
from tracker.models.position_history import PositionHistory
from tracker.models.tracked_position import TrackedPosition
from tracker.models.wallet_address import WalletAddress
from tracker.utils.constants import DEFAULT_ADDRESS_COLOR, STATUS_ACTIVE, STATUS_CLOSED, STATUS_NEW
from tracker.utils.metrics import as_utc, holding_minutes, pnl_percentage

logger = logging.getLogger(__name__)


class TrackedPositionStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # ------------------------------------------------------------------
    # Tracked positions
    # ------------------------------------------------------------------

    def upsert_tracked_position(self, upsert: PositionUpsert) -> TrackedPosition:
        """Insert or update the record for ``upsert.position_key``.

        A non-None ``created_at`` starts a new lifecycle: the stored creation
        time is replaced and any close fields from a previous lifecycle are
        cleared.
        """
        with self._session() as session:
            record = session.exec(
                select(TrackedPosition).where(TrackedPosition.position_key == upsert.position_key)
            ).first()

            if record is None:
                record = TrackedPosition(
                    position_key=upsert.position_key,
                    address=upsert.address,
                    asset=upsert.asset,
                    created_at=upsert.created_at or upsert.last_updated,
                )
            elif upsert.created_at is not None:
                record.created_at = upsert.created_at
                record.closed_at = None
                record.final_pnl = None
                record.holding_duration_minutes = None

            record.side = upsert.side
            record.size = upsert.size
            record.entry_price = upsert.entry_price
            record.leverage = upsert.leverage
            record.status = upsert.status
            record.is_active = True
            record.last_updated = upsert.last_updated

            session.add(record)
            session.commit()
            session.refresh(record)
            return record

    def close_tracked_position(
        self,
        position_key: str,
        final_pnl: float,
        exit_price: float,
        closed_at: datetime | None = None,
        pnl_pct: float | None = None,
    ) -> PositionHistory | None:
        """Close an open record and append its history row in one commit.

        Returns None, writing nothing, when the key is unknown or already
        closed.
        """
        closed_at = closed_at or datetime.now(timezone.utc)
        with self._session() as session:
            record = session.exec(
                select(TrackedPosition).where(TrackedPosition.position_key == position_key)
            ).first()
            if record is None or record.status == STATUS_CLOSED:
                return None

            duration = holding_minutes(record.created_at, closed_at)
            if pnl_pct is None:
                pnl_pct = pnl_percentage(final_pnl, record.size, record.entry_price)

            record.status = STATUS_CLOSED
            record.is_active = False
            record.closed_at = closed_at
            record.final_pnl = final_pnl
            record.holding_duration_minutes = duration
            record.last_updated = closed_at

            history = PositionHistory(
                position_key=record.position_key,
                address=record.address,
                asset=record.asset,
                side=record.side,
                size=record.size,
                entry_price=record.entry_price,
                exit_price=exit_price,
                leverage=record.leverage,
                pnl=final_pnl,
                pnl_percentage=pnl_pct,
                holding_duration_minutes=duration,
                opened_at=as_utc(record.created_at),
                closed_at=closed_at,
            )
            session.add(record)
            session.add(history)
            session.commit()
            session.refresh(history)
            logger.info(f"Closed {position_key}: pnl={final_pnl:.2f} exit={exit_price}")
            return history

    def get_tracked_positions(self, status: str | None = None) -> list[TrackedPosition]:
        """Open records (new or active), optionally narrowed to one status."""
        statuses = [status] if status else [STATUS_NEW, STATUS_ACTIVE]
        with self._session() as session:
            stmt = (
                select(TrackedPosition)
                .where(TrackedPosition.status.in_(statuses))
                .where(or_(TrackedPosition.is_active == True, TrackedPosition.is_active.is_(None)))  # noqa: E712
                .order_by(TrackedPosition.created_at.desc())
            )
            return list(session.exec(stmt).all())

    def get_new_positions(self, hours_window: float = 24.0) -> list[TrackedPosition]:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours_window)
        with self._session() as session:
            stmt = (
                select(TrackedPosition)
                .where(TrackedPosition.status == STATUS_NEW)
                .where(TrackedPosition.created_at >= cutoff)
                .order_by(TrackedPosition.created_at.desc())
            )
            return list(session.exec(stmt).all())

    def get_closed_positions(self) -> list[TrackedPosition]:
        with self._session() as session:
            stmt = (
                select(TrackedPosition)
                .where(TrackedPosition.status == STATUS_CLOSED)
                .order_by(TrackedPosition.closed_at.desc())
            )
            return list(session.exec(stmt).all())

    def get_all_tracked_positions(self) -> list[TrackedPosition]:
        with self._session() as session:
            return list(session.exec(select(TrackedPosition)).all())

    def get_position_history(
        self,
        address: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[PositionHistory]:
        with self._session() as session:
            stmt = select(PositionHistory).order_by(PositionHistory.closed_at.desc())
            if address is not None:
                stmt = stmt.where(PositionHistory.address == address)
            return list(session.exec(stmt.offset(offset).limit(limit)).all())

    def get_position_analytics(self, address: str | None = None) -> dict:
        """Aggregate counts by status and realized P&L statistics."""
        with self._session() as session:
            count_stmt = select(TrackedPosition.status, func.count()).group_by(TrackedPosition.status)
            history_stmt = select(PositionHistory)
            if address is not None:
                count_stmt = count_stmt.where(TrackedPosition.address == address)
                history_stmt = history_stmt.where(PositionHistory.address == address)
            counts = {status: n for status, n in session.exec(count_stmt).all()}
            history = session.exec(history_stmt).all()

        pnls = [h.pnl for h in history]
        durations = [h.holding_duration_minutes for h in history if h.holding_duration_minutes is not None]
        wins = sum(1 for p in pnls if p > 0)
        return {
            "address": address,
            "total_positions": sum(counts.values()),
            "new_positions": counts.get(STATUS_NEW, 0),
            "active_positions": counts.get(STATUS_ACTIVE, 0),
            "closed_positions": counts.get(STATUS_CLOSED, 0),
            "closed_trades": len(pnls),
            "total_pnl": sum(pnls),
            "win_rate": (wins / len(pnls) * 100) if pnls else 0.0,
            "avg_holding_minutes": (sum(durations) / len(durations)) if durations else 0.0,
        }

    # ------------------------------------------------------------------
    # Hidden positions
    # ------------------------------------------------------------------

    def get_hidden_positions(self) -> set[str]:
        with self._session() as session:
            return set(session.exec(select(HiddenPosition.position_key)).all())

    def add_hidden_position(self, position_key: str) -> bool:
        """Hide a key. Returns False if it was already hidden."""
        with self._session() as session:
            existing = session.exec(
                select(HiddenPosition).where(HiddenPosition.position_key == position_key)
            ).first()
            if existing:
                return False
            session.add(HiddenPosition(position_key=position_key))
            session.commit()
            return True

    def remove_hidden_position(self, position_key: str) -> bool:
        with self._session() as session:
            existing = session.exec(
                select(HiddenPosition).where(HiddenPosition.position_key == position_key)
            ).first()
            if not existing:
                return False
            session.delete(existing)
            session.commit()
            return True

    # ------------------------------------------------------------------
    # Tracked addresses
    # ------------------------------------------------------------------

    def list_addresses(self) -> list[WalletAddress]:
        with self._session() as session:
            return list(session.exec(select(WalletAddress).order_by(WalletAddress.created_at)).all())

    def get_address(self, address: str) -> WalletAddress | None:
        with self._session() as session:
            return session.exec(select(WalletAddress).where(WalletAddress.address == address)).first()

    def add_address(
        self,
        address: str,
        alias: str | None = None,
        color: str | None = None,
        notifications_enabled: bool = True,
    ) -> WalletAddress:
        with self._session() as session:
            existing = session.exec(select(WalletAddress).where(WalletAddress.address == address)).first()
            if existing:
                raise DuplicateError(f"Address {address} is already tracked")
            wallet = WalletAddress(
                address=address,
                alias=alias,
                color=color or DEFAULT_ADDRESS_COLOR,
                notifications_enabled=notifications_enabled,
            )
            session.add(wallet)
            session.commit()
            session.refresh(wallet)
            logger.info(f"Tracking address {alias or address}")
            return wallet

    def update_address(self, address: str, **fields) -> WalletAddress | None:
        with self._session() as session:
            wallet = session.exec(select(WalletAddress).where(WalletAddress.address == address)).first()
            if wallet is None:
                return None
            for key, value in fields.items():
                setattr(wallet, key, value)
            wallet.updated_at = datetime.now(timezone.utc)
            session.add(wallet)
            session.commit()
            session.refresh(wallet)
            return wallet

    def set_notifications(self, address: str, enabled: bool) -> WalletAddress | None:
        return self.update_address(address, notifications_enabled=enabled)

    def remove_address(self, address: str) -> bool:
        """Stop tracking an address. Its position records are kept."""
        with self._session() as session:
            wallet = session.exec(select(WalletAddress).where(WalletAddress.address == address)).first()
            if wallet is None:
                return False
            session.delete(wallet)
            session.commit()
            logger.info(f"Stopped tracking address {wallet.alias or address}")
            return True

    # ------------------------------------------------------------------
    # Notification recipients
    # ------------------------------------------------------------------

    def list_emails(self, active_only: bool = True) -> list[NotificationEmail]:
        with self._session() as session:
            stmt = select(NotificationEmail).order_by(NotificationEmail.created_at)
            if active_only:
                stmt = stmt.where(NotificationEmail.is_active == True)  # noqa: E712
            return list(session.exec(stmt).all())

    def add_email(self, email: str) -> NotificationEmail:
        """Add a recipient, reactivating it if it was soft-deleted."""
        added, skipped = self.add_emails([email])
        if skipped:
            raise DuplicateError(f"Email {email} is already a recipient")
        return added[0]

    def add_emails(self, emails: list[str]) -> tuple[list[NotificationEmail], list[str]]:
        """Add several recipients in one commit.

        Returns (added or reactivated rows, emails that were already active).
        """
        added: list[NotificationEmail] = []
        skipped: list[str] = []
        now = datetime.now(timezone.utc)
        with self._session() as session:
            for email in dict.fromkeys(emails):
                row = session.exec(select(NotificationEmail).where(NotificationEmail.email == email)).first()
                if row is not None and row.is_active:
                    skipped.append(email)
                    continue
                if row is None:
                    row = NotificationEmail(email=email)
                else:
                    row.is_active = True
                    row.updated_at = now
                session.add(row)
                added.append(row)
            session.commit()
            for row in added:
                session.refresh(row)
        return added, skipped

    def remove_email(self, email: str) -> bool:
        """Soft delete: the row stays with ``is_active=False``."""
        with self._session() as session:
            row = session.exec(
                select(NotificationEmail)
                .where(NotificationEmail.email == email)
                .where(NotificationEmail.is_active == True)  # noqa: E712
            ).first()
            if row is None:
                return False
            row.is_active = False
            row.updated_at = datetime.now(timezone.utc)
            session.add(row)
            session.commit()
            return True

    # ------------------------------------------------------------------
    # Audit logs
    # ------------------------------------------------------------------

    def log_notification(
        self,
        address: str,
        asset: str,
        side: str,
        size: float,
        entry_price: float,
        sent: bool,
        attempts: int,
        error: str | None = None,
    ) -> NotificationLog:
        with self._session() as session:
            row = NotificationLog(
                address=address,
                asset=asset,
                side=side,
                size=size,
                entry_price=entry_price,
                sent=sent,
                attempts=attempts,
                error=error,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def list_notification_logs(self, limit: int = 100, offset: int = 0) -> list[NotificationLog]:
        with self._session() as session:
            stmt = select(NotificationLog).order_by(NotificationLog.created_at.desc())
            return list(session.exec(stmt.offset(offset).limit(limit)).all())

    def log_cycle(self, status: str, **fields) -> CycleLog:
        with self._session() as session:
            row = CycleLog(status=status, **fields)
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def list_cycle_logs(
        self,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[CycleLog]:
        with self._session() as session:
            stmt = select(CycleLog).order_by(CycleLog.timestamp.desc(), CycleLog.id.desc())
            if status is not None:
                stmt = stmt.where(CycleLog.status == status)
            return list(session.exec(stmt.offset(offset).limit(limit)).all())
