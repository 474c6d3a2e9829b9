"""Database models."""

from tracker.models.wallet_address import WalletAddress
from tracker.models.tracked_position import TrackedPosition, make_position_key
from tracker.models.position_history import PositionHistory
from tracker.models.hidden_position import HiddenPosition
from tracker.models.notification import NotificationEmail, NotificationLog
from tracker.models.cycle_log import CycleLog

__all__ = [
    "WalletAddress",
    "TrackedPosition",
    "make_position_key",
    "PositionHistory",
    "HiddenPosition",
    "NotificationEmail",
    "NotificationLog",
    "CycleLog",
]
