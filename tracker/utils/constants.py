"""Shared constants and defaults."""

# Refresh intervals offered on the settings page
VALID_REFRESH_INTERVALS = [30, 60, 300]

STATUS_NEW = "new"
STATUS_ACTIVE = "active"
STATUS_CLOSED = "closed"
POSITION_STATUSES = [STATUS_NEW, STATUS_ACTIVE, STATUS_CLOSED]

SIDE_LONG = "LONG"
SIDE_SHORT = "SHORT"

# Dedup priority: lower wins
DEDUP_PRIORITY: dict[str, int] = {
    STATUS_ACTIVE: 0,
    STATUS_NEW: 1,
    STATUS_CLOSED: 2,
}

# "status" sort key: new first, then active, then closed
STATUS_SORT_RANK: dict[str, int] = {
    STATUS_NEW: 0,
    STATUS_ACTIVE: 1,
    STATUS_CLOSED: 2,
}

VIEW_TABS = ["active", "new", "closed", "hidden", "all"]
PAGE_SIZE = 10

DEFAULT_ADDRESS_COLOR = "#3b82f6"

# Maintenance-margin approximation used when the exchange omits liquidationPx
LIQUIDATION_MARGIN_FACTOR = 0.9
