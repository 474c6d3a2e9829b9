"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from tracker.config import settings

logger = logging.getLogger(__name__)

# Columns added to tracked_position after the first release; older databases
# are brought forward on startup.
_TRACKED_POSITION_COLUMNS = {
    "status": "VARCHAR DEFAULT 'active'",
    "closed_at": "TIMESTAMP",
    "final_pnl": "FLOAT",
    "holding_duration_minutes": "INTEGER",
    "last_updated": "TIMESTAMP",
    "leverage": "FLOAT",
}


def build_engine(database_url: str) -> Engine:
    # SQLite needs check_same_thread=False; PostgreSQL does not
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=False, connect_args=connect_args)


engine = build_engine(settings.database_url)


def _run_migrations(target: Engine):
    """Run lightweight schema migrations for columns added after launch."""
    inspector = inspect(target)

    if "tracked_position" not in inspector.get_table_names():
        return

    columns = {col["name"] for col in inspector.get_columns("tracked_position")}
    missing = {name: ddl for name, ddl in _TRACKED_POSITION_COLUMNS.items() if name not in columns}
    if not missing:
        return

    with target.connect() as conn:
        for name, ddl in missing.items():
            logger.info(f"Migrating: adding tracked_position.{name}")
            conn.execute(text(f"ALTER TABLE tracked_position ADD COLUMN {name} {ddl}"))
        if "status" in missing:
            # Pre-lifecycle rows only knew is_active; closed rows need a closed_at
            conn.execute(text(
                "UPDATE tracked_position SET status = 'closed', "
                "closed_at = COALESCE(closed_at, last_updated, created_at) "
                "WHERE is_active = false"
            ))
        conn.commit()


def create_db_and_tables(target: Engine | None = None):
    """Create all tables. Called on startup."""
    # Import models so they are registered with SQLModel
    from tracker import models  # noqa: F401

    target = target or engine
    SQLModel.metadata.create_all(target)
    _run_migrations(target)

