import os

# Point the module-level engine at an in-memory database before tracker imports
os.environ.setdefault("HT_DATABASE_URL", "sqlite://")
os.environ.setdefault("HT_SCHEDULER_ENABLED", "false")
os.environ.setdefault("HT_RESEND_API_KEY", "")

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from tracker.database import create_db_and_tables
from tracker.services.store import TrackedPositionStore


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return TrackedPositionStore(engine)
