"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tracker.config import settings
from tracker.database import create_db_and_tables
from tracker.utils.logging import setup_logging
from tracker.api import addresses, app_settings, emails, orders, positions, system, view


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()
    from tracker.engine.poll_cycle import init_tracker
    init_tracker()

    from tracker.engine.scheduler import start_scheduler, stop_scheduler
    if settings.scheduler_enabled:
        start_scheduler()

    yield

    stop_scheduler()


app = FastAPI(
    title="Hyperliquid Position Tracker",
    description="Tracks open positions of Hyperliquid addresses and alerts on new ones",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(system.router)
app.include_router(app_settings.router)
app.include_router(addresses.router)
app.include_router(emails.router)
app.include_router(positions.router)
app.include_router(view.router)
app.include_router(orders.router)
