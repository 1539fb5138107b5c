import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pickflow import models  # noqa: F401  (register tables on Base.metadata)
from pickflow.config import settings
from pickflow.database import Base, engine
from pickflow.events import bus, register_default_subscribers
from pickflow.middleware.exceptions import register_exception_handlers
from pickflow.routers import (
    batches,
    combined_picking,
    health,
    loads,
    orders,
    pick_items,
    pick_lists,
)
from pickflow.utils.redis import close_redis

logger = logging.getLogger("pickflow")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables (development), wire event subscribers, close Redis on exit."""
    if settings.create_tables_on_startup:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    register_default_subscribers(publish_redis=settings.publish_events_to_redis)
    logger.info("pickflow started (%s)", settings.environment)
    try:
        yield
    finally:
        bus.clear()
        await close_redis()


app = FastAPI(
    title="pickflow",
    description="Nursery pick-list allocation and dispatch service",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
app.include_router(batches.router, prefix="/api/batches", tags=["batches"])
app.include_router(pick_lists.router, prefix="/api/pick-lists", tags=["pick-lists"])
app.include_router(pick_items.router, prefix="/api/pick-items", tags=["pick-items"])
app.include_router(combined_picking.router, prefix="/api/combined-picking", tags=["combined-picking"])
app.include_router(loads.router, prefix="/api/loads", tags=["loads"])
