"""FastAPI application entry point."""

import logging
import os
import threading
from contextlib import asynccontextmanager

import sqlalchemy
from fastapi import FastAPI

from app.config import settings
from app.database import Base, engine
from app.middleware import RateLimitMiddleware, build_rate_limiter
from app.routes import cards, images, internal, logs, trigger

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

ALEMBIC_INI = os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini")

# Worker thread management
worker_thread = None
worker_stop_event = threading.Event()


def run_migrations():
    """Bring the schema up to date unless the runs table already exists."""
    if sqlalchemy.inspect(engine).has_table("generation_runs"):
        logger.info("Database tables already exist, skipping migrations")
        return

    if os.path.exists(ALEMBIC_INI):
        logger.info("Running database migrations...")
        from alembic import command
        from alembic.config import Config

        command.upgrade(Config(ALEMBIC_INI), "head")
        logger.info("Database migrations completed successfully")
    else:
        logger.info("alembic.ini not found, creating tables from models")
        Base.metadata.create_all(engine)


def run_worker_loop():
    """Run the worker loop in a background thread."""
    from app.worker import worker_loop

    logger.info("Starting background worker thread")
    worker_loop(worker_stop_event)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global worker_thread
    logger.info("Starting application...")

    run_migrations()

    if settings.WORKER_ENABLED:
        worker_stop_event.clear()
        worker_thread = threading.Thread(target=run_worker_loop, daemon=True)
        worker_thread.start()
        logger.info("Background worker thread started")

    yield

    logger.info("Shutting down application...")
    worker_stop_event.set()
    if worker_thread and worker_thread.is_alive():
        worker_thread.join(timeout=10)
        logger.info("Background worker thread stopped")


# Create FastAPI app
app = FastAPI(
    title="Weather Cards",
    description="Daily illustrated weather cards with an auditable generation history",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RateLimitMiddleware, limiter=build_rate_limiter())

# Include routers
app.include_router(cards.router)
app.include_router(logs.router)
app.include_router(trigger.router)
app.include_router(images.router)
app.include_router(internal.router)


@app.get("/health")
def health():
    """Health check endpoint."""
    worker_alive = bool(worker_thread and worker_thread.is_alive())
    return {"status": "healthy", "worker": "running" if worker_alive else "stopped"}
