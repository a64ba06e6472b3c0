"""
Terratone Relay - smart home event pipeline

FastAPI application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.core.config import get_settings
from backend.app.core.logging import setup_logging, get_logger
from backend.app.core.pipeline import build_pipeline
from backend.app.api import integration
from backend.app.middleware.trace import TracingMiddleware
from backend.app.workers.scheduled import start_scheduler, stop_scheduler

settings = get_settings()

# Initialize logging
setup_logging(level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    pipeline = build_pipeline(settings)
    app.state.pipeline = pipeline

    await pipeline.ledger.connect()
    if not await pipeline.spatial.connect():
        logger.warning("Spatial layer unreachable at startup; spatial queries return empty results")

    poll_task = None
    if settings.smart_home_poll_enabled and pipeline.smart_home:
        poll_task = start_scheduler(
            settings.smart_home_poll_interval_seconds,
            pipeline.smart_home.poll,
        )
        logger.info(
            f"Smart home poller started "
            f"(interval={settings.smart_home_poll_interval_seconds}s, topic={pipeline.smart_home.topic})"
        )

    yield
    # Shutdown
    logger.info(f"Shutting down {settings.app_name}")

    if poll_task:
        await stop_scheduler(poll_task)

    await pipeline.bus.drain()
    await pipeline.rituals.drain()


app = FastAPI(
    title=settings.app_name,
    description="Normalizes smart home events, reacts to them and relays them to partner systems",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(TracingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
)

app.include_router(
    integration.router,
    prefix=settings.integration_prefix,
    tags=["Integration"],
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Smart home event pipeline and partner relay",
        "docs": "/docs",
    }
