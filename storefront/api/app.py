"""FastAPI application factory.

Run with: storefront-api  (or uvicorn storefront.api.app:create_app --factory)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from storefront.api.jobs import run_transfer_sweeps
from storefront.api.middleware import install_middleware
from storefront.api.routes import ROUTERS
from storefront.api.services import Services
from storefront.config import Settings, settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Root logger at the configured level. Safe to call more than once."""
    logging.basicConfig(level=(level or settings.log_level).upper(), format=LOG_FORMAT)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Runs the bank transfer expiry sweep while the app is up."""
    services = app.state.services
    interval = services.settings.transfer_sweep_seconds
    sweep = asyncio.create_task(run_transfer_sweeps(services, interval)) if interval > 0 else None
    app.state.transfer_sweep = sweep
    yield
    if sweep is not None:
        sweep.cancel()
        try:
            await sweep
        except asyncio.CancelledError:
            logger.debug("Transfer sweep stopped")


def create_app(services: Services | None = None, cfg: Settings | None = None) -> FastAPI:
    """Build the storefront API. Tests pass pre-built ``services``."""
    cfg = cfg or (services.settings if services is not None else settings)
    app = FastAPI(title=cfg.store_name, version="1.0.0", lifespan=lifespan)
    app.state.services = services or Services.from_settings(cfg)
    install_middleware(app, cfg)
    for router in ROUTERS:
        app.include_router(router)

    @app.get("/health")
    async def health():
        hub = app.state.services.hub
        return {"status": "ok", "realtimeConnections": hub.connection_count}

    logger.info("Storefront API ready (%s)", cfg.site_url)
    return app


def main() -> None:
    configure_logging()
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_config=None)
