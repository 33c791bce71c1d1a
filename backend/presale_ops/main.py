"""
HTTP entrypoint.

Run with:
    uvicorn --factory presale_ops.main:create_app
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from solana.rpc.async_api import AsyncClient

from presale_ops.api import health, presale, rpc_relay
from presale_ops.core.config import PresaleConfig, Settings, configure_logging, get_settings
from presale_ops.services.reader import PresaleReader
from presale_ops.workers.poller import RepeatingTask

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the presale poller on startup, stop it and close clients on shutdown."""
    app.state.poller.start()
    logger.info("Started presale poller")
    yield
    await app.state.poller.stop()
    await app.state.solana_client.close()
    await app.state.http_client.aclose()


def create_app(
    settings: Optional[Settings] = None,
    solana_client: Optional[AsyncClient] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    config = PresaleConfig.from_settings(settings)

    solana_client = solana_client or AsyncClient(config.rpc_url)
    reader = PresaleReader(solana_client, config)

    app = FastAPI(
        title=settings.app_name,
        description="""
    Presale Operations API

    Read-only view of one on-chain presale:
    - Cached presale record and vault balance, refreshed on a fixed interval
    - Buyer contribution totals and wallet balances
    - Derived program addresses
    - JSON-RPC relay to the configured upstream nodes

    Writes are not exposed here; they are signed client-side.
    """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.settings = settings
    app.state.config = config
    app.state.solana_client = solana_client
    app.state.http_client = http_client or httpx.AsyncClient(timeout=30.0)
    app.state.reader = reader
    app.state.poller = RepeatingTask(
        reader.refresh_all, config.poll_interval_seconds, name="presale_poller"
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router)
    app.include_router(presale.router, prefix=settings.api_v1_prefix)
    app.include_router(rpc_relay.router)

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
            "api": f"{settings.api_v1_prefix}/presale",
            "presale": str(config.presale_address),
        }

    return app
