"""
Plugin sync service — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import config
from database.session import init_models
from plugins.registry import initialize_plugins
from plugins.routes import router as plugins_router
from plugins.scheduler import PluginSyncScheduler

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "aiosqlite"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Plugin Sync Service",
        version="1.0.0",
        description="Connect wearables and trackers, and keep their data in sync.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    app.include_router(plugins_router, prefix="/api/v1/plugins")

    app.state.scheduler = PluginSyncScheduler()

    @app.on_event("startup")
    async def on_startup():
        logger.info("Creating plugin tables…")
        await init_models()

        logger.info("Registering plugins…")
        registry = initialize_plugins()
        if not registry.plugin_ids():
            logger.warning("No plugins configured — nothing will be synced")

        if config.plugin_sync_enabled:
            app.state.scheduler.start(config.plugin_sync_interval_seconds)
        else:
            logger.info("Plugin sync scheduler disabled on this instance")

        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.scheduler.shutdown()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
