#!/usr/bin/env python
"""FastAPI server for the clipflow upload and playback API."""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

# Add src directory to Python path for imports
src_dir = Path(__file__).parent.parent
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import AppServices, build_services
from api.routers import core, uploads, videos
from utils.config import load_config, validate_config
from utils.logging import setup_logging

logger = logging.getLogger(__name__)


def create_app(config: Optional[dict] = None, services: Optional[AppServices] = None) -> FastAPI:
    """Build the application.

    Args:
        config: Configuration dict (loaded from the environment if omitted)
        services: Pre-built collaborators (tests); built from config if omitted
    """
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for error in validate_config(config):
            logger.warning(f"Configuration problem: {error}")

        app.state.services = services or build_services(config)
        await app.state.services.store.connect()
        logger.info("clipflow API started")
        try:
            yield
        finally:
            await app.state.services.uploads.shutdown()
            await app.state.services.store.close()
            logger.info("clipflow API stopped")

    app = FastAPI(title="clipflow API", version="1.0.0", lifespan=lifespan)
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get("cors_origins", []),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(core.router)
    app.include_router(uploads.router)
    app.include_router(videos.router)

    return app


if __name__ == "__main__":
    import uvicorn

    config = load_config()
    setup_logging(config["log_level"], config["log_json"])
    uvicorn.run(create_app(config), host="0.0.0.0", port=8000, log_level="info")
