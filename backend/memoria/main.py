"""Application bootstrap for the Memoria storage API.

This module wires the FastAPI application and owns the storage provider's lifecycle.

Functions:
    lifespan(app: FastAPI): Build and initialize the storage provider on startup, close it on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from memoria.api import api_router
from memoria.core.config import load_settings
from memoria.core.logging import configure_logging
from memoria.services.factory import create_storage_provider

_LOGGER = logging.getLogger(__name__)

settings = load_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    provider = create_storage_provider(settings)
    await provider.initialize()
    app.state.storage = provider
    _LOGGER.info(
        "Storage API started (relational=%s, vector=%s)",
        settings.relational_provider.value,
        settings.vector_provider.value,
    )
    try:
        yield
    finally:
        app.state.storage = None
        await provider.close()


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.include_router(api_router)
