# /flowbot/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from flowbot.config.settings import settings
from flowbot.services.flow_store import flow_store
from flowbot.utils.logging import setup_logging
from flowbot.workflows.engine import bot_engine

# This file manages the application's lifespan: logging setup and, in
# standalone deployments, loading tenant flows from disk.

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()

    logger.info("Application starting up...")

    if settings.flows_file:
        loaded = flow_store.load_file(settings.flows_file)
        logger.info(f"Loaded {loaded} flows from {settings.flows_file}.")

    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")
    bot_engine.clear_flow_cache()
