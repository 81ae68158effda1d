"""
EspGrow Backend Application

FastAPI application that keeps a live mirror of the controller and exposes
it to the web UI.
"""

import os
import sys
from contextlib import asynccontextmanager

import log_config  # noqa: F401
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

# Add core to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Import API router
from api import router as api_router

from core.espgrow.context import ControllerContext
from core.espgrow.controller_client import ControllerClient
from core.espgrow.exceptions import ConfigurationError
from core.espgrow.settings import load_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan manager for startup/shutdown."""
    # Startup
    logger.info("EspGrow backend starting")

    context = None
    try:
        settings = load_settings()
    except ConfigurationError as e:
        settings = None
        logger.warning(f"⚠️ Controller sync disabled: {e}")

    if settings:
        context = ControllerContext(settings)
        context.start()
        app.state.context = context
        app.state.controller_client = ControllerClient(settings.http_base_url)
        logger.info(f"🌱 Syncing with controller at {settings.controller_url}")

    yield

    # Shutdown
    logger.info("EspGrow backend shutting down")
    if context:
        await context.stop()


# Create FastAPI application
app = FastAPI(
    title="EspGrow API",
    description="Live mirror of an EspGrow environment controller",
    version="0.1.0",
    lifespan=lifespan,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions gracefully."""
    import traceback

    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    logger.error(f"Unhandled exception: {exc}")
    logger.error(f"Request path: {request.url.path}")
    logger.error(f"Stack trace:\n{tb_str}")

    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": type(exc).__name__,
            "message": "Internal server error",
        },
    )


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


# For development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
