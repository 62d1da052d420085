"""
Docling Ingestion Service - health surface

The ingestion pipeline itself runs in ``domains.document_ingest.service``;
this app only answers ``GET /health`` and is served from a background
thread of that process.
"""

import sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from app.utils.config import get_settings
from app.api import health

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO"):
    """Route loguru output to stdout at ``level``."""
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level.upper())


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Document ingestion pipeline health surface",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.log_level == "DEBUG" else "An error occurred"
            }
        )

    app.include_router(health.router, tags=["Health"])
    return app


app = create_app()
