"""
Health check endpoint.
"""

import os
import time

from fastapi import APIRouter

from app.models.schemas import HealthResponse
from app.utils.config import get_settings

router = APIRouter()

_started = time.monotonic()

# Health checks may use any method
HEALTH_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/health", methods=HEALTH_METHODS, response_model=HealthResponse)
async def health_check():
    """Liveness of the ingestion process."""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        service=settings.service_name,
        pid=os.getpid(),
        uptime=round(time.monotonic() - _started, 3),
    )
