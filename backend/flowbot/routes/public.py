# /flowbot/routes/public.py

from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest

from flowbot.config.settings import settings
from flowbot.utils.dependencies import verify_api_key

# Unauthenticated service endpoints: root banner and health check. The
# /metrics endpoint is protected by the API key when one is configured.

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Flowbot Conversation Engine",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment,
    }


@router.get("/health", summary="Basic Health Check")
async def health_check():
    """Basic health check for load balancers."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc)}


@router.get("/metrics", tags=["Monitoring"])
async def metrics(_: None = Depends(verify_api_key)):
    """Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type="text/plain")
