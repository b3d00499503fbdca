"""Health check endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter

from minechat.api.dependencies import StorageDep
from minechat.core.config import settings
from minechat.core.timeutils import utcnow
from minechat.services.channels.messenger import get_messenger_adapter
from minechat.services.llm.provider import get_llm_provider

logger = structlog.get_logger()

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
@router.get("/")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "environment": settings.app_env,
    }


@router.get("/ready")
async def readiness_check(storage: StorageDep) -> dict[str, Any]:
    """Readiness check - verifies storage is reachable and reports provider setup."""
    checks = {
        "storage": False,
        "messenger_configured": get_messenger_adapter().is_configured,
        "llm_configured": get_llm_provider().is_configured,
    }

    try:
        checks["storage"] = await storage.health_check()
    except Exception as e:
        logger.warning("Storage health check failed", error=str(e))

    return {
        "status": "ready" if checks["storage"] else "degraded",
        "timestamp": utcnow().isoformat(),
        "checks": checks,
    }


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Liveness check - basic endpoint for kubernetes probes."""
    return {"status": "alive"}
