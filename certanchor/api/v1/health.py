"""
Health check API endpoints.
Provides health status and service information.
"""

import time
from fastapi import APIRouter

from ... import __version__
from ...core.dependencies import ServicesDep
from ...services.container import ServiceContainer
from ...utils.logger import get_logger

logger = get_logger("health")

router = APIRouter(
    prefix="/api/v1",
    tags=["health"],
    responses={
        404: {"description": "Not found"},
        500: {"description": "Internal server error"}
    }
)


@router.get(
    "/health",
    summary="Health Check",
    description="Returns the health status of the CertAnchor service",
    response_description="Service health information"
)
async def health_check(services: ServiceContainer = ServicesDep):
    """
    Health check endpoint that returns service status and basic information.

    Returns:
        Dictionary containing service status, name, and timestamp
    """
    try:
        await services.db.command("ping")

        return {
            "status": "ok",
            "service": services.settings.app_name,
            "timestamp": int(time.time()),
            "version": __version__,
            "database": "connected",
            "ledger": services.anchor.network_name,
            "ledger_mode": "simulated" if services.anchor.is_simulated else "live",
        }

    except Exception as e:
        logger.error(f"Health check failed: {e}")

        return {
            "status": "error",
            "service": services.settings.app_name,
            "timestamp": int(time.time()),
            "version": __version__,
            "database": "disconnected",
            "error": str(e)
        }


@router.get(
    "/health/ready",
    summary="Readiness Check",
    description="Returns readiness status for container health checks",
    response_description="Service readiness information"
)
async def readiness_check(services: ServiceContainer = ServicesDep):
    """
    Readiness check endpoint for container orchestration.
    Reports the database and the ledger wallet separately; an unready
    wallet only delays anchoring, so the service stays ready.
    """
    try:
        await services.db.command("ping")
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return {
            "status": "not_ready",
            "service": services.settings.app_name,
            "timestamp": int(time.time()),
            "dependencies": {"database": "unhealthy", "ledger": "unknown"}
        }

    try:
        wallet = await services.anchor.wallet_state()
        ledger = "healthy" if wallet.connected else "disconnected"
    except Exception as e:
        logger.warning(f"Ledger check failed during readiness probe: {e}")
        ledger = "unhealthy"

    return {
        "status": "ready",
        "service": services.settings.app_name,
        "timestamp": int(time.time()),
        "dependencies": {"database": "healthy", "ledger": ledger}
    }


@router.get(
    "/health/live",
    summary="Liveness Check",
    description="Returns liveness status for container health checks",
    response_description="Service liveness information"
)
async def liveness_check():
    return {
        "status": "alive",
        "timestamp": int(time.time())
    }
