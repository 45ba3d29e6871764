"""
Request dependencies for FastAPI routes: service lookup and admin access.
"""

import secrets
from typing import Optional
from fastapi import Depends, Header, HTTPException, Request, status

from ..services.container import ServiceContainer
from ..utils.logger import get_logger

logger = get_logger("dependencies")


def get_services(request: Request) -> ServiceContainer:
    """
    Get the service container built during application startup.

    Raises:
        HTTPException: If the application has not finished starting
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up"
        )
    return services


async def require_admin(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
    services: ServiceContainer = Depends(get_services),
) -> None:
    """
    Check the shared admin key sent in the ``X-Admin-Key`` header.

    Raises:
        HTTPException: 403 if admin access is disabled, 401 on a wrong key
    """
    expected = services.settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin endpoints are disabled"
        )

    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        logger.warning("Rejected admin request with missing or invalid key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key"
        )


ServicesDep = Depends(get_services)
AdminDep = Depends(require_admin)
