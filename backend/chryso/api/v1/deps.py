"""Shared API dependencies: authentication, role checks and services."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from chryso.core.security import Principal, UserRole, decode_token, principal_from_claims
from chryso.services.retention_scheduler import RetentionScheduler

# Tokens are issued by the main Chryso API; this service only validates them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_principal(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Validate the bearer token and return the caller."""
    payload = decode_token(token)
    return principal_from_claims(payload)


async def require_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    """Require admin role."""
    if principal.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return principal


async def require_manager(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    """Require manager or admin role."""
    if principal.role not in (UserRole.ADMIN, UserRole.MANAGER):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Manager access required",
        )
    return principal


def get_retention_scheduler(request: Request) -> RetentionScheduler:
    """The scheduler created by the application lifespan."""
    scheduler = getattr(request.app.state, "retention_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Retention scheduler is not available",
        )
    return scheduler
