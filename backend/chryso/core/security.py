"""Security utilities for token validation and authorization."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, cast
from uuid import UUID

from jose import JWTError, jwt

from chryso.config import settings
from chryso.core.exceptions import AuthenticationError, AuthorizationError


class UserRole(str, Enum):
    """User roles for RBAC."""

    ADMIN = "admin"
    MANAGER = "manager"
    TECHNICIAN = "technician"


# Role hierarchy: higher roles include lower role permissions
ROLE_HIERARCHY = {
    UserRole.ADMIN: {UserRole.ADMIN, UserRole.MANAGER, UserRole.TECHNICIAN},
    UserRole.MANAGER: {UserRole.MANAGER, UserRole.TECHNICIAN},
    UserRole.TECHNICIAN: {UserRole.TECHNICIAN},
}


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, built from access token claims."""

    user_id: UUID
    organization_id: UUID
    role: UserRole
    email: str | None = None


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT token.

    Args:
        token: JWT token string to decode.

    Returns:
        Decoded token payload.

    Raises:
        AuthenticationError: If token is invalid or expired.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return cast(dict[str, Any], payload)
    except JWTError as e:
        raise AuthenticationError(
            message="Invalid or expired token",
            details={"error": str(e)},
        )


def principal_from_claims(payload: dict[str, Any]) -> Principal:
    """Build a principal from decoded token claims.

    Raises:
        AuthenticationError: If a required claim is missing or malformed.
    """
    if payload.get("type", "access") != "access":
        raise AuthenticationError("Invalid token type")

    try:
        return Principal(
            user_id=UUID(str(payload["sub"])),
            organization_id=UUID(str(payload["org"])),
            role=UserRole(payload.get("role", UserRole.TECHNICIAN.value)),
            email=payload.get("email"),
        )
    except (KeyError, ValueError) as e:
        raise AuthenticationError(
            message="Invalid token claims",
            details={"error": str(e)},
        )


def require_role(user_role: UserRole, required_role: UserRole) -> None:
    """Require a minimum role level.

    Args:
        user_role: The user's actual role.
        required_role: The minimum required role.

    Raises:
        AuthorizationError: If the user's role is insufficient.
    """
    allowed_roles = ROLE_HIERARCHY.get(user_role, set())
    if required_role not in allowed_roles:
        raise AuthorizationError(
            message=f"Role {required_role.value} or higher required",
            details={"user_role": user_role.value, "required_role": required_role.value},
        )
