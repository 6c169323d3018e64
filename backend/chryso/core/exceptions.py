"""Custom exceptions for Chryso Forms."""

from typing import Any, Dict, Optional


class ChrysoException(Exception):
    """Base exception for all Chryso Forms errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)


class AuthenticationError(ChrysoException):
    """Raised when authentication fails."""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details, status_code=401)


class AuthorizationError(ChrysoException):
    """Raised when the caller lacks required permissions."""

    def __init__(
        self,
        message: str = "Insufficient permissions",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details, status_code=403)


class NotFoundError(ChrysoException):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        message: str = "Resource not found",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details, status_code=404)


class ConflictError(ChrysoException):
    """Raised when a resource collides with an existing one."""

    def __init__(
        self,
        message: str = "Resource already exists",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details, status_code=409)


class ValidationError(ChrysoException):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str = "Validation failed",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details, status_code=422)


class StorageError(ChrysoException):
    """Raised when a database or archive write fails."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details, status_code=500)


class ConfigurationError(ChrysoException):
    """Raised when a retention policy cannot be executed as configured."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details, status_code=500)
