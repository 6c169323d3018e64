"""Core utilities for Chryso Forms."""

from chryso.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ChrysoException,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from chryso.core.logging import get_logger, setup_logging

__all__ = [
    "get_logger",
    "setup_logging",
    "ChrysoException",
    "AuthenticationError",
    "AuthorizationError",
    "ConfigurationError",
    "ConflictError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
]
