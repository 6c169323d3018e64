"""Pytest configuration and shared fixtures."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest

from chryso.core.security import Principal, UserRole


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """Create a reusable async mock database session.

    Provides a pre-configured AsyncMock with common database operation methods.
    """
    session = AsyncMock()

    # Mock common session methods
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.delete = MagicMock()
    session.flush = AsyncMock()

    # Mock scalars pattern commonly used with SQLAlchemy
    mock_scalars = MagicMock()
    mock_scalars.all = MagicMock(return_value=[])
    mock_scalars.first = MagicMock(return_value=None)
    mock_scalars.one_or_none = MagicMock(return_value=None)

    mock_result = MagicMock()
    mock_result.scalars = MagicMock(return_value=mock_scalars)
    mock_result.scalar = MagicMock(return_value=None)
    mock_result.scalar_one_or_none = MagicMock(return_value=None)
    mock_result.rowcount = 1

    session.execute.return_value = mock_result

    return session


@pytest.fixture
def session_factory(mock_db_session):
    """Callable returning an async context manager that yields the mock session."""
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=mock_db_session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


# ============================================================================
# Time Fixtures
# ============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    """Return a fixed datetime for deterministic testing.

    2024-03-01 is a Friday.
    """
    return datetime(2024, 3, 1, 2, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Authentication Fixtures
# ============================================================================


@pytest.fixture
def organization_id() -> UUID:
    return uuid4()


@pytest.fixture
def admin_principal(organization_id) -> Principal:
    """Authenticated admin of the test organization."""
    return Principal(
        user_id=uuid4(),
        organization_id=organization_id,
        role=UserRole.ADMIN,
        email="admin@example.com",
    )


@pytest.fixture
def manager_principal(organization_id) -> Principal:
    """Authenticated manager of the test organization."""
    return Principal(
        user_id=uuid4(),
        organization_id=organization_id,
        role=UserRole.MANAGER,
        email="manager@example.com",
    )


@pytest.fixture
def technician_principal(organization_id) -> Principal:
    """Authenticated technician of the test organization."""
    return Principal(
        user_id=uuid4(),
        organization_id=organization_id,
        role=UserRole.TECHNICIAN,
        email="tech@example.com",
    )
