"""Database connection management for eduvault services.

Provides connection pooling, health checks, and repository base classes
for the PostgreSQL-backed cache tier and retention record store.
"""

from .connection import (
    DatabaseConfig,
    ConnectionManager,
)
from .repository import (
    BaseRepository,
    RepositoryError,
    NotFoundError,
    DuplicateError,
    StoreUnavailableError,
)

__all__ = [
    "DatabaseConfig",
    "ConnectionManager",
    "BaseRepository",
    "RepositoryError",
    "NotFoundError",
    "DuplicateError",
    "StoreUnavailableError",
]
