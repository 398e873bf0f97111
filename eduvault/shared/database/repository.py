"""Base repository pattern for PostgreSQL-backed stores.

Provides common CRUD operations and maps driver failures onto the
platform's error taxonomy: connection loss and statement timeouts become
StoreUnavailableError (transient, retryable), integrity violations become
DuplicateError.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Generic, List, Optional, Sequence, TYPE_CHECKING, TypeVar

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.pool import PoolError

if TYPE_CHECKING:
    from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class NotFoundError(RepositoryError):
    """Entity not found in database."""
    pass


class DuplicateError(RepositoryError):
    """Duplicate entity already exists."""
    pass


class StoreUnavailableError(RepositoryError):
    """Transient store failure: connection lost, timeout, pool exhausted."""
    pass


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common operations.

    Subclasses implement entity-specific conversion while inheriting:
    - Connection management
    - Error translation
    - Logging patterns
    """

    def __init__(
        self,
        connection_manager: "ConnectionManager",
        table_name: str,
    ):
        """Initialize repository.

        Args:
            connection_manager: Database connection manager
            table_name: Name of the database table
        """
        self.connection_manager = connection_manager
        self.table_name = table_name

        logger.info(
            "REPOSITORY_INITIALIZED",
            extra={"table_name": table_name}
        )

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Convert database row to entity."""
        pass

    @abstractmethod
    def _entity_to_params(self, entity: T) -> Dict[str, Any]:
        """Convert entity to a column -> value mapping."""
        pass

    @contextmanager
    def _translate_errors(self, operation: str):
        """Map psycopg2 failures onto repository errors."""
        try:
            yield
        except pg_errors.UniqueViolation as e:
            raise DuplicateError(f"{self.table_name}.{operation}: {e}") from e
        except (psycopg2.OperationalError, psycopg2.InterfaceError, pg_errors.QueryCanceled) as e:
            logger.warning(
                "STORE_UNAVAILABLE",
                extra={
                    "table_name": self.table_name,
                    "operation": operation,
                    "error_type": type(e).__name__,
                }
            )
            raise StoreUnavailableError(f"{self.table_name}.{operation}: {e}") from e
        except PoolError as e:
            raise StoreUnavailableError(f"{self.table_name}.{operation}: {e}") from e
        except psycopg2.Error as e:
            raise RepositoryError(f"{self.table_name}.{operation}: {e}") from e

    def _fetchone(self, operation: str, query: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        with self._translate_errors(operation):
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, tuple(params))
                    return cur.fetchone()

    def _fetchall(self, operation: str, query: str, params: Sequence[Any] = ()) -> List[tuple]:
        with self._translate_errors(operation):
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, tuple(params))
                    return cur.fetchall()

    def _execute(self, operation: str, query: str, params: Sequence[Any] = ()) -> int:
        """Execute a write and commit.

        Returns:
            Affected row count
        """
        with self._translate_errors(operation):
            with self.connection_manager.get_connection() as conn:
                try:
                    with conn.cursor() as cur:
                        cur.execute(query, tuple(params))
                        rowcount = cur.rowcount
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
                return rowcount

    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID.

        Returns:
            Entity if found, None otherwise
        """
        row = self._fetchone(
            "find_by_id",
            f"SELECT * FROM {self.table_name} WHERE id = %s",
            (entity_id,),
        )
        if row is None:
            return None
        return self._row_to_entity(row)

    def get(self, entity_id: str) -> T:
        """Find entity by ID or raise NotFoundError."""
        entity = self.find_by_id(entity_id)
        if entity is None:
            raise NotFoundError(f"{self.table_name}: {entity_id}")
        return entity

    def save(self, entity: T) -> None:
        """Insert or update an entity by id."""
        params = self._entity_to_params(entity)
        columns = list(params.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        update_clause = ", ".join(f"{col} = EXCLUDED.{col}" for col in columns if col != "id")

        query = f"""
            INSERT INTO {self.table_name} ({", ".join(columns)})
            VALUES ({placeholders})
            ON CONFLICT (id) DO UPDATE SET {update_clause}
        """
        self._execute("save", query, list(params.values()))

    def delete(self, entity_id: str) -> bool:
        """Delete entity by ID.

        Returns:
            True if deleted, False if not found
        """
        deleted = self._execute(
            "delete",
            f"DELETE FROM {self.table_name} WHERE id = %s",
            (entity_id,),
        )
        return deleted > 0

    def count(self) -> int:
        row = self._fetchone("count", f"SELECT COUNT(*) FROM {self.table_name}")
        return row[0] if row else 0
