"""PostgreSQL credential store.

This module implements the CredentialStore protocol using asyncpg for
async PostgreSQL access. It provides:
- Connection pooling for production use
- Upserts so a re-registered token replaces the old one
- Durable storage with no expiry

The repository expects the schema from migrations/001_user_settings.sql
to be applied before use.

Source:
- migrations/001_user_settings.sql (schema definition)
- src/relay/store/models.py (CredentialStore protocol)
"""

import logging
from typing import Any, Optional

import asyncpg

from src.relay.store.models import CredentialScope


logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Raised when a database operation fails.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class PostgresCredentialStore:
    """PostgreSQL implementation of the CredentialStore protocol.

    Values are never logged; log records carry only the scope and the
    user id.

    Example:
        >>> async with PostgresCredentialStore("postgresql://...") as store:
        ...     token = await store.get(CredentialScope.CREDENTIAL, "U123")
    """

    def __init__(
        self,
        connection_string: str,
        min_pool_size: int = 1,
        max_pool_size: int = 5,
    ):
        """Initialize the store with connection parameters.

        Args:
            connection_string: PostgreSQL connection URL.
            min_pool_size: Minimum number of connections in the pool.
            max_pool_size: Maximum number of connections in the pool.
        """
        self.connection_string = connection_string
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool, raising if not connected.

        Raises:
            DatabaseError: If the pool is not initialized.
        """
        if self._pool is None:
            raise DatabaseError(
                "Database pool not initialized. Call connect() first."
            )
        return self._pool

    async def connect(self) -> None:
        """Initialize the connection pool.

        Raises:
            DatabaseError: If connection fails.
        """
        if self._pool is not None:
            logger.warning("Connection pool already initialized")
            return

        try:
            logger.info(
                "Connecting to PostgreSQL",
                extra={
                    "min_pool_size": self.min_pool_size,
                    "max_pool_size": self.max_pool_size,
                },
            )
            self._pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
            )
            logger.info("PostgreSQL connection pool established")
        except Exception as e:
            logger.error(
                "Failed to connect to PostgreSQL",
                extra={"error": str(e)},
            )
            raise DatabaseError(
                f"Failed to connect to PostgreSQL: {e}",
                original_error=e,
            ) from e

    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            logger.info("Closing PostgreSQL connection pool")
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> "PostgresCredentialStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    async def get(self, scope: CredentialScope, user_id: str) -> Optional[str]:
        """Get a stored value.

        Raises:
            DatabaseError: If the query fails.
        """
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(
                    """
                    SELECT value
                    FROM user_settings
                    WHERE scope = $1 AND user_id = $2
                    """,
                    scope.value,
                    user_id,
                )
        except DatabaseError:
            raise
        except Exception as e:
            logger.error(
                "Failed to read user setting",
                extra={"scope": scope.value, "user_id": user_id, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to read {scope.value} for {user_id}: {e}",
                original_error=e,
            ) from e

    async def put(self, scope: CredentialScope, user_id: str, value: str) -> None:
        """Insert or replace a value.

        Raises:
            DatabaseError: If the write fails.
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO user_settings (scope, user_id, value, updated_at)
                    VALUES ($1, $2, $3, NOW())
                    ON CONFLICT (scope, user_id)
                    DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
                    """,
                    scope.value,
                    user_id,
                    value,
                )
            logger.info(
                "Stored user setting",
                extra={"scope": scope.value, "user_id": user_id},
            )
        except DatabaseError:
            raise
        except Exception as e:
            logger.error(
                "Failed to store user setting",
                extra={"scope": scope.value, "user_id": user_id, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to store {scope.value} for {user_id}: {e}",
                original_error=e,
            ) from e

    async def delete(self, scope: CredentialScope, user_id: str) -> None:
        """Delete a value if present.

        Raises:
            DatabaseError: If the delete fails.
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    DELETE FROM user_settings
                    WHERE scope = $1 AND user_id = $2
                    """,
                    scope.value,
                    user_id,
                )
            logger.info(
                "Deleted user setting",
                extra={"scope": scope.value, "user_id": user_id},
            )
        except DatabaseError:
            raise
        except Exception as e:
            logger.error(
                "Failed to delete user setting",
                extra={"scope": scope.value, "user_id": user_id, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to delete {scope.value} for {user_id}: {e}",
                original_error=e,
            ) from e

    async def health_check(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.warning(
                "Database health check failed",
                extra={"error": str(e)},
            )
            return False
