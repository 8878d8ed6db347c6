"""
Postgres Connection Pool Manager

Async connection pooling for Postgres-protocol databases. Used both for the
metadata database (projects, credentials, user attributes) and by the
Postgres / Redshift warehouse clients.
"""

import logging
from typing import Optional, Any, Dict, List
from contextlib import asynccontextmanager
import asyncio

import asyncpg
from asyncpg import Pool
from asyncpg.exceptions import (
    TooManyConnectionsError,
    CannotConnectNowError,
)

from warehouse_query.config import settings

logger = logging.getLogger(__name__)


class PostgresConnectionPool:
    """
    Lazily created asyncpg pool with retry on transient connect failures.
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_size: int = 1,
        max_size: int = 10,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        command_timeout: Optional[float] = 60.0,
        ssl: Optional[str] = None,
        server_settings: Optional[Dict[str, str]] = None,
        pool_name: str = "default",
    ):
        """
        Initialize Postgres connection pool.

        Args:
            host: Database host
            port: Database port
            database: Database name
            user: Username
            password: Password
            min_size: Minimum pool size
            max_size: Maximum pool size
            max_retries: Max attempts for transient connect failures
            retry_delay: Base delay between retries in seconds
            command_timeout: Default per-statement timeout in seconds
            ssl: libpq-style sslmode ("disable", "prefer", "require", ...)
            server_settings: Session parameters applied to every connection
            pool_name: Descriptive name for logging (e.g. "metadata", a project uuid)
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_size = min_size
        self.max_size = max_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.command_timeout = command_timeout
        self.ssl = ssl
        self.server_settings = dict(server_settings or {})
        self.pool_name = pool_name

        self._pool: Optional[Pool] = None
        self._init_lock = asyncio.Lock()

        logger.debug(
            f"[{pool_name}] Postgres pool configured: {user}@{host}:{port}/{database}, "
            f"size={min_size}-{max_size}"
        )

    @property
    def initialized(self) -> bool:
        return self._pool is not None

    async def initialize(self):
        """Create the underlying asyncpg pool (once)."""
        if self._pool is not None:
            return

        async with self._init_lock:
            if self._pool is not None:
                return

            logger.info(f"[{self.pool_name}] Creating Postgres connection pool...")

            for attempt in range(self.max_retries):
                try:
                    self._pool = await asyncpg.create_pool(
                        host=self.host,
                        port=self.port,
                        database=self.database,
                        user=self.user,
                        password=self.password,
                        min_size=self.min_size,
                        max_size=self.max_size,
                        command_timeout=self.command_timeout,
                        ssl=self.ssl,
                        server_settings=self.server_settings or None,
                    )
                    logger.info(
                        f"[{self.pool_name}] Postgres pool ready "
                        f"(size: {self.min_size}-{self.max_size})"
                    )
                    return

                except (CannotConnectNowError, TooManyConnectionsError) as e:
                    if attempt < self.max_retries - 1:
                        logger.warning(
                            f"[{self.pool_name}] Pool creation attempt {attempt + 1} "
                            f"failed, retrying: {e}"
                        )
                        await asyncio.sleep(self.retry_delay * (attempt + 1))
                    else:
                        logger.error(
                            f"[{self.pool_name}] Failed to create pool after "
                            f"{self.max_retries} attempts"
                        )
                        raise

    @asynccontextmanager
    async def get_connection(self):
        """
        Get a connection from the pool (async context manager).

        Usage:
            async with pool.get_connection() as conn:
                result = await conn.fetch("SELECT 1")
        """
        await self.initialize()

        if self._pool is None:
            raise RuntimeError(f"[{self.pool_name}] Pool not initialized")

        async with self._pool.acquire() as conn:
            yield conn

    async def fetch_all(
        self,
        query: str,
        *args,
        timeout: Optional[float] = None,
    ) -> List[asyncpg.Record]:
        async with self.get_connection() as conn:
            return await conn.fetch(query, *args, timeout=timeout)

    async def fetch_one(
        self,
        query: str,
        *args,
        timeout: Optional[float] = None,
    ) -> Optional[asyncpg.Record]:
        async with self.get_connection() as conn:
            return await conn.fetchrow(query, *args, timeout=timeout)

    async def fetch_val(
        self,
        query: str,
        *args,
        timeout: Optional[float] = None,
    ) -> Any:
        async with self.get_connection() as conn:
            return await conn.fetchval(query, *args, timeout=timeout)

    async def is_healthy(self) -> bool:
        """
        Check if the connection pool is healthy.

        Returns:
            bool: True if pool is healthy
        """
        if self._pool is None:
            return False

        try:
            result = await self.fetch_val("SELECT 1")
            return result == 1
        except Exception as e:
            logger.error(f"[{self.pool_name}] Health check failed: {e}")
            return False

    async def get_pool_stats(self) -> Dict[str, Any]:
        if self._pool is None:
            return {
                "initialized": False,
                "size": 0,
                "free": 0,
            }

        return {
            "initialized": True,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "size": self._pool.get_size(),
            "free": self._pool.get_idle_size(),
            "in_use": self._pool.get_size() - self._pool.get_idle_size(),
        }

    async def close(self):
        """Close the connection pool."""
        if self._pool is not None:
            logger.info(f"[{self.pool_name}] Closing Postgres connection pool...")
            pool, self._pool = self._pool, None
            await pool.close()
            logger.info(f"[{self.pool_name}] Postgres pool closed")


# Metadata database pool
_metadata_pool: Optional[PostgresConnectionPool] = None


def get_metadata_pool() -> PostgresConnectionPool:
    """
    Get or create the metadata database pool.

    Returns:
        PostgresConnectionPool: Metadata pool instance
    """
    global _metadata_pool

    if _metadata_pool is None:
        _metadata_pool = PostgresConnectionPool(
            host=settings.DATABASE_HOST,
            port=settings.DATABASE_PORT,
            database=settings.DATABASE_NAME,
            user=settings.DATABASE_USER,
            password=settings.DATABASE_PASSWORD,
            min_size=settings.DATABASE_POOL_MIN_SIZE,
            max_size=settings.DATABASE_POOL_MAX_SIZE,
            pool_name="metadata",
        )

    return _metadata_pool


async def close_metadata_pool():
    """Close the metadata database pool."""
    global _metadata_pool
    if _metadata_pool is not None:
        await _metadata_pool.close()
        _metadata_pool = None
