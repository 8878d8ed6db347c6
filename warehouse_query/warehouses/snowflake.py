"""
Snowflake warehouse client.

The Snowflake connector is blocking, so every call runs in a thread
executor. Connections are kept in a small idle list and checked out per
query; the session QUERY_TAG is set on the checked-out connection so
concurrent queries never share a tag.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, cast

import snowflake.connector
from snowflake.connector import SnowflakeConnection
from snowflake.connector.constants import FIELD_ID_TO_NAME
from snowflake.connector.errors import DatabaseError, OperationalError, ProgrammingError

from warehouse_query.config import settings
from warehouse_query.core.errors import (
    WarehouseConnectionError,
    WarehouseExecutionError,
)
from warehouse_query.models import (
    DimensionType,
    FieldInfo,
    RunQueryTags,
    SnowflakeCredentials,
    WarehouseResults,
)
from warehouse_query.warehouses.base import WarehouseClient, dimension_type_from_name

logger = logging.getLogger(__name__)

SNOWFLAKE_TYPE_MAP: Dict[str, DimensionType] = {
    "FIXED": DimensionType.NUMBER,
    "REAL": DimensionType.NUMBER,
    "DECFLOAT": DimensionType.NUMBER,
    "DATE": DimensionType.DATE,
    "TIMESTAMP_LTZ": DimensionType.TIMESTAMP,
    "TIMESTAMP_NTZ": DimensionType.TIMESTAMP,
    "TIMESTAMP_TZ": DimensionType.TIMESTAMP,
    "TIME": DimensionType.TIMESTAMP,
    "BOOLEAN": DimensionType.BOOLEAN,
}


class SnowflakeWarehouseClient(WarehouseClient):
    credentials: SnowflakeCredentials

    def __init__(
        self,
        credentials: SnowflakeCredentials,
        *,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        max_idle_connections: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(credentials, **kwargs)
        self.max_retries = max_retries or settings.WAREHOUSE_CONNECT_MAX_RETRIES
        self.retry_delay = (
            retry_delay
            if retry_delay is not None
            else settings.WAREHOUSE_CONNECT_RETRY_DELAY
        )
        self.max_idle_connections = (
            max_idle_connections or settings.WAREHOUSE_POOL_MAX_SIZE
        )
        self._idle: List[SnowflakeConnection] = []
        self._lock = asyncio.Lock()
        self._closed = False

    def _get_connection_params(self) -> Dict[str, Any]:
        """Get connection parameters for snowflake.connector."""
        creds = self.credentials
        params: Dict[str, Any] = {
            "account": creds.account,
            "user": creds.user,
            "password": creds.password,
            "database": creds.database,
            "warehouse": creds.warehouse,
            "schema": creds.schema_name,
            "client_session_keep_alive": creds.client_session_keep_alive,
            "application": "warehouse_query",
        }
        if creds.role:
            params["role"] = creds.role
        return params

    async def _create_connection(self) -> SnowflakeConnection:
        """
        Create a new Snowflake connection with retry logic.

        Raises:
            WarehouseConnectionError: If connection fails after retries
        """
        params = self._get_connection_params()

        for attempt in range(self.max_retries):
            try:
                conn = cast(
                    SnowflakeConnection,
                    await self._run_in_executor(
                        lambda: snowflake.connector.connect(**params)
                    ),
                )
                logger.debug(f"Created new Snowflake connection: {id(conn)}")
                return conn

            except OperationalError as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Snowflake connection attempt {attempt + 1} failed, retrying: {e}"
                    )
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                else:
                    raise WarehouseConnectionError(
                        f"Failed to connect to Snowflake after {self.max_retries} attempts: {e}"
                    ) from e
            except DatabaseError as e:
                raise WarehouseConnectionError(
                    f"Failed to connect to Snowflake: {e}"
                ) from e

        raise WarehouseConnectionError("Failed to create Snowflake connection")

    @asynccontextmanager
    async def _checkout(self):
        conn: Optional[SnowflakeConnection] = None
        async with self._lock:
            while self._idle and conn is None:
                candidate = self._idle.pop()
                if not candidate.is_closed():
                    conn = candidate
        if conn is None:
            conn = await self._create_connection()

        healthy = True
        try:
            yield conn
        except WarehouseConnectionError:
            healthy = False
            raise
        except asyncio.CancelledError:
            # The statement may still be running in its executor thread;
            # closing the session stops it from being shared with the next query.
            healthy = False
            logger.info(f"Query cancelled, discarding Snowflake connection {id(conn)}")
            raise
        finally:
            async with self._lock:
                keep = (
                    healthy
                    and not self._closed
                    and len(self._idle) < self.max_idle_connections
                )
                if keep:
                    self._idle.append(conn)
            if not keep:
                await self._close_connection(conn)

    async def _close_connection(self, conn: SnowflakeConnection) -> None:
        try:
            await self._run_in_executor(conn.close)
        except Exception as e:
            logger.debug(f"Error closing Snowflake connection {id(conn)}: {e}")

    def _query_tag(self, tags: Optional[RunQueryTags]) -> str:
        merged: Dict[str, Any] = {}
        if self.credentials.query_tag:
            merged["query_tag"] = self.credentials.query_tag
        merged.update(tags or {})
        return json.dumps(merged, sort_keys=True) if merged else ""

    async def run_query(
        self, sql: str, tags: Optional[RunQueryTags] = None
    ) -> WarehouseResults:
        query_tag = self._query_tag(tags).replace("'", "''")

        async with self._checkout() as conn:
            cursor = await self._run_in_executor(conn.cursor)
            try:
                await self._run_in_executor(
                    cursor.execute, f"ALTER SESSION SET QUERY_TAG = '{query_tag}'"
                )
                await self._run_in_executor(cursor.execute, sql)
                description = cursor.description or []
                raw_rows = await self._run_in_executor(cursor.fetchall)
            except ProgrammingError as e:
                raise WarehouseExecutionError(str(e)) from e
            except OperationalError as e:
                raise WarehouseConnectionError(str(e)) from e
            except DatabaseError as e:
                raise WarehouseExecutionError(str(e)) from e
            finally:
                await self._run_in_executor(cursor.close)

        names = [col.name for col in description]
        fields = {
            col.name: FieldInfo(
                type=dimension_type_from_name(
                    FIELD_ID_TO_NAME.get(col.type_code), SNOWFLAKE_TYPE_MAP
                )
            )
            for col in description
        }
        return WarehouseResults(
            fields=fields,
            rows=[dict(zip(names, row)) for row in raw_rows],
        )

    async def close(self) -> None:
        async with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
        for conn in idle:
            await self._close_connection(conn)
