"""
Postgres and Redshift warehouse clients.

Both speak the Postgres wire protocol and run through an asyncpg pool.
Query tags are appended to the statement as a trailing SQL comment so they
show up in pg_stat_activity / STL_QUERY.
"""

import json
import logging
from typing import Dict, Optional

import asyncpg

from warehouse_query.config import settings
from warehouse_query.connectors.postgres_pool import PostgresConnectionPool
from warehouse_query.core.errors import (
    WarehouseConnectionError,
    WarehouseExecutionError,
)
from warehouse_query.models import (
    DimensionType,
    FieldInfo,
    PostgresCredentials,
    RedshiftCredentials,
    RunQueryTags,
    WarehouseResults,
)
from warehouse_query.warehouses.base import WarehouseClient, dimension_type_from_name

logger = logging.getLogger(__name__)

POSTGRES_TYPE_MAP: Dict[str, DimensionType] = {
    "INT2": DimensionType.NUMBER,
    "INT4": DimensionType.NUMBER,
    "INT8": DimensionType.NUMBER,
    "FLOAT4": DimensionType.NUMBER,
    "FLOAT8": DimensionType.NUMBER,
    "NUMERIC": DimensionType.NUMBER,
    "MONEY": DimensionType.NUMBER,
    "OID": DimensionType.NUMBER,
    "DATE": DimensionType.DATE,
    "TIMESTAMP": DimensionType.TIMESTAMP,
    "TIMESTAMPTZ": DimensionType.TIMESTAMP,
    "TIME": DimensionType.TIMESTAMP,
    "TIMETZ": DimensionType.TIMESTAMP,
    "BOOL": DimensionType.BOOLEAN,
}


def append_query_tags(sql: str, tags: Optional[RunQueryTags]) -> str:
    if not tags:
        return sql
    return f"{sql}\n-- {json.dumps(tags, sort_keys=True)}"


class PostgresWarehouseClient(WarehouseClient):
    credentials: PostgresCredentials | RedshiftCredentials

    def __init__(
        self,
        credentials: PostgresCredentials | RedshiftCredentials,
        *,
        pool: Optional[PostgresConnectionPool] = None,
        **kwargs,
    ):
        super().__init__(credentials, **kwargs)
        self._pool = pool or PostgresConnectionPool(
            host=credentials.host,
            port=credentials.port,
            database=credentials.dbname,
            user=credentials.user,
            password=credentials.password,
            min_size=0,
            max_size=settings.WAREHOUSE_POOL_MAX_SIZE,
            max_retries=settings.WAREHOUSE_CONNECT_MAX_RETRIES,
            retry_delay=settings.WAREHOUSE_CONNECT_RETRY_DELAY,
            command_timeout=credentials.timeout_seconds,
            ssl=credentials.sslmode,
            server_settings={"search_path": credentials.schema_name},
            pool_name=f"{credentials.type}:{credentials.host}/{credentials.dbname}",
        )

    async def run_query(
        self, sql: str, tags: Optional[RunQueryTags] = None
    ) -> WarehouseResults:
        try:
            await self._pool.initialize()
        except (OSError, asyncpg.PostgresError) as e:
            raise WarehouseConnectionError(
                f"Failed to connect to {self.warehouse_type}: {e}"
            ) from e

        try:
            async with self._pool.get_connection() as conn:
                stmt = await conn.prepare(append_query_tags(sql, tags))
                attributes = stmt.get_attributes()
                records = await stmt.fetch()
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise WarehouseExecutionError(str(e)) from e

        fields = {
            attr.name: FieldInfo(
                type=dimension_type_from_name(attr.type.name, POSTGRES_TYPE_MAP)
            )
            for attr in attributes
        }
        return WarehouseResults(
            fields=fields,
            rows=[dict(record.items()) for record in records],
        )

    async def close(self) -> None:
        await self._pool.close()


class RedshiftWarehouseClient(PostgresWarehouseClient):
    credentials: RedshiftCredentials
