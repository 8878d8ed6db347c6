"""
Databricks SQL warehouse client.

Uses databricks-sql-connector; one connection per query, opened and closed
inside the thread executor.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from databricks import sql as databricks_sql
from databricks.sql.exc import Error as DatabricksError
from databricks.sql.exc import RequestError, ServerOperationError

from warehouse_query.core.errors import (
    WarehouseConnectionError,
    WarehouseExecutionError,
)
from warehouse_query.models import (
    DatabricksCredentials,
    DimensionType,
    FieldInfo,
    RunQueryTags,
    WarehouseResults,
)
from warehouse_query.warehouses.base import WarehouseClient, dimension_type_from_name

logger = logging.getLogger(__name__)

DATABRICKS_TYPE_MAP: Dict[str, DimensionType] = {
    "TINYINT": DimensionType.NUMBER,
    "SMALLINT": DimensionType.NUMBER,
    "INT": DimensionType.NUMBER,
    "BIGINT": DimensionType.NUMBER,
    "FLOAT": DimensionType.NUMBER,
    "DOUBLE": DimensionType.NUMBER,
    "DECIMAL": DimensionType.NUMBER,
    "DATE": DimensionType.DATE,
    "TIMESTAMP": DimensionType.TIMESTAMP,
    "TIMESTAMP_NTZ": DimensionType.TIMESTAMP,
    "BOOLEAN": DimensionType.BOOLEAN,
}


class DatabricksWarehouseClient(WarehouseClient):
    credentials: DatabricksCredentials

    field_quote_char = "`"
    string_quote_char = "'"
    escape_string_quote_char = "\\"

    def _run_blocking(self, sql: str) -> Tuple[List[Any], List[Dict[str, Any]]]:
        creds = self.credentials
        with databricks_sql.connect(
            server_hostname=creds.server_host_name,
            http_path=creds.http_path,
            access_token=creds.personal_access_token,
            catalog=creds.catalog,
            schema=creds.database,
        ) as connection:
            with connection.cursor() as cursor:
                cursor.execute(sql)
                description = list(cursor.description or [])
                names = [col[0] for col in description]
                rows = [dict(zip(names, row)) for row in cursor.fetchall()]
        return description, rows

    async def run_query(
        self, sql: str, tags: Optional[RunQueryTags] = None
    ) -> WarehouseResults:
        # The connector has no per-statement tagging; tags are logged instead.
        if tags:
            logger.debug(f"Databricks query tags: {tags}")
        try:
            description, rows = await self._run_in_executor(self._run_blocking, sql)
        except RequestError as e:
            raise WarehouseConnectionError(str(e)) from e
        except (ServerOperationError, DatabricksError) as e:
            raise WarehouseExecutionError(str(e)) from e

        fields = {
            col[0]: FieldInfo(
                type=dimension_type_from_name(col[1], DATABRICKS_TYPE_MAP)
            )
            for col in description
        }
        return WarehouseResults(fields=fields, rows=rows)

    async def close(self) -> None:
        # Connections are scoped to each query.
        return None
