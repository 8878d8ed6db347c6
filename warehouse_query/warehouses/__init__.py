"""
Warehouse clients.

One `WarehouseClient` subclass per supported dialect, built from credentials
by `warehouse_client_from_credentials`. Driver modules are imported on first
use so a deployment only loads the drivers it actually talks to.
"""

from concurrent.futures import Executor
from typing import Callable, Dict, Optional

from warehouse_query.models import WarehouseCredentials, WarehouseType
from warehouse_query.warehouses.base import WarehouseClient

WarehouseClientFactory = Callable[[WarehouseCredentials], WarehouseClient]


def _postgres():
    from warehouse_query.warehouses.postgres import PostgresWarehouseClient

    return PostgresWarehouseClient


def _redshift():
    from warehouse_query.warehouses.postgres import RedshiftWarehouseClient

    return RedshiftWarehouseClient


def _snowflake():
    from warehouse_query.warehouses.snowflake import SnowflakeWarehouseClient

    return SnowflakeWarehouseClient


def _bigquery():
    from warehouse_query.warehouses.bigquery import BigqueryWarehouseClient

    return BigqueryWarehouseClient


def _databricks():
    from warehouse_query.warehouses.databricks import DatabricksWarehouseClient

    return DatabricksWarehouseClient


_CLIENT_LOADERS: Dict[WarehouseType, Callable[[], type]] = {
    WarehouseType.POSTGRES: _postgres,
    WarehouseType.REDSHIFT: _redshift,
    WarehouseType.SNOWFLAKE: _snowflake,
    WarehouseType.BIGQUERY: _bigquery,
    WarehouseType.DATABRICKS: _databricks,
}


def warehouse_client_class(warehouse_type: str) -> type:
    try:
        loader = _CLIENT_LOADERS[WarehouseType(warehouse_type)]
    except ValueError as e:
        raise ValueError(f"Unsupported warehouse type: {warehouse_type}") from e
    return loader()


def warehouse_client_from_credentials(
    credentials: WarehouseCredentials,
    *,
    executor: Optional[Executor] = None,
) -> WarehouseClient:
    """Build the client matching `credentials.type`."""
    client_cls = warehouse_client_class(credentials.type)
    return client_cls(credentials, executor=executor)


__all__ = [
    "WarehouseClient",
    "WarehouseClientFactory",
    "warehouse_client_class",
    "warehouse_client_from_credentials",
]
