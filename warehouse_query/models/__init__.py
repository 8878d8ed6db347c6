"""
Data models for the warehouse query service.

This package contains Pydantic models for:
- Warehouse credentials (one frozen model per dialect)
- Explores, metric queries and compiled SQL
- Warehouse results and cache provenance metadata
"""

from warehouse_query.models.credentials import (
    WarehouseType,
    WarehouseCredentials,
    PostgresCredentials,
    RedshiftCredentials,
    SnowflakeCredentials,
    BigqueryCredentials,
    DatabricksCredentials,
    parse_credentials,
    uses_ssh_tunnel,
)

from warehouse_query.models.query import (
    RunQueryTags,
    UserAttributeValueMap,
    DimensionType,
    MetricType,
    Dimension,
    Metric,
    Explore,
    SortField,
    MetricQuery,
    CompiledQuery,
    FieldInfo,
    WarehouseResults,
    CacheMetadata,
    MetricQueryResponse,
)

__all__ = [
    # credentials
    "WarehouseType",
    "WarehouseCredentials",
    "PostgresCredentials",
    "RedshiftCredentials",
    "SnowflakeCredentials",
    "BigqueryCredentials",
    "DatabricksCredentials",
    "parse_credentials",
    "uses_ssh_tunnel",
    # query
    "RunQueryTags",
    "UserAttributeValueMap",
    "DimensionType",
    "MetricType",
    "Dimension",
    "Metric",
    "Explore",
    "SortField",
    "MetricQuery",
    "CompiledQuery",
    "FieldInfo",
    "WarehouseResults",
    "CacheMetadata",
    "MetricQueryResponse",
]
