"""
Query Models

Defines the semantic inputs handed to the query compiler (explores and
metric queries) and the payloads returned by the query orchestrator.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# Opaque key/value bag attached to the warehouse session
# (project_uuid, user_uuid, organization_uuid, chart_uuid, ...).
RunQueryTags = Dict[str, str]

# Attribute name -> value used to parameterise row-level filters.
UserAttributeValueMap = Dict[str, str]


class DimensionType(str, Enum):
    """Column types reported back with warehouse results."""

    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"


class MetricType(str, Enum):
    """Aggregations understood by the query builder."""

    COUNT = "count"
    COUNT_DISTINCT = "count_distinct"
    SUM = "sum"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    NUMBER = "number"


class Dimension(BaseModel):
    sql: str = Field(..., description="SQL expression; ${TABLE} refers to the base table")
    type: DimensionType = DimensionType.STRING


class Metric(BaseModel):
    sql: str = Field(..., description="SQL expression aggregated by `type`")
    type: MetricType = MetricType.COUNT
    is_autogenerated: bool = Field(
        False, description="Placeholder metric added when a table defines none"
    )


class Explore(BaseModel):
    """A queryable table with its dimensions and metrics."""

    name: str
    sql_table: str
    dimensions: Dict[str, Dimension] = Field(default_factory=dict)
    metrics: Dict[str, Metric] = Field(default_factory=dict)
    sql_filter: Optional[str] = Field(
        None,
        description="Row-level filter; may reference ${lightdash.attributes.<name>}",
    )


class SortField(BaseModel):
    field_id: str
    descending: bool = False


class MetricQuery(BaseModel):
    """Dialect-agnostic description of the rows to fetch."""

    dimensions: List[str] = Field(default_factory=list)
    metrics: List[str] = Field(default_factory=list)
    sorts: List[SortField] = Field(default_factory=list)
    limit: int = Field(500, ge=1)


class CompiledQuery(BaseModel):
    query: str
    has_example_metric: bool = False


class FieldInfo(BaseModel):
    type: DimensionType


class WarehouseResults(BaseModel):
    fields: Dict[str, FieldInfo] = Field(default_factory=dict)
    rows: List[Dict[str, Any]] = Field(default_factory=list)


class CacheMetadata(BaseModel):
    cache_hit: bool
    cache_updated_time: Optional[datetime] = None


class MetricQueryResponse(BaseModel):
    rows: List[Dict[str, Any]]
    cache_metadata: CacheMetadata
    query: str
    has_example_metric: bool
    warehouse_type: str
