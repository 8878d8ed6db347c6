"""
Metric query compilation.

Turns an explore + metric query into dialect-specific SQL. The orchestrator
only depends on the `MetricQueryCompiler` protocol; `SqlQueryBuilder` is the
default implementation: a single-table SELECT with aggregated metrics,
GROUP BY over the selected dimensions, ORDER BY and LIMIT, plus the
explore's row-level `sql_filter` with user attributes substituted in.
"""

from __future__ import annotations

import re
from typing import Protocol

from warehouse_query.core.errors import QueryCompilationError
from warehouse_query.models import (
    CompiledQuery,
    Explore,
    Metric,
    MetricQuery,
    MetricType,
    UserAttributeValueMap,
)
from warehouse_query.warehouses.base import WarehouseClient

_TABLE_REF = re.compile(r"\$\{TABLE\}")
_ATTRIBUTE_REF = re.compile(r"\$\{\s*(?:lightdash\.attributes|ld\.attr)\.(\w+)\s*\}")


class MetricQueryCompiler(Protocol):
    def compile(
        self,
        explore: Explore,
        metric_query: MetricQuery,
        warehouse_client: WarehouseClient,
        user_attributes: UserAttributeValueMap,
    ) -> CompiledQuery: ...


def replace_user_attributes(
    sql: str,
    user_attributes: UserAttributeValueMap,
    warehouse_client: WarehouseClient,
) -> str:
    """Substitute `${lightdash.attributes.<name>}` with quoted literal values."""

    def _substitute(match: re.Match) -> str:
        name = match.group(1)
        value = user_attributes.get(name)
        if value is None:
            raise QueryCompilationError(
                f'Missing user attribute "{name}" required by this explore',
                data={"attribute": name},
            )
        q = warehouse_client.string_quote_char
        return f"{q}{warehouse_client.escape_string(str(value))}{q}"

    return _ATTRIBUTE_REF.sub(_substitute, sql)


class SqlQueryBuilder:
    def _table_sql(self, sql: str, table_alias: str) -> str:
        return _TABLE_REF.sub(lambda _: table_alias, sql)

    def _metric_sql(self, metric: Metric, table_alias: str) -> str:
        sql = self._table_sql(metric.sql, table_alias)
        if metric.type == MetricType.COUNT:
            return f"COUNT({sql})"
        if metric.type == MetricType.COUNT_DISTINCT:
            return f"COUNT(DISTINCT {sql})"
        if metric.type == MetricType.SUM:
            return f"SUM({sql})"
        if metric.type == MetricType.AVERAGE:
            return f"AVG({sql})"
        if metric.type == MetricType.MIN:
            return f"MIN({sql})"
        if metric.type == MetricType.MAX:
            return f"MAX({sql})"
        return sql

    def compile(
        self,
        explore: Explore,
        metric_query: MetricQuery,
        warehouse_client: WarehouseClient,
        user_attributes: UserAttributeValueMap,
    ) -> CompiledQuery:
        if not metric_query.dimensions and not metric_query.metrics:
            raise QueryCompilationError("Metric query must select at least one field")

        table_alias = warehouse_client.quote_field(explore.name)
        select_lines: list[str] = []

        for field_id in metric_query.dimensions:
            dimension = explore.dimensions.get(field_id)
            if dimension is None:
                raise QueryCompilationError(
                    f'Dimension "{field_id}" does not exist in explore "{explore.name}"'
                )
            select_lines.append(
                f"  {self._table_sql(dimension.sql, table_alias)} AS "
                f"{warehouse_client.quote_field(field_id)}"
            )

        has_example_metric = False
        for field_id in metric_query.metrics:
            metric = explore.metrics.get(field_id)
            if metric is None:
                raise QueryCompilationError(
                    f'Metric "{field_id}" does not exist in explore "{explore.name}"'
                )
            has_example_metric = has_example_metric or metric.is_autogenerated
            select_lines.append(
                f"  {self._metric_sql(metric, table_alias)} AS "
                f"{warehouse_client.quote_field(field_id)}"
            )

        selected = set(metric_query.dimensions) | set(metric_query.metrics)
        for sort in metric_query.sorts:
            if sort.field_id not in selected:
                raise QueryCompilationError(
                    f'Cannot sort by "{sort.field_id}": field is not selected'
                )

        parts = [
            "SELECT\n" + ",\n".join(select_lines),
            f"FROM {explore.sql_table} AS {table_alias}",
        ]
        if explore.sql_filter:
            row_filter = replace_user_attributes(
                self._table_sql(explore.sql_filter, table_alias),
                user_attributes,
                warehouse_client,
            )
            parts.append(f"WHERE (\n  {row_filter}\n)")
        if metric_query.dimensions and metric_query.metrics:
            group_by = ",".join(str(i + 1) for i in range(len(metric_query.dimensions)))
            parts.append(f"GROUP BY {group_by}")
        if metric_query.sorts:
            order_by = ", ".join(
                f"{warehouse_client.quote_field(s.field_id)}{' DESC' if s.descending else ''}"
                for s in metric_query.sorts
            )
            parts.append(f"ORDER BY {order_by}")
        parts.append(f"LIMIT {metric_query.limit}")

        return CompiledQuery(
            query="\n".join(parts),
            has_example_metric=has_example_metric,
        )
