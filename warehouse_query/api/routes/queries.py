"""
API routes for running and compiling project queries.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from warehouse_query.api.error_handling import http_exception
from warehouse_query.config import settings
from warehouse_query.core.orchestrator import QueryOrchestrator
from warehouse_query.models import (
    CompiledQuery,
    Explore,
    MetricQuery,
    MetricQueryResponse,
    RunQueryTags,
    WarehouseResults,
)

router = APIRouter()

T = TypeVar("T")


class CompileQueryRequest(BaseModel):
    organization_uuid: str
    user_uuid: str
    metric_query: MetricQuery
    explore: Explore


class RunMetricQueryRequest(CompileQueryRequest):
    query_tags: RunQueryTags = Field(default_factory=dict)


class RunSqlQueryRequest(BaseModel):
    sql: str = Field(..., min_length=1)
    query_tags: RunQueryTags = Field(default_factory=dict)


def get_orchestrator(request: Request) -> QueryOrchestrator:
    return request.app.state.orchestrator


async def _with_timeout(awaitable: Awaitable[T], timeout: Optional[float]) -> T:
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout)


def _tags(project_uuid: str, body_tags: RunQueryTags, **extra: str) -> RunQueryTags:
    tags = dict(body_tags)
    tags["project_uuid"] = project_uuid
    tags.update(extra)
    return tags


@router.post("/{project_uuid}/runMetricQuery", response_model=MetricQueryResponse)
async def run_metric_query(
    project_uuid: str,
    body: RunMetricQueryRequest,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
):
    """
    Compile and run a metric query, serving results from cache when fresh.
    """
    try:
        return await _with_timeout(
            orchestrator.run_metric_query(
                organization_uuid=body.organization_uuid,
                project_uuid=project_uuid,
                user_uuid=body.user_uuid,
                metric_query=body.metric_query,
                explore=body.explore,
                query_tags=_tags(
                    project_uuid,
                    body.query_tags,
                    user_uuid=body.user_uuid,
                    organization_uuid=body.organization_uuid,
                ),
            ),
            settings.QUERY_TIMEOUT_SECONDS,
        )
    except Exception as e:
        raise http_exception("run metric query", e)


@router.post("/{project_uuid}/runSqlQuery", response_model=WarehouseResults)
async def run_sql_query(
    project_uuid: str,
    body: RunSqlQueryRequest,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
):
    try:
        return await _with_timeout(
            orchestrator.run_query(
                project_uuid,
                body.sql,
                _tags(project_uuid, body.query_tags),
            ),
            settings.QUERY_TIMEOUT_SECONDS,
        )
    except Exception as e:
        raise http_exception("run sql query", e)


@router.post("/{project_uuid}/compileQuery", response_model=CompiledQuery)
async def compile_query(
    project_uuid: str,
    body: CompileQueryRequest,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
):
    """Return the SQL a metric query compiles to, without running it."""
    try:
        return await _with_timeout(
            orchestrator.compile_metric_query(
                organization_uuid=body.organization_uuid,
                project_uuid=project_uuid,
                user_uuid=body.user_uuid,
                metric_query=body.metric_query,
                explore=body.explore,
            ),
            settings.QUERY_TIMEOUT_SECONDS,
        )
    except Exception as e:
        raise http_exception("compile query", e)
