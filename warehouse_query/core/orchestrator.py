from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from warehouse_query.core.client_cache import WarehouseClientCache
from warehouse_query.core.credential_store import CredentialStore
from warehouse_query.core.query_builder import MetricQueryCompiler, SqlQueryBuilder
from warehouse_query.core.results_cache import ResultsCache
from warehouse_query.models import (
    CacheMetadata,
    CompiledQuery,
    Explore,
    MetricQuery,
    MetricQueryResponse,
    RunQueryTags,
    WarehouseCredentials,
    WarehouseResults,
)
from warehouse_query.warehouses import WarehouseClient
from warehouse_query.warehouses.ssh_tunnel import SshTunnel

logger = logging.getLogger(__name__)


class QueryOrchestrator:
    """
    Runs queries for a project against its warehouse.

    Every execution resolves fresh credentials, opens an SSH tunnel when the
    credentials ask for one, leases a (possibly cached) warehouse client and
    consults the results cache before hitting the warehouse. The tunnel is
    always disconnected before the call returns or raises.
    """

    def __init__(
        self,
        *,
        credential_store: CredentialStore,
        client_cache: WarehouseClientCache,
        results_cache: ResultsCache,
        query_compiler: Optional[MetricQueryCompiler] = None,
        tunnel_factory: Callable[[WarehouseCredentials], SshTunnel] = SshTunnel,
    ) -> None:
        self._credential_store = credential_store
        self._client_cache = client_cache
        self._results_cache = results_cache
        self._query_compiler = query_compiler or SqlQueryBuilder()
        self._tunnel_factory = tunnel_factory

    @property
    def results_cache(self) -> ResultsCache:
        return self._results_cache

    @property
    def client_cache(self) -> WarehouseClientCache:
        return self._client_cache

    @asynccontextmanager
    async def _warehouse_session(self, project_uuid: str) -> AsyncIterator[WarehouseClient]:
        # Always load the latest credentials; they may have been rotated.
        credentials = await self._credential_store.get_credentials(project_uuid)

        tunnel = self._tunnel_factory(credentials)
        try:
            effective_credentials = await tunnel.connect()
            # Tunnel endpoints change per session, so tunnelled clients are never cached.
            async with self._client_cache.checkout(
                project_uuid,
                effective_credentials,
                cacheable=not tunnel.is_active,
            ) as client:
                yield client
        finally:
            await tunnel.disconnect()

    async def run_query(
        self,
        project_uuid: str,
        query: str,
        query_tags: Optional[RunQueryTags] = None,
    ) -> WarehouseResults:
        """Run raw SQL against the project's warehouse, bypassing the results cache."""
        async with self._warehouse_session(project_uuid) as client:
            return await client.run_query(query, query_tags)

    async def compile_metric_query(
        self,
        *,
        organization_uuid: str,
        project_uuid: str,
        user_uuid: str,
        metric_query: MetricQuery,
        explore: Explore,
    ) -> CompiledQuery:
        async with self._warehouse_session(project_uuid) as client:
            user_attributes = await self._credential_store.get_attribute_overrides(
                organization_uuid, user_uuid
            )
            return self._query_compiler.compile(
                explore, metric_query, client, user_attributes
            )

    async def run_metric_query(
        self,
        *,
        organization_uuid: str,
        project_uuid: str,
        user_uuid: str,
        metric_query: MetricQuery,
        explore: Explore,
        query_tags: Optional[RunQueryTags] = None,
    ) -> MetricQueryResponse:
        """
        Compile a metric query for the project's warehouse and return its rows,
        served from the results cache when a fresh entry exists.

        Raises:
            NotFoundError: the project has no warehouse credentials
            DecodeError: the stored credentials are corrupt
            WarehouseConnectionError: tunnel or warehouse unreachable
            QueryCompilationError: the metric query does not fit the explore
            WarehouseExecutionError: the warehouse rejected the query
        """
        async with self._warehouse_session(project_uuid) as client:
            user_attributes = await self._credential_store.get_attribute_overrides(
                organization_uuid, user_uuid
            )
            compiled = self._query_compiler.compile(
                explore, metric_query, client, user_attributes
            )
            results, cache_metadata = await self._get_results_from_cache_or_warehouse(
                project_uuid=project_uuid,
                warehouse_client=client,
                query=compiled.query,
                query_tags=query_tags,
            )
            warehouse_type = client.warehouse_type

        return MetricQueryResponse(
            rows=results.rows,
            cache_metadata=cache_metadata,
            query=compiled.query,
            has_example_metric=compiled.has_example_metric,
            warehouse_type=warehouse_type,
        )

    async def _get_results_from_cache_or_warehouse(
        self,
        *,
        project_uuid: str,
        warehouse_client: WarehouseClient,
        query: str,
        query_tags: Optional[RunQueryTags],
    ) -> tuple[WarehouseResults, CacheMetadata]:
        query_hash = self._results_cache.derive_key(project_uuid, query)

        cached = await self._results_cache.lookup(query_hash)
        if cached is not None:
            logger.debug(f"Results cache hit for project {project_uuid}: {query_hash}")
            return cached.results, CacheMetadata(
                cache_hit=True, cache_updated_time=cached.updated_time
            )

        logger.debug(
            f"Running query against {warehouse_client.warehouse_type} warehouse "
            f"for project {project_uuid}"
        )
        started = time.perf_counter()
        results = await warehouse_client.run_query(query, query_tags)
        logger.info(
            f"Warehouse query for project {project_uuid} returned {len(results.rows)} rows "
            f"in {(time.perf_counter() - started) * 1000.0:.0f}ms"
        )

        # Fire and forget; the write never delays or fails the response.
        self._results_cache.store(query_hash, results, query_tags)

        return results, CacheMetadata(cache_hit=False)

    async def shutdown(self, *, timeout_seconds: float = 5.0) -> None:
        """Flush pending cache writes and close every warehouse client."""
        await self._results_cache.shutdown(timeout_seconds=timeout_seconds)
        await self._client_cache.close_all()
