"""
Global pytest configuration and fixtures for warehouse query tests.

This module provides in-memory stand-ins for every external dependency of
the query orchestrator:
- Warehouse clients (records queries, returns canned results)
- Credential store (per-project credentials and user attributes)
- Results object store (S3-like, with a controllable clock)
- SSH tunnels (counts connect/disconnect calls)
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional

import pytest

from warehouse_query.connectors.s3_cache_client import CacheEntryMetadata
from warehouse_query.core.client_cache import WarehouseClientCache
from warehouse_query.core.errors import (
    CacheError,
    NotFoundError,
    WarehouseConnectionError,
)
from warehouse_query.core.orchestrator import QueryOrchestrator
from warehouse_query.core.results_cache import ResultsCache
from warehouse_query.models import (
    Dimension,
    DimensionType,
    Explore,
    FieldInfo,
    Metric,
    MetricQuery,
    MetricType,
    PostgresCredentials,
    RunQueryTags,
    UserAttributeValueMap,
    WarehouseCredentials,
    WarehouseResults,
)
from warehouse_query.warehouses.base import WarehouseClient


# =============================================================================
# Clock
# =============================================================================


class ManualClock:
    """Deterministic clock for cache freshness checks."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# =============================================================================
# Warehouse clients
# =============================================================================


def default_results() -> WarehouseResults:
    return WarehouseResults(
        fields={
            "orders_status": FieldInfo(type=DimensionType.STRING),
            "orders_count": FieldInfo(type=DimensionType.NUMBER),
        },
        rows=[
            {"orders_status": "shipped", "orders_count": 10},
            {"orders_status": "pending", "orders_count": 3},
        ],
    )


class FakeWarehouseClient(WarehouseClient):
    def __init__(self, credentials: WarehouseCredentials, **kwargs: Any) -> None:
        super().__init__(credentials, **kwargs)
        self.queries: list[tuple[str, Optional[RunQueryTags]]] = []
        self.results: WarehouseResults = default_results()
        self.error: Optional[BaseException] = None
        self.delay: float = 0.0
        self.closed = False
        self.close_calls = 0

    async def run_query(
        self, sql: str, tags: Optional[RunQueryTags] = None
    ) -> WarehouseResults:
        self.queries.append((sql, tags))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.results

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1


class FakeClientFactory:
    """Builds FakeWarehouseClients and remembers every one it built."""

    def __init__(self) -> None:
        self.built: list[FakeWarehouseClient] = []
        self.configure: Optional[Callable[[FakeWarehouseClient], None]] = None

    def __call__(self, credentials: WarehouseCredentials) -> FakeWarehouseClient:
        client = FakeWarehouseClient(credentials)
        if self.configure is not None:
            self.configure(client)
        self.built.append(client)
        return client

    @property
    def total_queries(self) -> int:
        return sum(len(c.queries) for c in self.built)


# =============================================================================
# Credential store
# =============================================================================


class FakeCredentialStore:
    def __init__(self) -> None:
        self.credentials: dict[str, WarehouseCredentials] = {}
        self.attributes: UserAttributeValueMap = {}
        self.credential_reads = 0

    async def get_credentials(self, project_uuid: str) -> WarehouseCredentials:
        self.credential_reads += 1
        try:
            return self.credentials[project_uuid]
        except KeyError:
            raise NotFoundError(
                "Cannot find any warehouse credentials for project.",
                data={"project_uuid": project_uuid},
            )

    async def get_attribute_overrides(
        self, organization_uuid: str, user_uuid: str
    ) -> UserAttributeValueMap:
        return dict(self.attributes)


# =============================================================================
# Results object store
# =============================================================================


class InMemoryObjectStore:
    """S3-like store keyed by cache key; last-modified comes from `clock`."""

    def __init__(self, clock: Callable[[], datetime]) -> None:
        self._clock = clock
        self.objects: dict[str, tuple[bytes, datetime, RunQueryTags]] = {}
        self.fail_metadata = False
        self.fail_reads = False
        self.fail_writes = False
        self.write_delay = 0.0
        self.uploads = 0

    async def get_results_metadata(self, key: str) -> Optional[CacheEntryMetadata]:
        if self.fail_metadata:
            raise CacheError("metadata unavailable")
        entry = self.objects.get(key)
        if entry is None:
            return None
        body, last_modified, _ = entry
        return CacheEntryMetadata(last_modified=last_modified, content_length=len(body))

    async def get_results(self, key: str) -> bytes:
        if self.fail_reads:
            raise CacheError("read unavailable")
        return self.objects[key][0]

    async def upload_results(
        self, key: str, body: bytes, tags: Optional[RunQueryTags] = None
    ) -> None:
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if self.fail_writes:
            raise CacheError("write unavailable")
        self.uploads += 1
        self.objects[key] = (body, self._clock(), dict(tags or {}))


# =============================================================================
# SSH tunnels
# =============================================================================


class FakeTunnel:
    """Records lifecycle calls; rewrites host/port when the tunnel is enabled."""

    instances: list["FakeTunnel"] = []
    fail_connect: bool = False

    def __init__(self, credentials: WarehouseCredentials, **kwargs: Any) -> None:
        self.credentials = credentials
        self.connect_calls = 0
        self.disconnect_calls = 0
        self._active = False
        FakeTunnel.instances.append(self)

    @property
    def is_active(self) -> bool:
        return self._active

    async def connect(self) -> WarehouseCredentials:
        self.connect_calls += 1
        if not getattr(self.credentials, "use_ssh_tunnel", False):
            return self.credentials
        if FakeTunnel.fail_connect:
            raise WarehouseConnectionError("bastion unreachable")
        self._active = True
        return self.credentials.model_copy(
            update={"host": "127.0.0.1", "port": 40000 + len(FakeTunnel.instances)}
        )

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._active = False


# =============================================================================
# Fixtures
# =============================================================================


def make_postgres_credentials(**overrides: Any) -> PostgresCredentials:
    values: dict[str, Any] = {
        "host": "db.internal",
        "port": 5432,
        "user": "analytics",
        "password": "s3cret",
        "dbname": "warehouse",
        "schema": "public",
    }
    values.update(overrides)
    return PostgresCredentials(**values)


def make_explore(**overrides: Any) -> Explore:
    values: dict[str, Any] = {
        "name": "orders",
        "sql_table": "analytics.orders",
        "dimensions": {
            "orders_status": Dimension(sql="${TABLE}.status"),
            "orders_created": Dimension(
                sql="${TABLE}.created_at", type=DimensionType.TIMESTAMP
            ),
        },
        "metrics": {
            "orders_count": Metric(sql="${TABLE}.id", type=MetricType.COUNT),
            "orders_total": Metric(sql="${TABLE}.amount", type=MetricType.SUM),
            "orders_example": Metric(
                sql="${TABLE}.id", type=MetricType.COUNT, is_autogenerated=True
            ),
        },
    }
    values.update(overrides)
    return Explore(**values)


def make_metric_query(**overrides: Any) -> MetricQuery:
    values: dict[str, Any] = {
        "dimensions": ["orders_status"],
        "metrics": ["orders_count"],
        "limit": 500,
    }
    values.update(overrides)
    return MetricQuery(**values)


@pytest.fixture(autouse=True)
def _reset_fake_tunnels():
    FakeTunnel.instances = []
    FakeTunnel.fail_connect = False
    yield
    FakeTunnel.instances = []
    FakeTunnel.fail_connect = False


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def object_store(clock: ManualClock) -> InMemoryObjectStore:
    return InMemoryObjectStore(clock)


@pytest.fixture
def results_cache(object_store: InMemoryObjectStore, clock: ManualClock) -> ResultsCache:
    return ResultsCache(
        object_store, enabled=True, cache_state_time_seconds=3600, clock=clock
    )


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def client_cache(client_factory: FakeClientFactory) -> WarehouseClientCache:
    return WarehouseClientCache(client_factory)


@pytest.fixture
def credential_store() -> FakeCredentialStore:
    store = FakeCredentialStore()
    store.credentials["p1"] = make_postgres_credentials()
    return store


@pytest.fixture
def orchestrator(
    credential_store: FakeCredentialStore,
    client_cache: WarehouseClientCache,
    results_cache: ResultsCache,
) -> QueryOrchestrator:
    return QueryOrchestrator(
        credential_store=credential_store,  # type: ignore[arg-type]
        client_cache=client_cache,
        results_cache=results_cache,
        tunnel_factory=FakeTunnel,  # type: ignore[arg-type]
    )
