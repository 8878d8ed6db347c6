"""
API tests for the query routes and error mapping.

The orchestrator is replaced through FastAPI dependency overrides; the
lifespan hook is not run.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from warehouse_query.api.error_handling import (
    classify_snowflake_error,
    http_exception,
)
from warehouse_query.api.routes.queries import get_orchestrator
from warehouse_query.core.errors import (
    DecodeError,
    NotFoundError,
    QueryCompilationError,
    WarehouseConnectionError,
    WarehouseExecutionError,
)
from warehouse_query.main import app
from warehouse_query.models import (
    CacheMetadata,
    CompiledQuery,
    MetricQueryResponse,
    WarehouseResults,
)

from conftest import make_explore, make_metric_query


@pytest.fixture
def fake_orchestrator():
    orchestrator = MagicMock()
    orchestrator.run_metric_query = AsyncMock(
        return_value=MetricQueryResponse(
            rows=[{"orders_status": "shipped", "orders_count": 10}],
            cache_metadata=CacheMetadata(cache_hit=False),
            query="SELECT 1",
            has_example_metric=False,
            warehouse_type="postgres",
        )
    )
    orchestrator.run_query = AsyncMock(
        return_value=WarehouseResults(rows=[{"one": 1}])
    )
    orchestrator.compile_metric_query = AsyncMock(
        return_value=CompiledQuery(query="SELECT 1", has_example_metric=True)
    )
    return orchestrator


@pytest.fixture
def client(fake_orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: fake_orchestrator
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _metric_body(**extra):
    body = {
        "organization_uuid": "org-1",
        "user_uuid": "user-1",
        "metric_query": make_metric_query().model_dump(),
        "explore": make_explore().model_dump(),
    }
    body.update(extra)
    return body


class TestQueryRoutes:
    def test_run_metric_query(self, client, fake_orchestrator) -> None:
        response = client.post(
            "/api/v1/projects/p1/runMetricQuery",
            json=_metric_body(query_tags={"chart_uuid": "c1"}),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["cache_metadata"]["cache_hit"] is False
        assert data["warehouse_type"] == "postgres"

        kwargs = fake_orchestrator.run_metric_query.await_args.kwargs
        assert kwargs["project_uuid"] == "p1"
        assert kwargs["query_tags"] == {
            "chart_uuid": "c1",
            "project_uuid": "p1",
            "user_uuid": "user-1",
            "organization_uuid": "org-1",
        }

    def test_run_sql_query(self, client, fake_orchestrator) -> None:
        response = client.post(
            "/api/v1/projects/p1/runSqlQuery", json={"sql": "SELECT 1"}
        )

        assert response.status_code == 200
        assert response.json()["rows"] == [{"one": 1}]
        args = fake_orchestrator.run_query.await_args.args
        assert args == ("p1", "SELECT 1", {"project_uuid": "p1"})

    def test_empty_sql_rejected(self, client) -> None:
        response = client.post("/api/v1/projects/p1/runSqlQuery", json={"sql": ""})
        assert response.status_code == 422

    def test_compile_query(self, client) -> None:
        response = client.post(
            "/api/v1/projects/p1/compileQuery", json=_metric_body()
        )
        assert response.status_code == 200
        assert response.json() == {"query": "SELECT 1", "has_example_metric": True}

    @pytest.mark.parametrize(
        "error, status_code, code",
        [
            (NotFoundError("no credentials"), 404, "NOT_FOUND"),
            (DecodeError("bad blob"), 500, "UNEXPECTED_SERVER_ERROR"),
            (QueryCompilationError("unknown field"), 400, "COMPILATION_ERROR"),
            (WarehouseConnectionError("refused"), 503, "WAREHOUSE_CONNECTION_FAILED"),
            (WarehouseExecutionError("syntax error"), 502, "WAREHOUSE_QUERY_FAILED"),
            (RuntimeError("boom"), 500, "INTERNAL_ERROR"),
        ],
    )
    def test_errors_map_to_status(
        self, client, fake_orchestrator, error, status_code, code
    ) -> None:
        fake_orchestrator.run_metric_query.side_effect = error

        response = client.post(
            "/api/v1/projects/p1/runMetricQuery", json=_metric_body()
        )

        assert response.status_code == status_code
        detail = response.json()["detail"]
        assert detail["code"] == code
        assert detail["operation"] == "run metric query"

    def test_timeout_maps_to_504(self, client, fake_orchestrator, monkeypatch) -> None:
        from warehouse_query.api.routes import queries

        async def _slow(*args, **kwargs):
            await asyncio.sleep(10)

        fake_orchestrator.run_query.side_effect = _slow
        monkeypatch.setattr(queries.settings, "QUERY_TIMEOUT_SECONDS", 0.01)

        response = client.post(
            "/api/v1/projects/p1/runSqlQuery", json={"sql": "SELECT 1"}
        )

        assert response.status_code == 504
        assert response.json()["detail"]["code"] == "QUERY_TIMEOUT"


class TestErrorHandling:
    def test_execution_error_keeps_driver_message(self) -> None:
        exc = http_exception("run sql query", WarehouseExecutionError("column x missing"))
        assert exc.detail["message"] == "column x missing"

    def test_not_found_includes_data(self) -> None:
        exc = http_exception(
            "run sql query", NotFoundError("missing", data={"project_uuid": "p9"})
        )
        assert exc.detail["data"] == {"project_uuid": "p9"}

    def test_debug_text_hidden_unless_debug(self, monkeypatch) -> None:
        from warehouse_query.api import error_handling

        monkeypatch.setattr(error_handling.settings, "APP_DEBUG", False)
        assert "debug" not in http_exception("x", RuntimeError("secret")).detail

        monkeypatch.setattr(error_handling.settings, "APP_DEBUG", True)
        assert http_exception("x", RuntimeError("secret")).detail["debug"] == "secret"

    def test_snowflake_network_policy(self) -> None:
        err = classify_snowflake_error(
            Exception("IP/Token 10.0.0.1 is not allowed to access Snowflake")
        )
        assert err is not None
        assert err.status_code == 503
        assert err.code == "SNOWFLAKE_IP_NOT_ALLOWED"

    def test_unrelated_error_not_classified_as_snowflake(self) -> None:
        assert classify_snowflake_error(Exception("division by zero")) is None


def test_health_without_lifespan(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "warehouse-query"
    assert data["checks"]["metadata_db"]["status"] == "not_initialized"


def test_build_orchestrator_requires_encryption_secret(monkeypatch) -> None:
    from concurrent.futures import ThreadPoolExecutor

    from warehouse_query import main

    monkeypatch.setattr(main.settings, "ENCRYPTION_SECRET", None)
    with ThreadPoolExecutor(max_workers=1) as executor:
        with pytest.raises(ValueError, match="ENCRYPTION_SECRET"):
            main.build_orchestrator(executor)
