"""
Warehouse Query Service - Main Application Entry Point

FastAPI application that runs metric and SQL queries against per-project
data warehouses, with an object-store results cache in front.
"""

from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from functools import partial
from typing import Any, cast

import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from warehouse_query.api.routes import queries
from warehouse_query.config import settings
from warehouse_query.connectors import postgres_pool
from warehouse_query.connectors.s3_cache_client import S3CacheClient
from warehouse_query.core.client_cache import WarehouseClientCache
from warehouse_query.core.credential_store import CredentialStore
from warehouse_query.core.encryption import EncryptionService
from warehouse_query.core.orchestrator import QueryOrchestrator
from warehouse_query.core.results_cache import ResultsCache
from warehouse_query.warehouses import warehouse_client_from_credentials
from warehouse_query.warehouses.ssh_tunnel import SshTunnel

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(settings.LOG_FILE)
        if settings.LOG_FILE
        else logging.NullHandler(),
    ],
)

# Suppress verbose driver logging (connection handshakes, request signing)
logging.getLogger("snowflake.connector.connection").setLevel(logging.WARNING)
logging.getLogger("snowflake.connector.network").setLevel(logging.WARNING)
logging.getLogger("asyncssh").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


def build_orchestrator(executor: ThreadPoolExecutor) -> QueryOrchestrator:
    """Wire the query orchestrator from settings."""
    if not settings.ENCRYPTION_SECRET:
        raise ValueError("ENCRYPTION_SECRET must be set to decrypt warehouse credentials")

    credential_store = CredentialStore(
        postgres_pool.get_metadata_pool(),
        EncryptionService(settings.ENCRYPTION_SECRET),
    )

    store = None
    if settings.RESULTS_CACHE_ENABLED:
        store = S3CacheClient.from_settings(executor=executor)
    results_cache = ResultsCache.from_settings(store)

    client_cache = WarehouseClientCache(
        partial(warehouse_client_from_credentials, executor=executor)
    )

    return QueryOrchestrator(
        credential_store=credential_store,
        client_cache=client_cache,
        results_cache=results_cache,
        tunnel_factory=partial(
            SshTunnel, connect_timeout=settings.SSH_CONNECT_TIMEOUT_SECONDS
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager - handles startup and shutdown events.
    """
    # Startup
    logger.info("🚀 Warehouse query service starting up...")
    logger.info(
        f"🔧 Environment: {'Development' if settings.APP_DEBUG else 'Production'}"
    )

    executor = ThreadPoolExecutor(
        max_workers=settings.WAREHOUSE_EXECUTOR_MAX_WORKERS,
        thread_name_prefix="warehouse",
    )
    app.state.orchestrator = build_orchestrator(executor)
    logger.info(
        f"🗄️  Results cache {'enabled' if app.state.orchestrator.results_cache.enabled else 'disabled'}"
    )

    yield

    # Shutdown
    logger.info("🛑 Warehouse query service shutting down...")

    # Flush in-flight cache writes and close warehouse clients
    try:
        await app.state.orchestrator.shutdown(timeout_seconds=5.0)
    except Exception as e:
        logger.warning("Orchestrator shutdown encountered an error: %s", e)

    try:
        await postgres_pool.close_metadata_pool()
        logger.info("✅ Metadata pool closed")
    except Exception as e:
        logger.error(f"Error closing metadata pool: {e}")

    executor.shutdown(wait=False, cancel_futures=True)


# Initialize FastAPI application
app = FastAPI(
    title="Warehouse Query Service",
    description="Runs metric queries against project data warehouses with a results cache",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Configure CORS for local development
if settings.APP_DEBUG:
    app.add_middleware(
        cast(Any, CORSMiddleware),
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info(f"🔓 CORS enabled for origins: {settings.CORS_ORIGINS}")

app.include_router(queries.router, prefix="/api/v1/projects", tags=["queries"])


# ============================================================================
# Health Check
# ============================================================================


@app.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring and load balancers.

    Returns:
        dict: Service health status and version information
    """
    health_status: dict[str, Any] = {
        "status": "healthy",
        "service": "warehouse-query",
        "version": APP_VERSION,
        "environment": "development" if settings.APP_DEBUG else "production",
        "checks": {},
    }

    # Metadata database is created lazily; only probe it once it exists.
    try:
        pool = postgres_pool.get_metadata_pool()
        stats = await pool.get_pool_stats()
        if stats["initialized"]:
            is_healthy = await pool.is_healthy()
            health_status["checks"]["metadata_db"] = {
                "status": "healthy" if is_healthy else "unhealthy",
                "pool": stats,
            }
            if not is_healthy:
                health_status["status"] = "degraded"
        else:
            health_status["checks"]["metadata_db"] = {
                "status": "not_initialized",
                "pool": stats,
            }
    except Exception as e:
        health_status["checks"]["metadata_db"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "degraded"

    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is not None:
        health_status["checks"]["results_cache"] = {
            "enabled": orchestrator.results_cache.enabled,
            "pending_writes": orchestrator.results_cache.pending_writes,
        }
        health_status["checks"]["warehouse_clients"] = {
            "cached": len(orchestrator.client_cache),
        }

    return health_status


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "warehouse_query.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=settings.APP_RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
    )
