"""
Warehouse Client Cache

Keeps one live warehouse client per project and reuses it while the
project's effective credentials stay the same. Credentials are compared by
value on every resolution, so a rotated password or host immediately
produces a fresh client.

Concurrent resolutions for the same project are not serialised: if two
executions resolve different credentials, the last one to store its client
wins and the next resolution re-checks equality.

Clients are leased for the duration of an execution. A client that has been
replaced in the cache (or was never cacheable, e.g. behind an SSH tunnel) is
closed once its last lease is released, never while a query is still using it.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from warehouse_query.models import WarehouseCredentials
from warehouse_query.warehouses import (
    WarehouseClient,
    WarehouseClientFactory,
    warehouse_client_from_credentials,
)

logger = logging.getLogger(__name__)


class WarehouseClientCache:
    def __init__(self, client_factory: Optional[WarehouseClientFactory] = None) -> None:
        self._client_factory = client_factory or warehouse_client_from_credentials
        self._clients: dict[str, WarehouseClient] = {}
        self._leases: dict[int, int] = {}
        self._retired: dict[int, WarehouseClient] = {}

    def get(self, project_uuid: str) -> Optional[WarehouseClient]:
        return self._clients.get(project_uuid)

    def __len__(self) -> int:
        return len(self._clients)

    def resolve_client(
        self,
        project_uuid: str,
        credentials: WarehouseCredentials,
        *,
        cacheable: bool = True,
    ) -> WarehouseClient:
        """
        Return the cached client when its credentials equal `credentials`,
        otherwise build (and, if cacheable, store) a new one.
        """
        if not cacheable:
            client = self._client_factory(credentials)
            self._retired[id(client)] = client
            return client

        existing = self._clients.get(project_uuid)
        if existing is not None and existing.credentials == credentials:
            return existing

        client = self._client_factory(credentials)
        self._clients[project_uuid] = client
        if existing is not None:
            logger.info(
                "Warehouse credentials changed for project %s; replacing cached client",
                project_uuid,
            )
            self._retired[id(existing)] = existing
        return client

    @asynccontextmanager
    async def checkout(
        self,
        project_uuid: str,
        credentials: WarehouseCredentials,
        *,
        cacheable: bool = True,
    ) -> AsyncIterator[WarehouseClient]:
        """Resolve a client and hold a lease on it for the duration of the block."""
        client = self.resolve_client(project_uuid, credentials, cacheable=cacheable)
        key = id(client)
        self._leases[key] = self._leases.get(key, 0) + 1
        try:
            await self._close_idle_retired()
            yield client
        finally:
            remaining = self._leases.get(key, 1) - 1
            if remaining > 0:
                self._leases[key] = remaining
            else:
                self._leases.pop(key, None)
                await self._close_if_retired(client)

    async def _close_if_retired(self, client: WarehouseClient) -> None:
        key = id(client)
        if key not in self._retired or self._leases.get(key):
            return
        del self._retired[key]
        try:
            await client.close()
        except Exception as e:
            logger.warning(
                "Failed to close superseded %s client: %s", client.warehouse_type, e
            )

    async def _close_idle_retired(self) -> None:
        for client in list(self._retired.values()):
            await self._close_if_retired(client)

    async def close_all(self) -> None:
        """Close every cached and retired client."""
        clients = list(self._clients.values()) + list(self._retired.values())
        self._clients.clear()
        self._retired.clear()
        self._leases.clear()
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning("Failed to close %s client: %s", client.warehouse_type, e)
