"""
SSH Tunnel

Optionally forwards a local port through an SSH bastion to the warehouse.
One tunnel is created per query execution; the caller must disconnect it on
every exit path.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import asyncssh

from warehouse_query.config import settings
from warehouse_query.core.errors import WarehouseConnectionError
from warehouse_query.models import WarehouseCredentials, uses_ssh_tunnel

logger = logging.getLogger(__name__)

LOCAL_BIND_HOST = "127.0.0.1"


class SshTunnel:
    """
    Usage:
        tunnel = SshTunnel(credentials)
        effective = await tunnel.connect()
        try:
            ...  # talk to the warehouse using `effective`
        finally:
            await tunnel.disconnect()
    """

    def __init__(
        self,
        credentials: WarehouseCredentials,
        *,
        connect_timeout: Optional[float] = None,
    ):
        self.credentials = credentials
        self.connect_timeout = (
            connect_timeout
            if connect_timeout is not None
            else settings.SSH_CONNECT_TIMEOUT_SECONDS
        )
        self.local_port: Optional[int] = None
        self._connection: Optional[asyncssh.SSHClientConnection] = None
        self._listener: Optional[asyncssh.SSHListener] = None

    @property
    def is_active(self) -> bool:
        return self._connection is not None

    async def connect(self) -> WarehouseCredentials:
        """
        Open the tunnel if the credentials ask for one.

        Returns:
            Credentials pointing at the local end of the tunnel, or the
            original credentials when no tunnel is configured.
        """
        creds = self.credentials
        if not uses_ssh_tunnel(creds):
            return creds
        if self._connection is not None:
            raise RuntimeError("SSH tunnel is already connected")

        if not (creds.ssh_tunnel_host and creds.ssh_tunnel_user and creds.ssh_tunnel_private_key):
            raise WarehouseConnectionError(
                "SSH tunnel requires host, user and private key"
            )

        try:
            private_key = asyncssh.import_private_key(creds.ssh_tunnel_private_key)
            self._connection = await asyncio.wait_for(
                asyncssh.connect(
                    creds.ssh_tunnel_host,
                    port=creds.ssh_tunnel_port,
                    username=creds.ssh_tunnel_user,
                    client_keys=[private_key],
                    known_hosts=None,
                ),
                timeout=self.connect_timeout,
            )
            self._listener = await self._connection.forward_local_port(
                LOCAL_BIND_HOST, 0, creds.host, creds.port
            )
        except (OSError, asyncssh.Error, asyncssh.KeyImportError, asyncio.TimeoutError) as e:
            await self.disconnect()
            raise WarehouseConnectionError(
                f"Failed to open SSH tunnel to {creds.ssh_tunnel_host}: {e}"
            ) from e

        self.local_port = self._listener.get_port()
        logger.debug(
            f"SSH tunnel open: {LOCAL_BIND_HOST}:{self.local_port} -> "
            f"{creds.host}:{creds.port} via {creds.ssh_tunnel_host}"
        )
        return creds.model_copy(update={"host": LOCAL_BIND_HOST, "port": self.local_port})

    async def disconnect(self) -> None:
        """Close the tunnel. Safe to call more than once."""
        listener, self._listener = self._listener, None
        connection, self._connection = self._connection, None
        self.local_port = None

        if listener is not None:
            listener.close()
        if connection is not None:
            connection.close()
            try:
                await connection.wait_closed()
            except (OSError, asyncssh.Error) as e:
                logger.debug(f"Error while closing SSH connection: {e}")

