"""
Error taxonomy for warehouse query execution.

Each error carries the HTTP status and a stable code so the API layer can
render it without inspecting messages.
"""

from __future__ import annotations

from typing import Any


class WarehouseQueryError(Exception):
    """Base class for errors raised by the query execution layer."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, data: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.data: dict[str, Any] = dict(data or {})


class NotFoundError(WarehouseQueryError):
    """No warehouse credentials (or project) exist for the requested id."""

    status_code = 404
    code = "NOT_FOUND"


class DecodeError(WarehouseQueryError):
    """Stored credentials could not be decrypted or parsed."""

    status_code = 500
    code = "UNEXPECTED_SERVER_ERROR"


class CacheError(WarehouseQueryError):
    """Reading from or writing to the results cache failed."""

    code = "CACHE_ERROR"


class WarehouseConnectionError(WarehouseQueryError):
    """The warehouse (or the SSH bastion in front of it) could not be reached."""

    status_code = 503
    code = "WAREHOUSE_CONNECTION_FAILED"


class WarehouseExecutionError(WarehouseQueryError):
    """The warehouse driver rejected or failed to run a query."""

    status_code = 502
    code = "WAREHOUSE_QUERY_FAILED"


class QueryCompilationError(WarehouseQueryError):
    """A metric query could not be compiled against its explore."""

    status_code = 400
    code = "COMPILATION_ERROR"
