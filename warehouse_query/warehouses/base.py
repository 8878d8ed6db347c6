"""
Base Warehouse Client

Abstract interface shared by every supported warehouse dialect.
"""

from abc import ABC, abstractmethod
import asyncio
from concurrent.futures import Executor
import logging
from typing import Any, Callable, Dict, Optional

from warehouse_query.models import (
    DimensionType,
    RunQueryTags,
    WarehouseCredentials,
    WarehouseResults,
)

logger = logging.getLogger(__name__)


class WarehouseClient(ABC):
    """
    Abstract base class for running SQL against one warehouse.

    A client is bound to one immutable credentials record; connections are
    opened lazily on the first query and released by `close()`.
    """

    # Dialect hints consumed by the query compiler
    field_quote_char: str = '"'
    string_quote_char: str = "'"
    escape_string_quote_char: str = "'"

    def __init__(
        self,
        credentials: WarehouseCredentials,
        *,
        executor: Optional[Executor] = None,
    ):
        self.credentials = credentials
        self._executor = executor

    @property
    def warehouse_type(self) -> str:
        return self.credentials.type

    def _run_in_executor(self, func: Callable[..., Any], *args: Any):
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(self._executor, func, *args)

    @abstractmethod
    async def run_query(
        self, sql: str, tags: Optional[RunQueryTags] = None
    ) -> WarehouseResults:
        """
        Execute SQL and return typed fields plus rows.

        Raises:
            WarehouseConnectionError: the warehouse could not be reached
            WarehouseExecutionError: the warehouse rejected the query
        """

    @abstractmethod
    async def close(self) -> None:
        """Release any connections held by the client."""

    def escape_string(self, value: str) -> str:
        """Escape a value for use inside a string literal of this dialect."""
        if self.escape_string_quote_char == "\\":
            value = value.replace("\\", "\\\\")
        return value.replace(
            self.string_quote_char,
            f"{self.escape_string_quote_char}{self.string_quote_char}",
        )

    def quote_field(self, name: str) -> str:
        q = self.field_quote_char
        return f"{q}{name}{q}"


def dimension_type_from_name(
    type_name: Optional[str], mapping: Dict[str, DimensionType]
) -> DimensionType:
    """Map a driver-reported column type name onto a dimension type."""
    if not type_name:
        return DimensionType.STRING
    key = type_name.strip().upper()
    # Strip precision/parameters: NUMERIC(10,2), TIMESTAMP_NTZ(9), ...
    key = key.split("(", 1)[0].strip()
    return mapping.get(key, DimensionType.STRING)
