"""
Centralized API error handling helpers.

Goal: surface warehouse failures as actionable, consistently shaped errors
instead of opaque 500s.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status

from warehouse_query.config import settings
from warehouse_query.core.errors import WarehouseQueryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApiError:
    status_code: int
    code: str
    message: str
    hint: str | None = None
    debug: str | None = None


def _maybe_debug(exc: BaseException) -> str | None:
    if settings.APP_DEBUG:
        return str(exc)
    return None


def classify_snowflake_error(exc: BaseException) -> ApiError | None:
    """
    Classify Snowflake connector failures into user-actionable errors.

    Uses string matching because the connector reports network policy
    rejections through several exception types.
    """

    msg = str(exc)
    lower = msg.lower()

    # Snowflake network policy / VPN / IP allowlist failure.
    if ("ip/token" in lower and "not allowed" in lower) or (
        "is not allowed to access snowflake" in lower
    ):
        return ApiError(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code="SNOWFLAKE_IP_NOT_ALLOWED",
            message="Snowflake access blocked by network policy (VPN / IP allowlist).",
            hint="Allowlist this service's egress IP in Snowflake, then retry.",
            debug=_maybe_debug(exc),
        )

    return None


def classify_error(exc: BaseException) -> ApiError:
    sf = classify_snowflake_error(exc)
    if sf is not None:
        return sf

    if isinstance(exc, TimeoutError):
        return ApiError(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            code="QUERY_TIMEOUT",
            message="Query timed out.",
            hint="Narrow the query or raise QUERY_TIMEOUT_SECONDS.",
            debug=_maybe_debug(exc),
        )

    if isinstance(exc, WarehouseQueryError):
        # Driver detail is meaningful to users for execution and compilation failures.
        return ApiError(
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            debug=_maybe_debug(exc),
        )

    return ApiError(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
        debug=_maybe_debug(exc),
    )


def http_exception(operation: str, exc: BaseException) -> HTTPException:
    """
    Convert an exception into a consistent HTTPException payload.
    """
    api_error = classify_error(exc)

    if api_error.status_code >= 500:
        logger.error(
            "API error during '%s': %s\n%s",
            operation,
            exc,
            traceback.format_exc(),
        )
    else:
        logger.info("API request '%s' rejected: %s", operation, exc)

    detail: dict[str, Any] = {
        "code": api_error.code,
        "message": api_error.message,
        "operation": operation,
    }
    if isinstance(exc, WarehouseQueryError) and exc.data:
        detail["data"] = exc.data
    if api_error.hint:
        detail["hint"] = api_error.hint
    if api_error.debug:
        detail["debug"] = api_error.debug
    return HTTPException(status_code=api_error.status_code, detail=detail)
