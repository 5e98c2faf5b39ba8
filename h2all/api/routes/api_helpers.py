from __future__ import annotations

from typing import Any

import structlog
from fastapi import HTTPException, Request

from h2all.redemption.errors import RedemptionError
from h2all.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

logger = structlog.get_logger(__name__)

SCHEMA_MISSING_MARKERS = ("does not exist", "undefined table", "undefinedtable")
CONNECTION_MARKERS = ("connect", "connection refused", "timeout", "timed out")


def error_detail(
    error: str,
    *,
    details: dict[str, Any] | None = None,
    code: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": error}
    if details is not None:
        payload["details"] = details
    if code is not None:
        payload["code"] = code
    return payload


def redemption_http_error(exc: RedemptionError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail=error_detail(exc.message, details=exc.details),
    )


def infrastructure_http_error(exc: Exception, *, operation: str) -> HTTPException:
    """Maps a storage failure onto 503 (schema or connectivity) or 500."""
    message = str(exc).lower()
    if any(marker in message for marker in SCHEMA_MISSING_MARKERS):
        status_code, error, code = 503, "Database schema is not initialized", "E_SCHEMA_MISSING"
    elif any(marker in message for marker in CONNECTION_MARKERS):
        status_code, error, code = 503, "Database is unavailable", "E_DATABASE_UNAVAILABLE"
    else:
        status_code, error, code = 500, "Internal server error", "E_INTERNAL"

    logger.error(
        "storage_operation_failed",
        operation=operation,
        status_code=status_code,
        code=code,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return HTTPException(status_code=status_code, detail=error_detail(error, code=code))


def is_internal_access_allowed(request: Request, settings: Any) -> bool:
    client_ip = extract_client_ip(
        request,
        trusted_proxies=getattr(settings, "internal_api_trusted_proxies", ""),
    )
    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_auth_failed", reason="ip_not_allowed", client_ip=client_ip)
        return False

    if not is_internal_request_authenticated(request, expected_token=settings.internal_api_token):
        logger.warning("internal_auth_failed", reason="invalid_credentials", client_ip=client_ip)
        return False
    return True


def assert_internal_access(request: Request, settings: Any) -> None:
    if not is_internal_access_allowed(request, settings):
        raise HTTPException(status_code=403, detail=error_detail("Forbidden", code="E_FORBIDDEN"))
