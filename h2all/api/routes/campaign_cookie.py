from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from h2all.core.config import get_settings
from h2all.services.campaign_cookies import (
    CampaignCookieData,
    CampaignCookieManager,
    CookieOptions,
    ResponseCookieStore,
    UtmParams,
)
from h2all.services.url_parser import parse_redemption_url

from .api_helpers import assert_internal_access, error_detail
from .api_models import (
    CampaignCookiePayload,
    CampaignCookieRequest,
    CampaignCookieResponse,
    UtmParamsModel,
)

router = APIRouter(tags=["campaign-cookie"])
logger = structlog.get_logger(__name__)


def _build_manager(request: Request, cookie_sink: Response) -> CampaignCookieManager:
    settings = get_settings()
    return CampaignCookieManager(
        ResponseCookieStore(request.cookies, cookie_sink),
        cookie_name=settings.campaign_cookie_name,
        default_expiration_hours=settings.campaign_cookie_default_hours,
        default_domain=settings.campaign_cookie_domain or None,
        secure_default=request.url.scheme == "https",
    )


def _respond(status_code: int, content: dict[str, Any], cookie_sink: Response) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=content)
    for cookie_header in cookie_sink.headers.getlist("set-cookie"):
        response.headers.append("set-cookie", cookie_header)
    return response


def _as_payload(data: CampaignCookieData) -> CampaignCookiePayload:
    utm = data.utm_params
    return CampaignCookiePayload(
        campaign_id=data.campaign_id,
        unique_code=data.unique_code,
        timestamp=data.timestamp,
        expiration_hours=data.expiration_hours,
        utm_params=(
            UtmParamsModel(source=utm.source, medium=utm.medium, content=utm.content)
            if utm is not None
            else None
        ),
    )


def _cookie_body(model: CampaignCookieResponse) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def _success_body(manager: CampaignCookieManager) -> dict[str, Any]:
    result = manager.get_campaign_cookie()
    expiration = manager.get_campaign_cookie_expiration()
    return _cookie_body(
        CampaignCookieResponse(
            success=True,
            data=_as_payload(result.data) if result.data is not None else None,
            expires_at=expiration.expires_at,
            time_remaining_ms=expiration.time_remaining_ms,
        )
    )


def _failure_body(errors: list[str]) -> dict[str, Any]:
    return _cookie_body(CampaignCookieResponse(success=False, errors=errors))


@router.post("/api/campaign-cookie")
async def set_campaign_cookie(payload: CampaignCookieRequest, request: Request) -> JSONResponse:
    cookie_sink = Response()
    campaign_id = payload.campaign_id
    unique_code = payload.unique_code
    utm_params = UtmParams()

    if payload.redemption_url:
        parsed = parse_redemption_url(payload.redemption_url)
        if not parsed.is_valid:
            return _respond(
                status.HTTP_400_BAD_REQUEST,
                error_detail("Invalid redemption URL", details={"errors": parsed.errors}),
                cookie_sink,
            )
        campaign_id = parsed.campaign_id
        unique_code = parsed.unique_code
        utm_params = UtmParams.from_params(parsed.additional_params)

    if not campaign_id or not unique_code:
        return _respond(
            status.HTTP_400_BAD_REQUEST,
            error_detail(
                "Missing required fields",
                details={
                    "campaignId": "OK" if campaign_id else "Required",
                    "uniqueCode": "OK" if unique_code else "Required",
                },
            ),
            cookie_sink,
        )

    if payload.utm_params is not None:
        utm_params = utm_params.merged(
            UtmParams(
                source=payload.utm_params.source,
                medium=payload.utm_params.medium,
                content=payload.utm_params.content,
            )
        )

    manager = _build_manager(request, cookie_sink)
    options = manager.default_options()
    if payload.expiration_hours is not None:
        options = CookieOptions(
            expiration_hours=payload.expiration_hours,
            domain=options.domain,
        )

    result = manager.set_campaign_cookie(
        campaign_id=campaign_id,
        unique_code=unique_code,
        utm_params=utm_params if utm_params.to_payload() else None,
        options=options,
    )
    if not result.success:
        logger.info("campaign_cookie_rejected", campaign_id=campaign_id, errors=result.errors)
        return _respond(status.HTTP_400_BAD_REQUEST, _failure_body(result.errors), cookie_sink)

    logger.info("campaign_cookie_set", campaign_id=campaign_id)
    return _respond(status.HTTP_200_OK, _success_body(manager), cookie_sink)


@router.get("/api/campaign-cookie")
async def get_campaign_cookie(request: Request) -> JSONResponse:
    cookie_sink = Response()
    manager = _build_manager(request, cookie_sink)
    result = manager.get_campaign_cookie()
    if not result.is_valid:
        status_code = (
            status.HTTP_400_BAD_REQUEST
            if "Invalid campaign cookie data" in result.errors
            else status.HTTP_404_NOT_FOUND
        )
        body = _failure_body(result.errors)
        body["isExpired"] = result.is_expired
        return _respond(status_code, body, cookie_sink)

    return _respond(status.HTTP_200_OK, _success_body(manager), cookie_sink)


@router.patch("/api/campaign-cookie/utm")
async def update_campaign_cookie_utm(payload: UtmParamsModel, request: Request) -> JSONResponse:
    cookie_sink = Response()
    manager = _build_manager(request, cookie_sink)
    result = manager.update_campaign_cookie_utm(
        UtmParams(source=payload.source, medium=payload.medium, content=payload.content)
    )
    if not result.success:
        return _respond(status.HTTP_404_NOT_FOUND, _failure_body(result.errors), cookie_sink)

    return _respond(status.HTTP_200_OK, _success_body(manager), cookie_sink)


@router.delete("/api/campaign-cookie")
async def clear_campaign_cookie(request: Request) -> JSONResponse:
    cookie_sink = Response()
    manager = _build_manager(request, cookie_sink)
    result = manager.clear_campaign_cookie()
    if not result.success:
        return _respond(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            _failure_body(result.errors),
            cookie_sink,
        )
    return _respond(status.HTTP_200_OK, {"success": True}, cookie_sink)


@router.get("/api/campaign-cookie/debug")
async def campaign_cookie_debug(request: Request) -> JSONResponse:
    assert_internal_access(request, get_settings())

    cookie_sink = Response()
    manager = _build_manager(request, cookie_sink)
    info = manager.debug_info()
    info["checked_at"] = datetime.now(timezone.utc).isoformat()
    return _respond(status.HTTP_200_OK, info, cookie_sink)
