from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from h2all.codes.generator import generate_short_id
from h2all.core.config import get_settings
from h2all.db.models.campaigns import Campaign
from h2all.db.repo.campaigns_repo import CampaignsRepo
from h2all.db.session import SessionLocal
from h2all.redemption.errors import CampaignNotFoundError, RedemptionError
from h2all.redemption.service import RedemptionService

from .api_helpers import (
    assert_internal_access,
    error_detail,
    infrastructure_http_error,
    redemption_http_error,
)
from .api_models import (
    CampaignCreateRequest,
    CampaignListResponse,
    CampaignResponse,
    CampaignStatusRequest,
    CheckedCampaignResponse,
    CheckedCodeResponse,
    CodeCheckResponse,
)

router = APIRouter(tags=["campaigns"])
logger = structlog.get_logger(__name__)
CAMPAIGN_ALLOWED_STATUS_TRANSITIONS = {("active", "inactive"), ("inactive", "active")}


def _campaign_as_response(campaign: Campaign) -> CampaignResponse:
    return CampaignResponse(
        id=campaign.id,
        name=campaign.name,
        description=campaign.description,
        redemption_value=float(campaign.redemption_value),
        status=campaign.status,
        is_active=campaign.is_active,
        expires_at=campaign.expires_at,
        max_redemptions=campaign.max_redemptions,
        current_redemptions=campaign.current_redemptions,
        total_redemptions=campaign.total_redemptions,
        total_redemption_value=float(campaign.total_redemption_value),
        created_at=campaign.created_at,
        updated_at=campaign.updated_at,
    )


@router.post("/api/campaigns", status_code=201, response_model=CampaignResponse)
async def create_campaign(payload: CampaignCreateRequest, request: Request) -> CampaignResponse:
    assert_internal_access(request, get_settings())

    now_utc = datetime.now(timezone.utc)
    if payload.expires_at is not None and payload.expires_at <= now_utc:
        raise HTTPException(
            status_code=400,
            detail=error_detail("Campaign expiration must be in the future"),
        )

    campaign_id = payload.id or generate_short_id()
    try:
        async with SessionLocal.begin() as session:
            campaign = await CampaignsRepo.create(
                session,
                campaign_id=campaign_id,
                name=payload.name,
                description=payload.description,
                redemption_value=payload.redemption_value,
                expires_at=payload.expires_at,
                max_redemptions=payload.max_redemptions,
                now_utc=now_utc,
            )
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail=error_detail("Campaign already exists", code="E_CAMPAIGN_EXISTS"),
        ) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise infrastructure_http_error(exc, operation="create_campaign") from exc

    logger.info("campaign_created", campaign_id=campaign.id)
    return _campaign_as_response(campaign)


@router.get("/api/campaigns", response_model=CampaignListResponse)
async def list_campaigns(
    request: Request,
    status: Literal["active", "inactive", "expired"] | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
) -> CampaignListResponse:
    assert_internal_access(request, get_settings())

    try:
        async with SessionLocal() as session:
            campaigns = await CampaignsRepo.list_campaigns(session, status=status, limit=limit)
    except (SQLAlchemyError, OSError) as exc:
        raise infrastructure_http_error(exc, operation="list_campaigns") from exc

    items = [_campaign_as_response(campaign) for campaign in campaigns]
    return CampaignListResponse(campaigns=items, count=len(items))


@router.get("/api/campaigns/validate", response_model=CodeCheckResponse)
async def validate_campaign_code(
    campaign_id: str | None = Query(default=None),
    unique_code: str | None = Query(default=None),
) -> CodeCheckResponse:
    try:
        async with SessionLocal() as session:
            result = await RedemptionService.check_code(
                session,
                campaign_id=campaign_id,
                code=unique_code,
            )
    except RedemptionError as exc:
        raise redemption_http_error(exc) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise infrastructure_http_error(exc, operation="validate_campaign_code") from exc

    return CodeCheckResponse(
        campaign=CheckedCampaignResponse(
            id=result.campaign_id,
            name=result.campaign_name,
            description=result.campaign_description,
            redemption_value=float(result.redemption_value),
            is_active=result.campaign_is_active,
            expires_at=result.campaign_expires_at,
        ),
        code=CheckedCodeResponse(
            unique_code=result.unique_code,
            campaign_id=result.campaign_id,
            created_at=result.code_created_at,
        ),
        validation_timestamp=result.checked_at,
    )


@router.get("/api/campaigns/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(campaign_id: str, request: Request) -> CampaignResponse:
    assert_internal_access(request, get_settings())

    try:
        async with SessionLocal() as session:
            campaign = await CampaignsRepo.get_by_id(session, campaign_id)
            if campaign is None:
                raise CampaignNotFoundError
    except RedemptionError as exc:
        raise redemption_http_error(exc) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise infrastructure_http_error(exc, operation="get_campaign") from exc

    return _campaign_as_response(campaign)


@router.post("/api/campaigns/{campaign_id}/status", response_model=CampaignResponse)
async def update_campaign_status(
    campaign_id: str,
    payload: CampaignStatusRequest,
    request: Request,
) -> CampaignResponse:
    assert_internal_access(request, get_settings())

    now_utc = datetime.now(timezone.utc)
    try:
        async with SessionLocal.begin() as session:
            campaign = await CampaignsRepo.get_by_id(session, campaign_id)
            if campaign is None:
                raise CampaignNotFoundError
            from_status = campaign.status
            if from_status != payload.status:
                if (from_status, payload.status) not in CAMPAIGN_ALLOWED_STATUS_TRANSITIONS:
                    raise HTTPException(
                        status_code=409,
                        detail=error_detail(
                            "Campaign status transition is not allowed",
                            details={"from": from_status, "to": payload.status},
                            code="E_CAMPAIGN_STATUS_CONFLICT",
                        ),
                    )
                updated = await CampaignsRepo.set_status(
                    session,
                    campaign_id=campaign_id,
                    from_status=from_status,
                    to_status=payload.status,
                    now_utc=now_utc,
                )
                if updated == 0:
                    raise HTTPException(
                        status_code=409,
                        detail=error_detail(
                            "Campaign status changed concurrently",
                            code="E_CAMPAIGN_STATUS_CONFLICT",
                        ),
                    )
                await session.refresh(campaign)
    except RedemptionError as exc:
        raise redemption_http_error(exc) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise infrastructure_http_error(exc, operation="update_campaign_status") from exc

    logger.info(
        "campaign_status_updated",
        campaign_id=campaign_id,
        status=campaign.status,
    )
    return _campaign_as_response(campaign)
