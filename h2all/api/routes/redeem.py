from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError

from h2all.db.session import SessionLocal
from h2all.redemption.errors import RedemptionError
from h2all.redemption.service import RedemptionService
from h2all.redemption.types import RedemptionResult

from .api_helpers import infrastructure_http_error, redemption_http_error
from .api_models import (
    RedeemRequest,
    RedeemResponse,
    RedemptionCampaignResponse,
    RedemptionResponse,
    RedemptionTrackingResponse,
)

router = APIRouter(tags=["redemption"])
logger = structlog.get_logger(__name__)


def as_redeem_response(result: RedemptionResult) -> RedeemResponse:
    return RedeemResponse(
        redemption=RedemptionResponse(
            id=result.id,
            code=result.code,
            campaign_id=result.campaign_id,
            user_email=result.user_email,
            redeemed_at=result.redeemed_at,
            redemption_value=float(result.redemption_value),
            campaign=RedemptionCampaignResponse(
                name=result.campaign_name,
                description=result.campaign_description,
            ),
            tracking=RedemptionTrackingResponse(
                source=result.tracking.source,
                device=result.tracking.device,
                location=result.tracking.location,
                url=result.tracking.url,
            ),
        )
    )


@router.post("/api/redeem", response_model=RedeemResponse)
async def redeem_code(payload: RedeemRequest, request: Request) -> RedeemResponse:
    metadata = dict(payload.metadata or {})
    metadata.setdefault("device", request.headers.get("user-agent"))

    try:
        async with SessionLocal.begin() as session:
            result = await RedemptionService.redeem(
                session,
                campaign_id=payload.campaign_id,
                code=payload.code,
                user_email=payload.user_email,
                redemption_url=payload.redemption_url,
                metadata=metadata,
            )
    except RedemptionError as exc:
        logger.info(
            "redeem_rejected",
            campaign_id=payload.campaign_id,
            reason=type(exc).__name__,
        )
        raise redemption_http_error(exc) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise infrastructure_http_error(exc, operation="redeem") from exc

    return as_redeem_response(result)
