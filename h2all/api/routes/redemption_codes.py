from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError

from h2all.codes.alphabet import CodeGenerationOptions
from h2all.core.config import get_settings
from h2all.db.models.redemption_codes import RedemptionCode
from h2all.db.repo.redemption_codes_repo import RedemptionCodesRepo
from h2all.db.session import SessionLocal
from h2all.redemption.errors import (
    CodeInUseError,
    RedemptionCodeNotFoundError,
    RedemptionError,
    RedemptionValidationError,
)
from h2all.redemption.issuance import MAX_HTTP_ISSUE_QUANTITY, CodeIssuanceService
from h2all.redemption.service import RedemptionService

from .api_helpers import (
    assert_internal_access,
    error_detail,
    infrastructure_http_error,
    redemption_http_error,
)
from .api_models import (
    IssuanceResponse,
    RedeemResponse,
    RedemptionCodeListResponse,
    RedemptionCodeResponse,
    RedemptionCodesPostRequest,
)
from .redeem import as_redeem_response

router = APIRouter(tags=["redemption-codes"])
logger = structlog.get_logger(__name__)
MAX_LISTED_CODES = 500


def _code_as_response(code: RedemptionCode) -> RedemptionCodeResponse:
    return RedemptionCodeResponse(
        id=code.id,
        campaign_id=code.campaign_id,
        unique_code=code.unique_code,
        is_used=code.is_used,
        redeemed_at=code.redeemed_at,
        user_id=code.user_id,
        user_email=code.user_email,
        expires_at=code.expires_at,
        redemption_value=(
            float(code.redemption_value) if code.redemption_value is not None else None
        ),
        created_at=code.created_at,
    )


def _generation_options() -> CodeGenerationOptions:
    settings = get_settings()
    return CodeGenerationOptions(length=settings.code_length, prefix=settings.code_prefix)


@router.get("/api/redemption-codes")
async def get_redemption_codes(
    request: Request,
    code_id: str | None = Query(default=None, alias="id"),
    campaign_id: str | None = Query(default=None, alias="campaignId"),
    code: str | None = Query(default=None),
    is_used: bool | None = Query(default=None, alias="isUsed"),
    limit: int = Query(default=100, ge=1, le=MAX_LISTED_CODES),
) -> RedemptionCodeResponse | RedemptionCodeListResponse:
    if campaign_id is None and code is None:
        # listing every campaign's codes is an admin operation
        assert_internal_access(request, get_settings())

    try:
        async with SessionLocal() as session:
            if code_id is not None:
                found = await RedemptionCodesRepo.get_by_id(session, code_id)
                if found is None or campaign_id not in (None, found.campaign_id):
                    raise RedemptionCodeNotFoundError
                return _code_as_response(found)

            if code is not None:
                found = await RedemptionCodesRepo.get_by_unique_code(session, code)
                if found is None:
                    raise RedemptionCodeNotFoundError
                return _code_as_response(found)

            codes = await RedemptionCodesRepo.list_codes(
                session,
                campaign_id=campaign_id,
                is_used=is_used,
                limit=limit,
            )
    except RedemptionError as exc:
        raise redemption_http_error(exc) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise infrastructure_http_error(exc, operation="list_redemption_codes") from exc

    items = [_code_as_response(item) for item in codes]
    return RedemptionCodeListResponse(codes=items, count=len(items))


async def _redeem_by_code(payload: RedemptionCodesPostRequest) -> RedeemResponse:
    try:
        async with SessionLocal.begin() as session:
            result = await RedemptionService.redeem_by_code(
                session,
                unique_code=payload.unique_code,
                user_email=payload.user_email,
                user_id=payload.user_id,
            )
    except RedemptionError as exc:
        raise redemption_http_error(exc) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise infrastructure_http_error(exc, operation="redeem_by_code") from exc

    return as_redeem_response(result)


async def _issue_codes(payload: RedemptionCodesPostRequest, response: Response) -> IssuanceResponse:
    try:
        if not payload.campaign_id or payload.quantity is None:
            raise RedemptionValidationError(
                "Missing required fields",
                details={
                    "campaignId": "OK" if payload.campaign_id else "Required",
                    "quantity": "OK" if payload.quantity is not None else "Required",
                },
            )
        async with SessionLocal.begin() as session:
            result = await CodeIssuanceService.issue_codes(
                session,
                campaign_id=payload.campaign_id,
                quantity=payload.quantity,
                options=_generation_options(),
                max_quantity=MAX_HTTP_ISSUE_QUANTITY,
            )
    except RedemptionError as exc:
        raise redemption_http_error(exc) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise infrastructure_http_error(exc, operation="issue_codes") from exc

    if not result.success:
        response.status_code = status.HTTP_207_MULTI_STATUS
    return IssuanceResponse(
        success=result.success,
        campaign_id=result.campaign_id,
        codes_generated=result.codes_generated,
        codes=result.codes,
        errors=result.errors or None,
    )


@router.post("/api/redemption-codes", status_code=status.HTTP_201_CREATED)
async def post_redemption_codes(
    payload: RedemptionCodesPostRequest,
    request: Request,
    response: Response,
    action: str | None = Query(default=None),
) -> RedeemResponse | IssuanceResponse:
    if action == "redeem":
        response.status_code = status.HTTP_200_OK
        return await _redeem_by_code(payload)
    if action not in (None, "generate"):
        raise HTTPException(
            status_code=400,
            detail=error_detail(f"Unsupported action: {action}"),
        )

    assert_internal_access(request, get_settings())
    return await _issue_codes(payload, response)


@router.delete("/api/redemption-codes/{code_id}")
async def delete_redemption_code(code_id: str, request: Request) -> dict[str, object]:
    assert_internal_access(request, get_settings())

    try:
        async with SessionLocal.begin() as session:
            code = await RedemptionCodesRepo.get_by_id(session, code_id)
            if code is None:
                raise RedemptionCodeNotFoundError
            if code.is_used:
                raise CodeInUseError(details={"redeemedBy": code.user_email})
            deleted = await RedemptionCodesRepo.delete_unused(session, code_id=code_id)
            if deleted == 0:
                raise CodeInUseError
    except RedemptionError as exc:
        raise redemption_http_error(exc) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise infrastructure_http_error(exc, operation="delete_redemption_code") from exc

    logger.info("redemption_code_deleted", code_id=code_id, campaign_id=code.campaign_id)
    return {"success": True, "id": code_id}
