from __future__ import annotations

from fastapi import APIRouter, Query

from h2all.services.url_parser import (
    check_campaign_data,
    is_redemption_url,
    parse_redemption_url,
    validate_campaign_url,
)

from .api_models import UrlParseResponse

router = APIRouter(tags=["redemption-url"])


@router.get("/api/redemption-url", response_model=UrlParseResponse)
async def inspect_redemption_url(url: str = Query(min_length=1, max_length=2048)) -> UrlParseResponse:
    parsed = parse_redemption_url(url)
    validation = validate_campaign_url(url)
    warnings = list(validation.warnings)
    if parsed.is_valid:
        warnings.extend(check_campaign_data(parsed).warnings)

    return UrlParseResponse(
        is_valid=parsed.is_valid,
        campaign_id=parsed.campaign_id,
        unique_code=parsed.unique_code,
        additional_params=parsed.additional_params,
        errors=parsed.errors,
        warnings=warnings,
        is_redemption_url=is_redemption_url(url),
    )
