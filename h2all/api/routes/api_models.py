from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RedeemRequest(CamelModel):
    # presence is checked by the service so that missing fields report per-field details
    campaign_id: str | None = None
    code: str | None = None
    user_email: str | None = None
    redemption_url: str | None = None
    metadata: dict[str, Any] | None = None


class RedemptionTrackingResponse(CamelModel):
    source: str | None = None
    device: str | None = None
    location: str | None = None
    url: str | None = None


class RedemptionCampaignResponse(CamelModel):
    name: str
    description: str | None = None


class RedemptionResponse(CamelModel):
    id: str
    code: str
    campaign_id: str
    user_email: str
    redeemed_at: datetime
    redemption_value: float
    campaign: RedemptionCampaignResponse
    tracking: RedemptionTrackingResponse


class RedeemResponse(CamelModel):
    success: bool = True
    message: str = "Code redeemed successfully"
    redemption: RedemptionResponse


class RedemptionCodeResponse(CamelModel):
    id: str
    campaign_id: str
    unique_code: str
    is_used: bool
    redeemed_at: datetime | None = None
    user_id: str | None = None
    user_email: str | None = None
    expires_at: datetime | None = None
    redemption_value: float | None = None
    created_at: datetime


class RedemptionCodeListResponse(CamelModel):
    codes: list[RedemptionCodeResponse]
    count: int


class RedemptionCodesPostRequest(CamelModel):
    campaign_id: str | None = None
    quantity: int | None = None
    unique_code: str | None = None
    user_id: str | None = None
    user_email: str | None = None


class IssuanceResponse(CamelModel):
    success: bool
    campaign_id: str
    codes_generated: int
    codes: list[str]
    errors: list[str] | None = None


class CampaignCreateRequest(CamelModel):
    id: str | None = Field(default=None, min_length=1, max_length=50, pattern=r"^[a-zA-Z0-9_-]+$")
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    redemption_value: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    expires_at: datetime | None = None
    max_redemptions: int | None = Field(default=None, gt=0)

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class CampaignStatusRequest(CamelModel):
    status: Literal["active", "inactive"]


class CampaignResponse(CamelModel):
    id: str
    name: str
    description: str | None = None
    redemption_value: float
    status: str
    is_active: bool
    expires_at: datetime | None = None
    max_redemptions: int | None = None
    current_redemptions: int
    total_redemptions: int
    total_redemption_value: float
    created_at: datetime
    updated_at: datetime


class CampaignListResponse(CamelModel):
    campaigns: list[CampaignResponse]
    count: int


class UtmParamsModel(CamelModel):
    source: str | None = None
    medium: str | None = None
    content: str | None = None


class CampaignCookieRequest(CamelModel):
    redemption_url: str | None = None
    campaign_id: str | None = None
    unique_code: str | None = None
    utm_params: UtmParamsModel | None = None
    expiration_hours: float | None = None


class CampaignCookiePayload(CamelModel):
    campaign_id: str
    unique_code: str
    timestamp: int
    expiration_hours: float
    utm_params: UtmParamsModel | None = None


class CampaignCookieResponse(CamelModel):
    success: bool
    data: CampaignCookiePayload | None = None
    expires_at: datetime | None = None
    time_remaining_ms: float | None = None
    errors: list[str] | None = None


class UrlParseResponse(CamelModel):
    is_valid: bool
    campaign_id: str
    unique_code: str
    additional_params: dict[str, str]
    errors: list[str]
    warnings: list[str]
    is_redemption_url: bool


class CheckedCampaignResponse(CamelModel):
    id: str
    name: str
    description: str | None = None
    redemption_value: float
    is_active: bool
    expires_at: datetime | None = None


class CheckedCodeResponse(CamelModel):
    unique_code: str
    campaign_id: str
    is_used: bool = False
    created_at: datetime | None = None


class CodeCheckResponse(CamelModel):
    valid: bool = True
    message: str = "Campaign and code are valid for redemption"
    campaign: CheckedCampaignResponse
    code: CheckedCodeResponse
    validation_timestamp: datetime
