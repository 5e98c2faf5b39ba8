from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from h2all.db.models.campaigns import Campaign
from h2all.db.models.redemption_codes import RedemptionCode
from h2all.db.repo.campaigns_repo import CampaignsRepo
from h2all.db.repo.redemption_codes_repo import RedemptionCodesRepo
from h2all.db.repo.users_repo import UsersRepo
from h2all.redemption.errors import (
    CampaignEndedError,
    CampaignInactiveError,
    CampaignNotFoundError,
    CodeAlreadyRedeemedError,
    CodeExpiredError,
    RedemptionCodeNotFoundError,
    RedemptionValidationError,
)
from h2all.redemption.types import CodeCheckResult, RedemptionResult, RedemptionTracking
from h2all.services.url_parser import CampaignUrlData, validate_campaign_url
from h2all.services.user_ids import is_valid_email, normalize_email, user_id_from_email

logger = structlog.get_logger(__name__)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _metadata_value(metadata: Mapping[str, Any] | None, key: str) -> str | None:
    if not metadata:
        return None
    value = metadata.get(key)
    if value is None:
        return None
    return str(value)


class RedemptionService:
    @staticmethod
    def _validate_input(
        *,
        campaign_id: str | None,
        code: str | None,
        user_email: str | None,
    ) -> tuple[str, str, str]:
        campaign_id = (campaign_id or "").strip()
        code = (code or "").strip()
        user_email = normalize_email(user_email or "")
        if not campaign_id or not code or not user_email:
            raise RedemptionValidationError(
                "Missing required fields",
                details={
                    "campaignId": "OK" if campaign_id else "Required",
                    "code": "OK" if code else "Required",
                    "userEmail": "OK" if user_email else "Required",
                },
            )
        if not is_valid_email(user_email):
            raise RedemptionValidationError("Invalid email format")
        return campaign_id, code, user_email

    @staticmethod
    def _parse_tracking_url(redemption_url: str | None) -> CampaignUrlData | None:
        if not redemption_url:
            return None
        validation = validate_campaign_url(redemption_url)
        if not validation.is_valid:
            logger.warning(
                "redemption_url_invalid",
                redemption_url=redemption_url,
                errors=validation.errors,
            )
            return None
        return validation.data

    @staticmethod
    def _assert_code_redeemable(code_row: RedemptionCode, *, now_utc: datetime) -> None:
        if code_row.is_used:
            raise CodeAlreadyRedeemedError(
                details={
                    "redeemedAt": _isoformat(code_row.redeemed_at),
                    "redeemedBy": code_row.user_email,
                }
            )
        if code_row.expires_at is not None and now_utc > code_row.expires_at:
            raise CodeExpiredError(
                details={
                    "expiredAt": _isoformat(code_row.expires_at),
                    "currentTime": now_utc.isoformat(),
                }
            )

    @staticmethod
    def _assert_campaign_open(campaign: Campaign, *, now_utc: datetime) -> None:
        if not campaign.is_active:
            raise CampaignInactiveError(
                details={
                    "campaignStatus": campaign.status,
                    "campaignName": campaign.name,
                }
            )
        if campaign.expires_at is not None and now_utc > campaign.expires_at:
            raise CampaignEndedError(
                details={
                    "endedAt": _isoformat(campaign.expires_at),
                    "currentTime": now_utc.isoformat(),
                }
            )

    @staticmethod
    async def redeem(
        session: AsyncSession,
        *,
        campaign_id: str | None,
        code: str | None,
        user_email: str | None,
        redemption_url: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        now_utc: datetime | None = None,
    ) -> RedemptionResult:
        """Redeems ``code`` under ``campaign_id`` for ``user_email``.

        Must run inside a transaction owned by the caller. The code row is
        flipped with a conditional update so that concurrent redemptions of
        the same code cannot both succeed; user and campaign counters are
        incremented in SQL in the same transaction.
        """
        campaign_id, code, user_email = RedemptionService._validate_input(
            campaign_id=campaign_id,
            code=code,
            user_email=user_email,
        )
        now_utc = now_utc or datetime.now(timezone.utc)
        url_data = RedemptionService._parse_tracking_url(redemption_url)

        code_row = await RedemptionCodesRepo.get_by_campaign_and_code(
            session,
            campaign_id=campaign_id,
            unique_code=code,
        )
        if code_row is None:
            logger.info("redemption_code_not_found", campaign_id=campaign_id, code=code)
            raise RedemptionCodeNotFoundError
        RedemptionService._assert_code_redeemable(code_row, now_utc=now_utc)

        campaign = await CampaignsRepo.get_by_id(session, campaign_id)
        if campaign is None:
            raise CampaignNotFoundError
        RedemptionService._assert_campaign_open(campaign, now_utc=now_utc)

        user_id = user_id_from_email(user_email)
        created = await UsersRepo.ensure_exists(
            session,
            user_id=user_id,
            email=user_email,
            now_utc=now_utc,
        )
        if created:
            logger.info("redemption_user_created", user_id=user_id)

        value = Decimal(campaign.redemption_value or 0)
        tracking = RedemptionTracking(
            source=(url_data.additional_params.get("utm_source") if url_data else None)
            or _metadata_value(metadata, "source"),
            device=_metadata_value(metadata, "device"),
            location=_metadata_value(metadata, "location"),
            url=redemption_url,
        )

        flipped = await RedemptionCodesRepo.mark_used_if_unused(
            session,
            code_id=code_row.id,
            user_id=user_id,
            user_email=user_email,
            redemption_value=value,
            redemption_source=tracking.source,
            redemption_device=tracking.device,
            redemption_location=tracking.location,
            redemption_url=tracking.url,
            now_utc=now_utc,
        )
        if not flipped:
            logger.info("redemption_lost_race", code_id=code_row.id, campaign_id=campaign_id)
            raise CodeAlreadyRedeemedError

        await UsersRepo.credit_redemption(session, user_id=user_id, value=value, now_utc=now_utc)
        await CampaignsRepo.record_redemption(
            session,
            campaign_id=campaign_id,
            value=value,
            now_utc=now_utc,
        )

        logger.info(
            "redemption_completed",
            code_id=code_row.id,
            campaign_id=campaign_id,
            user_id=user_id,
            redemption_value=str(value),
        )
        return RedemptionResult(
            id=code_row.id,
            code=code,
            campaign_id=campaign_id,
            user_email=user_email,
            user_id=user_id,
            redeemed_at=now_utc,
            redemption_value=value,
            campaign_name=campaign.name,
            campaign_description=campaign.description,
            tracking=tracking,
        )

    @staticmethod
    async def redeem_by_code(
        session: AsyncSession,
        *,
        unique_code: str | None,
        user_email: str | None,
        user_id: str | None = None,
        now_utc: datetime | None = None,
    ) -> RedemptionResult:
        unique_code = (unique_code or "").strip()
        user_email = normalize_email(user_email or "")
        if not unique_code or not user_email:
            raise RedemptionValidationError(
                "Missing required fields",
                details={
                    "uniqueCode": "OK" if unique_code else "Required",
                    "userEmail": "OK" if user_email else "Required",
                },
            )
        if not is_valid_email(user_email):
            raise RedemptionValidationError("Invalid email format")
        if user_id is not None and user_id != user_id_from_email(user_email):
            raise RedemptionValidationError("userId does not match userEmail")

        code_row = await RedemptionCodesRepo.get_by_unique_code(session, unique_code)
        if code_row is None:
            raise RedemptionCodeNotFoundError

        return await RedemptionService.redeem(
            session,
            campaign_id=code_row.campaign_id,
            code=unique_code,
            user_email=user_email,
            now_utc=now_utc,
        )

    @staticmethod
    async def check_code(
        session: AsyncSession,
        *,
        campaign_id: str | None,
        code: str | None,
        now_utc: datetime | None = None,
    ) -> CodeCheckResult:
        """Runs the redemption checks for ``code`` without redeeming it."""
        campaign_id = (campaign_id or "").strip()
        code = (code or "").strip()
        if not campaign_id or not code:
            raise RedemptionValidationError(
                "Missing required parameters: campaign_id and unique_code",
                details={
                    "campaignId": "OK" if campaign_id else "Required",
                    "uniqueCode": "OK" if code else "Required",
                },
            )
        now_utc = now_utc or datetime.now(timezone.utc)

        code_row = await RedemptionCodesRepo.get_by_campaign_and_code(
            session,
            campaign_id=campaign_id,
            unique_code=code,
        )
        if code_row is None:
            raise RedemptionCodeNotFoundError
        RedemptionService._assert_code_redeemable(code_row, now_utc=now_utc)

        campaign = await CampaignsRepo.get_by_id(session, campaign_id)
        if campaign is None:
            raise CampaignNotFoundError
        RedemptionService._assert_campaign_open(campaign, now_utc=now_utc)

        return CodeCheckResult(
            campaign_id=campaign.id,
            campaign_name=campaign.name,
            campaign_description=campaign.description,
            campaign_is_active=campaign.is_active,
            campaign_expires_at=campaign.expires_at,
            redemption_value=Decimal(campaign.redemption_value or 0),
            unique_code=code_row.unique_code,
            code_created_at=code_row.created_at,
            checked_at=now_utc,
        )
