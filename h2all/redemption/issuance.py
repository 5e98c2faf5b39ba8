from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from h2all.codes.alphabet import CodeGenerationOptions
from h2all.codes.generator import MAX_BULK_CODES, generate_bulk_codes
from h2all.db.repo.campaigns_repo import CampaignsRepo
from h2all.db.repo.redemption_codes_repo import RedemptionCodesRepo
from h2all.redemption.errors import (
    CampaignInactiveError,
    CampaignNotFoundError,
    RedemptionValidationError,
)
from h2all.redemption.types import IssuanceResult

logger = structlog.get_logger(__name__)

MAX_HTTP_ISSUE_QUANTITY = 100
MAX_COLLISION_ROUNDS = 10
INSERT_CHUNK_SIZE = 1_000


class CodeIssuanceService:
    @staticmethod
    async def issue_codes(
        session: AsyncSession,
        *,
        campaign_id: str,
        quantity: int,
        options: CodeGenerationOptions | None = None,
        max_quantity: int = MAX_HTTP_ISSUE_QUANTITY,
        now_utc: datetime | None = None,
    ) -> IssuanceResult:
        """Generates and stores ``quantity`` new unused codes for an active campaign.

        Codes that collide with stored ones are dropped by the insert and
        regenerated, up to ``MAX_COLLISION_ROUNDS`` rounds. A shortfall after
        that is reported in ``errors`` instead of raising.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise RedemptionValidationError("Quantity must be an integer")
        if quantity < 1 or quantity > max_quantity:
            raise RedemptionValidationError(
                f"Quantity must be between 1 and {max_quantity:,}",
                details={"quantity": quantity},
            )

        campaign = await CampaignsRepo.get_by_id(session, campaign_id)
        if campaign is None:
            raise CampaignNotFoundError
        if not campaign.is_active:
            raise CampaignInactiveError(
                details={"campaignStatus": campaign.status, "campaignName": campaign.name}
            )

        now_utc = now_utc or datetime.now(timezone.utc)
        result = IssuanceResult(campaign_id=campaign_id, requested=quantity)
        issued: set[str] = set()

        for round_number in range(1, MAX_COLLISION_ROUNDS + 1):
            stored_before = len(result.codes)
            missing = quantity - stored_before
            if missing <= 0:
                break

            generated = generate_bulk_codes(missing, options, existing_codes=issued)
            for start in range(0, len(generated.codes), INSERT_CHUNK_SIZE):
                inserted = await RedemptionCodesRepo.insert_codes_skip_existing(
                    session,
                    campaign_id=campaign_id,
                    unique_codes=generated.codes[start : start + INSERT_CHUNK_SIZE],
                    expires_at=campaign.expires_at,
                    now_utc=now_utc,
                )
                result.codes.extend(inserted)
                issued.update(inserted)

            collisions = generated.generated - (len(result.codes) - stored_before)
            if collisions:
                logger.info(
                    "code_issuance_collisions",
                    campaign_id=campaign_id,
                    round=round_number,
                    collisions=collisions,
                )

        if len(result.codes) < quantity:
            result.errors.append(
                f"Generated {len(result.codes)} of {quantity} codes; "
                "the code space is too crowded for the remaining codes"
            )
            logger.warning(
                "code_issuance_partial",
                campaign_id=campaign_id,
                requested=quantity,
                generated=len(result.codes),
            )

        logger.info(
            "code_issuance_completed",
            campaign_id=campaign_id,
            requested=quantity,
            generated=result.codes_generated,
        )
        return result

    @staticmethod
    async def issue_bulk(
        session: AsyncSession,
        *,
        campaign_id: str,
        quantity: int,
        options: CodeGenerationOptions | None = None,
        now_utc: datetime | None = None,
    ) -> IssuanceResult:
        return await CodeIssuanceService.issue_codes(
            session,
            campaign_id=campaign_id,
            quantity=quantity,
            options=options,
            max_quantity=MAX_BULK_CODES,
            now_utc=now_utc,
        )
