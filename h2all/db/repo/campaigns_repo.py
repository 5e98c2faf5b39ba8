from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from h2all.db.models.campaigns import Campaign


class CampaignsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, campaign_id: str) -> Campaign | None:
        return await session.get(Campaign, campaign_id)

    @staticmethod
    async def list_campaigns(
        session: AsyncSession,
        *,
        status: str | None = None,
        limit: int = 50,
    ) -> list[Campaign]:
        stmt = select(Campaign).order_by(Campaign.created_at.desc(), Campaign.id).limit(limit)
        if status is not None:
            stmt = stmt.where(Campaign.status == status)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        campaign_id: str,
        name: str,
        description: str | None,
        redemption_value: Decimal,
        expires_at: datetime | None,
        max_redemptions: int | None,
        now_utc: datetime,
    ) -> Campaign:
        campaign = Campaign(
            id=campaign_id,
            name=name,
            description=description,
            redemption_value=redemption_value,
            status="active",
            expires_at=expires_at,
            max_redemptions=max_redemptions,
            current_redemptions=0,
            total_redemptions=0,
            total_redemption_value=Decimal("0"),
            created_at=now_utc,
            updated_at=now_utc,
        )
        session.add(campaign)
        await session.flush()
        return campaign

    @staticmethod
    async def set_status(
        session: AsyncSession,
        *,
        campaign_id: str,
        from_status: str,
        to_status: str,
        now_utc: datetime,
    ) -> int:
        stmt = (
            update(Campaign)
            .where(Campaign.id == campaign_id, Campaign.status == from_status)
            .values(status=to_status, updated_at=now_utc)
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0)

    @staticmethod
    async def record_redemption(
        session: AsyncSession,
        *,
        campaign_id: str,
        value: Decimal,
        now_utc: datetime,
    ) -> int:
        stmt = (
            update(Campaign)
            .where(Campaign.id == campaign_id)
            .values(
                current_redemptions=Campaign.current_redemptions + 1,
                total_redemptions=Campaign.total_redemptions + 1,
                total_redemption_value=Campaign.total_redemption_value + value,
                updated_at=now_utc,
            )
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0)

    @staticmethod
    async def expire_active_campaigns(session: AsyncSession, *, now_utc: datetime) -> int:
        stmt = (
            update(Campaign)
            .where(
                Campaign.status == "active",
                Campaign.expires_at.is_not(None),
                Campaign.expires_at <= now_utc,
            )
            .values(status="expired", updated_at=now_utc)
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0)
