from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from h2all.codes.generator import generate_unique_id
from h2all.db.models.redemption_codes import RedemptionCode


class RedemptionCodesRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, code_id: str) -> RedemptionCode | None:
        return await session.get(RedemptionCode, code_id)

    @staticmethod
    async def get_by_unique_code(
        session: AsyncSession,
        unique_code: str,
    ) -> RedemptionCode | None:
        stmt = select(RedemptionCode).where(RedemptionCode.unique_code == unique_code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_campaign_and_code(
        session: AsyncSession,
        *,
        campaign_id: str,
        unique_code: str,
    ) -> RedemptionCode | None:
        stmt = select(RedemptionCode).where(
            RedemptionCode.unique_code == unique_code,
            RedemptionCode.campaign_id == campaign_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_codes(
        session: AsyncSession,
        *,
        campaign_id: str | None = None,
        is_used: bool | None = None,
        limit: int = 100,
    ) -> list[RedemptionCode]:
        stmt = (
            select(RedemptionCode)
            .order_by(RedemptionCode.created_at.desc(), RedemptionCode.id)
            .limit(limit)
        )
        if campaign_id is not None:
            stmt = stmt.where(RedemptionCode.campaign_id == campaign_id)
        if is_used is not None:
            stmt = stmt.where(RedemptionCode.is_used == is_used)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def insert_codes_skip_existing(
        session: AsyncSession,
        *,
        campaign_id: str,
        unique_codes: Sequence[str],
        expires_at: datetime | None,
        now_utc: datetime,
    ) -> list[str]:
        """Inserts unused codes; returns the codes actually stored."""
        if not unique_codes:
            return []

        rows = [
            {
                "id": generate_unique_id(),
                "campaign_id": campaign_id,
                "unique_code": unique_code,
                "is_used": False,
                "expires_at": expires_at,
                "created_at": now_utc,
                "updated_at": now_utc,
            }
            for unique_code in unique_codes
        ]
        stmt = (
            postgresql_insert(RedemptionCode)
            .values(rows)
            .on_conflict_do_nothing(index_elements=[RedemptionCode.unique_code])
            .returning(RedemptionCode.unique_code)
        )
        result = await session.execute(stmt)
        inserted = set(result.scalars().all())
        return [unique_code for unique_code in unique_codes if unique_code in inserted]

    @staticmethod
    async def mark_used_if_unused(
        session: AsyncSession,
        *,
        code_id: str,
        user_id: str,
        user_email: str,
        redemption_value: Decimal,
        redemption_source: str | None,
        redemption_device: str | None,
        redemption_location: str | None,
        redemption_url: str | None,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(RedemptionCode)
            .where(
                RedemptionCode.id == code_id,
                RedemptionCode.is_used.is_(False),
            )
            .values(
                is_used=True,
                redeemed_at=now_utc,
                user_id=user_id,
                user_email=user_email,
                redemption_value=redemption_value,
                redemption_source=redemption_source,
                redemption_device=redemption_device,
                redemption_location=redemption_location,
                redemption_url=redemption_url,
                updated_at=now_utc,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0) == 1

    @staticmethod
    async def delete_unused(session: AsyncSession, *, code_id: str) -> int:
        stmt = delete(RedemptionCode).where(
            RedemptionCode.id == code_id,
            RedemptionCode.is_used.is_(False),
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0)
