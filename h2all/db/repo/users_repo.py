from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from h2all.db.models.users import RedemptionUser


class UsersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: str) -> RedemptionUser | None:
        return await session.get(RedemptionUser, user_id)

    @staticmethod
    async def ensure_exists(
        session: AsyncSession,
        *,
        user_id: str,
        email: str,
        now_utc: datetime,
    ) -> bool:
        """Creates the user row unless it exists. Returns True when a row was created."""
        stmt = (
            postgresql_insert(RedemptionUser)
            .values(
                id=user_id,
                email=email,
                balance=Decimal("0"),
                total_redemptions=0,
                total_redemption_value=Decimal("0"),
                is_active=True,
                is_admin=False,
                created_at=now_utc,
                updated_at=now_utc,
            )
            .on_conflict_do_nothing(index_elements=[RedemptionUser.id])
            .returning(RedemptionUser.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def credit_redemption(
        session: AsyncSession,
        *,
        user_id: str,
        value: Decimal,
        now_utc: datetime,
    ) -> int:
        stmt = (
            update(RedemptionUser)
            .where(RedemptionUser.id == user_id)
            .values(
                balance=RedemptionUser.balance + value,
                total_redemptions=RedemptionUser.total_redemptions + 1,
                total_redemption_value=RedemptionUser.total_redemption_value + value,
                updated_at=now_utc,
            )
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0)
