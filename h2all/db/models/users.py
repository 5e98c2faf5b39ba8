from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BOOLEAN, CheckConstraint, DateTime, Index, Integer, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column

from h2all.db.models.base import Base


class RedemptionUser(Base):
    __tablename__ = "redemption_users"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_redemption_users_balance_non_negative"),
        Index("idx_redemption_users_created_at", "created_at"),
    )

    # base64 of the lowercased email
    id: Mapped[str] = mapped_column(String(512), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    balance: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, server_default=text("0")
    )
    total_redemptions: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    total_redemption_value: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, server_default=text("0")
    )
    is_active: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, server_default=text("true"))
    is_admin: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
