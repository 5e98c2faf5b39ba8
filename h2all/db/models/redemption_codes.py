from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BOOLEAN,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from h2all.db.models.base import Base


class RedemptionCode(Base):
    __tablename__ = "redemption_codes"
    __table_args__ = (
        CheckConstraint(
            "(is_used = false AND redeemed_at IS NULL) OR (is_used = true AND redeemed_at IS NOT NULL)",
            name="ck_redemption_codes_used_consistency",
        ),
        Index("idx_redemption_codes_campaign", "campaign_id"),
        Index("idx_redemption_codes_campaign_used", "campaign_id", "is_used"),
        Index("idx_redemption_codes_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("campaigns.id"),
        nullable=False,
    )
    unique_code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    is_used: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, server_default=text("false"))
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    redemption_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    redemption_source: Mapped[str | None] = mapped_column(String(128), nullable=True)
    redemption_device: Mapped[str | None] = mapped_column(String(255), nullable=True)
    redemption_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    redemption_url: Mapped[str | None] = mapped_column(Text, nullable=True)
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
