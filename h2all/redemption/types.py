from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True, slots=True)
class RedemptionTracking:
    source: str | None = None
    device: str | None = None
    location: str | None = None
    url: str | None = None


@dataclass(frozen=True, slots=True)
class RedemptionResult:
    id: str
    code: str
    campaign_id: str
    user_email: str
    user_id: str
    redeemed_at: datetime
    redemption_value: Decimal
    campaign_name: str
    campaign_description: str | None
    tracking: RedemptionTracking


@dataclass(frozen=True, slots=True)
class CodeCheckResult:
    campaign_id: str
    campaign_name: str
    campaign_description: str | None
    campaign_is_active: bool
    campaign_expires_at: datetime | None
    redemption_value: Decimal
    unique_code: str
    code_created_at: datetime | None
    checked_at: datetime


@dataclass(slots=True)
class IssuanceResult:
    campaign_id: str
    codes: list[str] = field(default_factory=list)
    requested: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def codes_generated(self) -> int:
        return len(self.codes)

    @property
    def success(self) -> bool:
        return not self.errors and self.codes_generated == self.requested
