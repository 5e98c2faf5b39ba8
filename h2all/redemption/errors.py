from __future__ import annotations

from typing import Any


class RedemptionError(Exception):
    status_code = 400
    default_message = "Redemption failed"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class RedemptionValidationError(RedemptionError):
    default_message = "Invalid request"


class RedemptionCodeNotFoundError(RedemptionError):
    status_code = 404
    default_message = "Redemption code not found"


class CampaignNotFoundError(RedemptionError):
    status_code = 404
    default_message = "Campaign not found"


class CodeAlreadyRedeemedError(RedemptionError):
    default_message = "Code has already been redeemed"


class CodeExpiredError(RedemptionError):
    default_message = "Code has expired"


class CampaignInactiveError(RedemptionError):
    default_message = "Campaign is not active"


class CampaignEndedError(RedemptionError):
    default_message = "Campaign has ended"


class CodeInUseError(RedemptionError):
    status_code = 409
    default_message = "Cannot delete a redeemed code"
