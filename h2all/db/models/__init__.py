from h2all.db.models.campaigns import Campaign
from h2all.db.models.redemption_codes import RedemptionCode
from h2all.db.models.users import RedemptionUser

__all__ = [
    "Campaign",
    "RedemptionCode",
    "RedemptionUser",
]
