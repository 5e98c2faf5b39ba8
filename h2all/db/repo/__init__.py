from h2all.db.repo.campaigns_repo import CampaignsRepo
from h2all.db.repo.redemption_codes_repo import RedemptionCodesRepo
from h2all.db.repo.users_repo import UsersRepo

__all__ = [
    "CampaignsRepo",
    "RedemptionCodesRepo",
    "UsersRepo",
]
