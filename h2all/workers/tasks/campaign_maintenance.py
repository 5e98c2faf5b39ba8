from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog

from h2all.db.repo.campaigns_repo import CampaignsRepo
from h2all.db.session import SessionLocal
from h2all.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


async def run_campaign_status_rollover_async() -> dict[str, int]:
    now_utc = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        expired_count = await CampaignsRepo.expire_active_campaigns(session, now_utc=now_utc)

    result = {"expired_campaigns": expired_count}
    logger.info("campaign_status_rollover_finished", **result)
    return result


@celery_app.task(name="h2all.workers.tasks.campaign_maintenance.run_campaign_status_rollover")
def run_campaign_status_rollover() -> dict[str, int]:
    return asyncio.run(run_campaign_status_rollover_async())


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "campaign-status-rollover-every-10-minutes": {
            "task": "h2all.workers.tasks.campaign_maintenance.run_campaign_status_rollover",
            "schedule": 600.0,
            "options": {"queue": "q_normal"},
        },
    }
)
