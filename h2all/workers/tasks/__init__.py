from h2all.workers.tasks.campaign_maintenance import run_campaign_status_rollover

__all__ = [
    "run_campaign_status_rollover",
]
