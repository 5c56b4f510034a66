import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.config import settings
from app.workers.subscription.reconciliation import (
    DAILY_JOB,
    MONTHLY_JOB,
    run_daily_expiry_check,
    run_monthly_reset,
)

logger = logging.getLogger(__name__)
scheduler = BackgroundScheduler(timezone=settings.SCHEDULER_TIMEZONE)

# Overlapping runs are dropped, missed runs collapse into one
JOB_DEFAULTS = {"max_instances": 1, "coalesce": True, "misfire_grace_time": 3600}


# ---------------------------------------------------------
# SCHEDULER SETUP
# ---------------------------------------------------------
def register_jobs(target: BackgroundScheduler = scheduler) -> BackgroundScheduler:
    tz = settings.SCHEDULER_TIMEZONE

    # 1. Monthly expiry + quota reset (1st of month, midnight)
    target.add_job(
        run_monthly_reset,
        CronTrigger.from_crontab(settings.MONTHLY_RESET_CRON, timezone=tz),
        id=MONTHLY_JOB,
        replace_existing=True,
        **JOB_DEFAULTS,
    )

    # 2. Daily PAST_DUE sweep (midnight)
    target.add_job(
        run_daily_expiry_check,
        CronTrigger.from_crontab(settings.DAILY_EXPIRY_CRON, timezone=tz),
        id=DAILY_JOB,
        replace_existing=True,
        **JOB_DEFAULTS,
    )
    return target


def start_scheduler():
    if scheduler.running:
        return

    register_jobs(scheduler)
    scheduler.start()
    logger.info("🚀 Background Scheduler Started.")


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background Scheduler stopped.")
