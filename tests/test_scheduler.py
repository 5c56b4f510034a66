# -*- coding: utf-8 -*-
"""
Job registration on the background scheduler.
"""

from apscheduler.schedulers.background import BackgroundScheduler

from app.scheduler import register_jobs
from app.workers.subscription.reconciliation import (
    DAILY_JOB,
    MONTHLY_JOB,
    run_daily_expiry_check,
    run_monthly_reset,
)


def _fields(job):
    return {f.name: str(f) for f in job.trigger.fields}


def test_jobs_are_registered():
    scheduler = register_jobs(BackgroundScheduler(timezone="UTC"))

    monthly = scheduler.get_job(MONTHLY_JOB)
    daily = scheduler.get_job(DAILY_JOB)

    assert monthly.func is run_monthly_reset
    assert daily.func is run_daily_expiry_check


def test_cron_schedules():
    scheduler = register_jobs(BackgroundScheduler(timezone="UTC"))

    monthly = _fields(scheduler.get_job(MONTHLY_JOB))
    daily = _fields(scheduler.get_job(DAILY_JOB))

    assert (monthly["day"], monthly["hour"], monthly["minute"]) == ("1", "0", "0")
    assert (daily["day"], daily["hour"], daily["minute"]) == ("*", "0", "0")


def test_runs_never_overlap():
    scheduler = register_jobs(BackgroundScheduler(timezone="UTC"))

    for job in scheduler.get_jobs():
        assert job.max_instances == 1
        assert job.coalesce is True

