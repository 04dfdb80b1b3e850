"""Celery configuration for the deal refresh job."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from dealhub.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("dealhub", broker=broker_url, backend=backend_url)
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "deal-refresh": {
        "task": "dealhub.jobs.scheduler.run_refresh",
        "schedule": crontab(hour=int(os.environ.get("REFRESH_HOUR", "3")), minute=int(os.environ.get("REFRESH_MINUTE", "0"))),
    },
}


@celery_app.task(name="dealhub.jobs.scheduler.run_refresh")
def run_refresh_task():  # pragma: no cover - executed by worker
    import asyncio

    from dealhub.jobs.scheduler import run_refresh

    asyncio.run(run_refresh())
