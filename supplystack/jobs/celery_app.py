"""Celery configuration for the scheduled material sync."""

from __future__ import annotations

import asyncio
import os

from celery import Celery
from celery.schedules import crontab

from supplystack.jobs.sync import run_scheduled_sync
from supplystack.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("supplystack", broker=broker_url, backend=backend_url)
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "nightly-material-sync": {
        "task": "supplystack.jobs.sync.run_scheduled_sync",
        "schedule": crontab(hour=int(os.environ.get("SYNC_HOUR", "2")), minute=int(os.environ.get("SYNC_MINUTE", "0"))),
    },
}


@celery_app.task(name="supplystack.jobs.sync.run_scheduled_sync")
def run_scheduled_sync_task() -> str:
    return asyncio.run(run_scheduled_sync())
