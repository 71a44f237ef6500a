# dealflow/jobs/scheduler.py
from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import settings
from ..db import async_session
from .geocache import run_geocache_prune_job

log = logging.getLogger(__name__)


async def _run_geocache_prune() -> None:
    async with async_session() as session:
        await run_geocache_prune_job(session)
        await session.commit()


def build_scheduler() -> AsyncIOScheduler:
    sched = AsyncIOScheduler()

    # geocache cleanup cadence (default: every 6 hours)
    sched.add_job(
        lambda: asyncio.create_task(_run_geocache_prune()),
        "interval",
        minutes=int(settings.SCHED_GEOCACHE_PRUNE_INTERVAL_MINUTES),
    )

    return sched
