# scripts/run_scheduler.py
from __future__ import annotations

import asyncio
import logging

from dealflow.config import settings
from dealflow.db import async_session, init_models
from dealflow.jobs.geocache import run_geocache_prune_job
from dealflow.jobs.scheduler import build_scheduler

log = logging.getLogger("dealflow.scheduler")


def _quiet_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


async def main() -> None:
    _quiet_logging()
    await init_models()

    # the interval trigger waits a full period before its first run
    async with async_session() as session:
        await run_geocache_prune_job(session)
        await session.commit()

    scheduler = build_scheduler()
    scheduler.start()
    log.info("geocache prune scheduled every %d min", settings.SCHED_GEOCACHE_PRUNE_INTERVAL_MINUTES)

    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, asyncio.CancelledError):
        scheduler.shutdown()
        log.info("scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
