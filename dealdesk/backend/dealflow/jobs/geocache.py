# dealflow/jobs/geocache.py
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..service_layer.geocoding import geocache_stats, prune_geocache
from ..service_layer.jobruns import finish_job_fail, finish_job_success, start_job

log = logging.getLogger(__name__)

JOB_NAME = "geocache_prune"


async def run_geocache_prune_job(session: AsyncSession, *, ttl_hours: float | None = None) -> dict[str, int]:
    """Drops expired geocache entries. The JobRun row records the outcome either way."""
    jr = await start_job(session, JOB_NAME)
    try:
        deleted = await prune_geocache(session, ttl_hours=ttl_hours)
        summary = {"deleted": deleted, **(await geocache_stats(session))}
    except Exception as e:
        await finish_job_fail(session, jr, e)
        log.exception("geocache prune failed")
        raise

    await finish_job_success(session, jr, summary)
    log.info("geocache prune: %s", summary)
    return {"job_run_id": jr.id, **summary}
