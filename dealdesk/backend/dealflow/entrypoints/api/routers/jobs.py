# dealflow/entrypoints/api/routers/jobs.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import require_api_key
from ....db import get_session
from ....jobs.geocache import run_geocache_prune_job
from ....schemas import GeocachePruneResult
from ....service_layer.geocoding import clear_geocache, geocache_stats
from ....service_layer.jobruns import recent_runs

router = APIRouter(tags=["jobs"])


@router.post("/jobs/geocache/prune", response_model=GeocachePruneResult, dependencies=[Depends(require_api_key)])
async def jobs_geocache_prune(
    ttl_hours: float | None = Query(None, gt=0),
    session: AsyncSession = Depends(get_session),
) -> GeocachePruneResult:
    try:
        res = await run_geocache_prune_job(session, ttl_hours=ttl_hours)
    finally:
        # the JobRun row is kept whether or not the prune worked
        await session.commit()
    return GeocachePruneResult(**res)


@router.get("/jobs/geocache/stats", dependencies=[Depends(require_api_key)])
async def jobs_geocache_stats(session: AsyncSession = Depends(get_session)) -> dict[str, int]:
    return await geocache_stats(session)


@router.delete("/jobs/geocache", dependencies=[Depends(require_api_key)])
async def jobs_geocache_clear(session: AsyncSession = Depends(get_session)) -> dict[str, int]:
    deleted = await clear_geocache(session)
    await session.commit()
    return {"deleted": deleted}


@router.get("/jobs/runs", dependencies=[Depends(require_api_key)])
async def jobs_runs(
    job_name: str | None = Query(None),
    limit: int = Query(20, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
) -> list[dict[str, Any]]:
    rows = await recent_runs(session, job_name=job_name, limit=limit)
    return [
        {
            "id": r.id,
            "job_name": r.job_name,
            "status": r.status.value,
            "started_at": r.started_at,
            "finished_at": r.finished_at,
            "error": r.error,
            "summary_json": r.summary_json,
        }
        for r in rows
    ]
