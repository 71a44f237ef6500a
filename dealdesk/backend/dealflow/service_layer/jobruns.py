# dealflow/service_layer/jobruns.py
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import JobRun, JobRunStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def start_job(session: AsyncSession, job_name: str) -> JobRun:
    jr = JobRun(job_name=job_name, started_at=_utcnow(), status=JobRunStatus.running)
    session.add(jr)
    await session.flush()
    return jr


async def finish_job_success(session: AsyncSession, jr: JobRun, summary: dict[str, Any]) -> None:
    jr.status = JobRunStatus.success
    jr.finished_at = _utcnow()
    jr.summary_json = json.dumps(summary)
    jr.error = None
    await session.flush()


async def finish_job_fail(session: AsyncSession, jr: JobRun, err: Exception) -> None:
    jr.status = JobRunStatus.failed
    jr.finished_at = _utcnow()
    jr.error = f"{type(err).__name__}: {err}"
    await session.flush()


async def recent_runs(session: AsyncSession, job_name: str | None = None, limit: int = 20) -> list[JobRun]:
    q = select(JobRun).order_by(JobRun.started_at.desc(), JobRun.id.desc()).limit(limit)
    if job_name:
        q = q.where(JobRun.job_name == job_name)
    return list((await session.execute(q)).scalars().all())
