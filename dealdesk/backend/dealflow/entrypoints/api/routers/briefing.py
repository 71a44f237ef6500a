# dealflow/entrypoints/api/routers/briefing.py
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import require_api_key
from ....db import get_session
from ....domain.briefing import utc_today
from ....schemas import BriefingDismissRequest, BriefingStatus
from ....service_layer import briefing as svc

router = APIRouter(tags=["briefing"])


@router.get("/briefing/dismissed", response_model=BriefingStatus)
async def briefing_dismissed(
    day: date | None = Query(None, description="Defaults to today (UTC)"),
    session: AsyncSession = Depends(get_session),
) -> BriefingStatus:
    d = day or utc_today()
    return BriefingStatus(day=d, dismissed=await svc.is_dismissed(session, d))


@router.post("/briefing/dismiss", response_model=BriefingStatus, dependencies=[Depends(require_api_key)])
async def briefing_dismiss(
    req: BriefingDismissRequest | None = None,
    session: AsyncSession = Depends(get_session),
) -> BriefingStatus:
    d = (req.day if req else None) or utc_today()
    await svc.dismiss(session, d)
    await session.commit()
    return BriefingStatus(day=d, dismissed=True)
