# dealflow/service_layer/briefing.py
"""
DB-backed store for the briefing dismissal keys. The dismissal rules
themselves live in domain.briefing and run against a plain dict loaded from
here, then the diff is written back.
"""
from __future__ import annotations

from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain import briefing
from ..models import BriefingDismissal


async def load_store(session: AsyncSession) -> dict[str, str]:
    rows = (await session.execute(select(BriefingDismissal.dismiss_key))).scalars().all()
    return {k: "true" for k in rows}


async def is_dismissed(session: AsyncSession, day: date) -> bool:
    return briefing.is_dismissed_for(await load_store(session), day)


async def dismiss(session: AsyncSession, day: date) -> list[str]:
    store = await load_store(session)
    before = set(store)
    purged = briefing.dismiss(store, day)

    if purged:
        await session.execute(delete(BriefingDismissal).where(BriefingDismissal.dismiss_key.in_(purged)))
    for k in set(store) - before:
        session.add(BriefingDismissal(dismiss_key=k))
    await session.flush()
    return purged
