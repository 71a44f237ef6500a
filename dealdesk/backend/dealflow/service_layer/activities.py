# dealflow/service_layer/activities.py
from __future__ import annotations

import json

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ActivityKind, DealActivity
from .controller import TransitionCommand
from .transitions import TransitionStatus


async def record_transition(session: AsyncSession, cmd: TransitionCommand) -> DealActivity | None:
    """Audit row for a committed stage change. Noops and failures aren't recorded."""
    if cmd.status != TransitionStatus.ok or cmd.from_stage is None or cmd.to_stage is None:
        return None

    outcome = cmd.outcome
    row = DealActivity(
        deal_id=cmd.deal_id,
        kind=ActivityKind.stage_undo if cmd.is_undo else ActivityKind.stage_change,
        from_stage=cmd.from_stage.value,
        to_stage=cmd.to_stage.value,
        relation_id=outcome.relation_id if outcome else None,
        details=json.dumps({"undo_token": cmd.token}) if cmd.token else None,
    )
    if outcome and outcome.occurred_at:
        row.occurred_at = outcome.occurred_at
    session.add(row)
    await session.flush()
    return row


async def list_activities(session: AsyncSession, deal_id: str, limit: int = 50) -> list[DealActivity]:
    q = (
        select(DealActivity)
        .where(DealActivity.deal_id == deal_id)
        .order_by(DealActivity.occurred_at.desc(), DealActivity.id.desc())
        .limit(limit)
    )
    return list((await session.execute(q)).scalars().all())
