# dealflow/entrypoints/api/routers/deals.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_controller, get_crm, get_notifications, require_api_key
from ....db import get_session
from ....domain import deals as dl
from ....domain.stages import parse_stage
from ....domain.types import Deal
from ....integrations.base import CrmError, CrmGateway
from ....schemas import (
    BuyerDealsOut,
    BuyerRefOut,
    DealOut,
    DealsOut,
    NotificationOut,
    PipelineStatsOut,
    ProbabilityFactorOut,
    PropertyDealsOut,
    PropertyRefOut,
    TransitionRequest,
    TransitionResult,
    WinProbabilityOut,
)
from ....service_layer.activities import list_activities, record_transition
from ....service_layer.controller import NotificationLog, OptimisticStageController, TransitionCommand
from ....service_layer.loaders import load_deals

log = logging.getLogger(__name__)

router = APIRouter(tags=["deals"])


def _now() -> datetime:
    return datetime.now(timezone.utc)


def deal_out(d: Deal, now: datetime, *, transitioning: bool = False) -> DealOut:
    return DealOut(
        id=d.id,
        buyer=BuyerRefOut(contact_id=d.buyer.contact_id, name=d.buyer.name, email=d.buyer.email),
        property=PropertyRefOut(
            record_id=d.property.record_id,
            address=d.property.address,
            price=d.property.price,
            opportunity_id=d.property.opportunity_id,
        ),
        stage=d.stage,
        relation_id=d.relation_id,
        score=d.score,
        created_at=d.created_at,
        last_activity_at=d.last_activity_at,
        days_since_activity=dl.days_since_activity(d, now),
        is_stale=dl.is_stale(d, now),
        urgency=dl.urgency(d, now),
        transitioning=transitioning,
    )


async def _board(controller: OptimisticStageController, crm: CrmGateway, refresh: bool) -> tuple[list[Deal], dict[str, int]]:
    drop_reasons: dict[str, int] = {}
    if refresh or len(controller.board) == 0:
        try:
            deals, report = await load_deals(crm)
        except CrmError as e:
            raise HTTPException(status_code=502, detail=f"GHL error: {e}")
        controller.load_deals(deals)
        drop_reasons = dict(report.drop_reasons)
    return controller.board.view_all(), drop_reasons


async def _record(session: AsyncSession, cmd: TransitionCommand) -> None:
    # runs after GHL and the board have already moved
    try:
        await record_transition(session, cmd)
        await session.commit()
    except SQLAlchemyError:
        log.exception("activity for deal=%s not recorded", cmd.deal_id)
        await session.rollback()


def _result(cmd: TransitionCommand, controller: OptimisticStageController) -> TransitionResult:
    outcome = cmd.outcome
    deal = controller.board.view(cmd.deal_id)
    return TransitionResult(
        ok=cmd.ok,
        status=cmd.status.value,
        deal_id=cmd.deal_id,
        from_stage=cmd.from_stage,
        to_stage=cmd.to_stage,
        relation_id=outcome.relation_id if outcome else None,
        relation_deleted=outcome.relation_deleted if outcome else False,
        writeback_error=outcome.writeback_error if outcome else None,
        error=cmd.error,
        message=cmd.notification.message if cmd.notification else None,
        undo_token=cmd.token if cmd.can_undo else None,
        deal=deal_out(deal, _now()) if deal else None,
    )


@router.get("/deals", response_model=DealsOut)
async def list_deals(
    refresh: bool = Query(False),
    stage: list[str] | None = Query(None),
    buyer_id: str | None = Query(None),
    property_id: str | None = Query(None),
    search: str | None = Query(None),
    min_score: int | None = Query(None, ge=0, le=100),
    only_stale: bool = Query(False),
    controller: OptimisticStageController = Depends(get_controller),
    crm: CrmGateway = Depends(get_crm),
) -> DealsOut:
    try:
        stages = frozenset(parse_stage(s) for s in (stage or []))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    deals, drop_reasons = await _board(controller, crm, refresh)
    now = _now()
    filters = dl.DealFilters(
        stages=stages,
        buyer_id=buyer_id,
        property_id=property_id,
        search=search,
        min_score=min_score,
        only_stale=only_stale,
    )
    out = [deal_out(d, now, transitioning=controller.is_transitioning(d.id)) for d in dl.filter_deals(deals, filters, now)]
    return DealsOut(deals=out, drop_reasons=drop_reasons)


@router.get("/deals/stats", response_model=PipelineStatsOut)
async def deal_stats(
    controller: OptimisticStageController = Depends(get_controller),
    crm: CrmGateway = Depends(get_crm),
) -> PipelineStatsOut:
    deals, _ = await _board(controller, crm, refresh=False)
    s = dl.pipeline_stats(deals, _now())
    return PipelineStatsOut(
        total_deals=s.total_deals,
        pipeline_value=s.pipeline_value,
        closing_soon=s.closing_soon,
        needs_attention=s.needs_attention,
        new_this_week=s.new_this_week,
        by_stage={k.value: v for k, v in s.by_stage.items()},
    )


@router.get("/deals/by-buyer", response_model=list[BuyerDealsOut])
async def deals_by_buyer(
    controller: OptimisticStageController = Depends(get_controller),
    crm: CrmGateway = Depends(get_crm),
) -> list[BuyerDealsOut]:
    deals, _ = await _board(controller, crm, refresh=False)
    now = _now()
    return [
        BuyerDealsOut(
            buyer=BuyerRefOut(contact_id=g.buyer.contact_id, name=g.buyer.name, email=g.buyer.email),
            deals=[deal_out(d, now) for d in g.deals],
            total_deals=g.total_deals,
            total_value=g.total_value,
            active_stages=g.active_stages,
        )
        for g in dl.group_by_buyer(deals)
    ]


@router.get("/deals/by-property", response_model=list[PropertyDealsOut])
async def deals_by_property(
    controller: OptimisticStageController = Depends(get_controller),
    crm: CrmGateway = Depends(get_crm),
) -> list[PropertyDealsOut]:
    deals, _ = await _board(controller, crm, refresh=False)
    now = _now()
    return [
        PropertyDealsOut(
            property=PropertyRefOut(
                record_id=g.property.record_id,
                address=g.property.address,
                price=g.property.price,
                opportunity_id=g.property.opportunity_id,
            ),
            deals=[deal_out(d, now) for d in g.deals],
            total_buyers=g.total_buyers,
            highest_score=g.highest_score,
            furthest_stage=g.furthest_stage,
        )
        for g in dl.group_by_property(deals)
    ]


@router.get("/deals/stale", response_model=list[DealOut])
async def stale_deals(
    controller: OptimisticStageController = Depends(get_controller),
    crm: CrmGateway = Depends(get_crm),
) -> list[DealOut]:
    deals, _ = await _board(controller, crm, refresh=False)
    now = _now()
    stale = dl.filter_deals(deals, dl.DealFilters(only_stale=True), now)
    # oldest activity first
    stale.sort(key=lambda d: dl.days_since_activity(d, now), reverse=True)
    return [deal_out(d, now) for d in stale]


@router.get("/deals/{deal_id}", response_model=DealOut)
def get_deal(deal_id: str, controller: OptimisticStageController = Depends(get_controller)) -> DealOut:
    d = controller.board.view(deal_id)
    if d is None:
        raise HTTPException(status_code=404, detail="Deal not found")
    return deal_out(d, _now(), transitioning=controller.is_transitioning(deal_id))


@router.get("/deals/{deal_id}/win-probability", response_model=WinProbabilityOut)
def deal_win_probability(deal_id: str, controller: OptimisticStageController = Depends(get_controller)) -> WinProbabilityOut:
    d = controller.board.snapshot(deal_id)
    if d is None:
        raise HTTPException(status_code=404, detail="Deal not found")
    wp = dl.win_probability(d, _now())
    return WinProbabilityOut(
        deal_id=deal_id,
        probability=wp.probability,
        trend=wp.trend,
        label=wp.label,
        color=wp.color,
        factors=[
            ProbabilityFactorOut(label=f.label, impact=f.impact, weight=f.weight, description=f.description)
            for f in wp.factors
        ],
    )


@router.get("/deals/{deal_id}/activities")
async def deal_activities(
    deal_id: str,
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> list[dict[str, Any]]:
    rows = await list_activities(session, deal_id, limit=limit)
    return [
        {
            "id": r.id,
            "kind": r.kind.value,
            "from_stage": r.from_stage,
            "to_stage": r.to_stage,
            "relation_id": r.relation_id,
            "occurred_at": r.occurred_at,
        }
        for r in rows
    ]


@router.get("/deals/{deal_id}/notifications", response_model=list[NotificationOut])
def deal_notifications(deal_id: str, notifications: NotificationLog = Depends(get_notifications)) -> list[NotificationOut]:
    """Toast feed for one deal, newest last."""
    return [
        NotificationOut(
            kind=n.kind,
            deal_id=n.deal_id,
            message=n.message,
            undo_token=n.undo_token,
            created_at=n.created_at,
        )
        for n in notifications.for_deal(deal_id)
    ]


@router.post("/deals/{deal_id}/transition", response_model=TransitionResult, dependencies=[Depends(require_api_key)])
async def transition_deal(
    deal_id: str,
    req: TransitionRequest,
    controller: OptimisticStageController = Depends(get_controller),
    session: AsyncSession = Depends(get_session),
) -> TransitionResult:
    cmd = await controller.request_transition(deal_id, req.from_stage, req.to_stage)
    if cmd.ok:
        await _record(session, cmd)
    return _result(cmd, controller)


@router.post("/deals/undo/{token}", response_model=TransitionResult, dependencies=[Depends(require_api_key)])
async def undo_transition(
    token: str,
    controller: OptimisticStageController = Depends(get_controller),
    session: AsyncSession = Depends(get_session),
) -> TransitionResult:
    original = controller.undo_registry.get(token)
    if original is None:
        raise HTTPException(status_code=404, detail="Unknown or expired undo token")

    cmd = await original.undo()
    if cmd.ok:
        await _record(session, cmd)
    return _result(cmd, controller)
