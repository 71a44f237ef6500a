# dealflow/entrypoints/api/routers/matching.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_crm, get_geocoder
from ....db import get_session
from ....domain.geo import proximity_tier
from ....domain.matching import match_buyers_for_property
from ....domain.scoring import match_quality, score_property
from ....domain.types import Score
from ....integrations.base import CrmError, CrmGateway
from ....schemas import (
    BuyerIn,
    BuyerMatchOut,
    PropertyBuyersRequest,
    PropertyIn,
    PropertyMatchOut,
    ScoredBuyerOut,
    ScoredPropertyOut,
    ScoreOut,
    ScoreRequest,
)
from ....service_layer import matching as svc
from ....service_layer.geocoding import Geocoder

router = APIRouter(tags=["matching"])


def score_out(s: Score) -> ScoreOut:
    return ScoreOut(
        score=s.score,
        quality=match_quality(s.score),
        is_priority=s.is_priority,
        distance_miles=round(s.distance_miles, 2) if s.distance_miles is not None else None,
        proximity=proximity_tier(s.distance_miles),
        budget_band=s.budget_band.value if s.budget_band else None,
        location_reason=s.location_reason,
        breakdown={
            "location": s.location_points,
            "beds": s.beds_points,
            "baths": s.baths_points,
            "budget": s.budget_points,
            "proximity": s.proximity_points,
        },
        highlights=list(s.highlights),
        concerns=list(s.concerns),
    )


@router.post("/matching/score", response_model=ScoreOut)
def score_pair(req: ScoreRequest) -> ScoreOut:
    return score_out(score_property(req.buyer.to_domain(), req.property.to_domain()))


@router.post("/matching/property-buyers", response_model=BuyerMatchOut)
def property_buyers(req: PropertyBuyersRequest) -> BuyerMatchOut:
    prop = req.property.to_domain()
    res = match_buyers_for_property(prop, [b.to_domain() for b in req.buyers])
    return BuyerMatchOut(
        property=req.property,
        interested=[ScoredBuyerOut(buyer=BuyerIn.from_domain(x.buyer), score=score_out(x.score)) for x in res.interested],
        potential=[ScoredBuyerOut(buyer=BuyerIn.from_domain(x.buyer), score=score_out(x.score)) for x in res.potential],
        total_count=res.total_count,
        dropped=res.dropped,
        time_ms=res.time_ms,
    )


@router.get("/matching/properties/{record_id}/buyers", response_model=BuyerMatchOut)
async def buyers_for_property(
    record_id: str,
    session: AsyncSession = Depends(get_session),
    crm: CrmGateway = Depends(get_crm),
    geocoder: Geocoder = Depends(get_geocoder),
) -> BuyerMatchOut:
    try:
        run = await svc.buyers_for_property(session, crm, geocoder, record_id)
    except svc.NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CrmError as e:
        raise HTTPException(status_code=502, detail=f"GHL error: {e}")
    await session.commit()

    res = run.result
    return BuyerMatchOut(
        property=PropertyIn.from_domain(run.target),
        interested=[ScoredBuyerOut(buyer=BuyerIn.from_domain(x.buyer), score=score_out(x.score)) for x in res.interested],
        potential=[ScoredBuyerOut(buyer=BuyerIn.from_domain(x.buyer), score=score_out(x.score)) for x in res.potential],
        total_count=res.total_count,
        dropped=res.dropped,
        time_ms=res.time_ms,
        drop_reasons=dict(run.buyers_report.drop_reasons),
        geocode=run.geocode.snapshot(),
    )


@router.get("/matching/buyers/{contact_id}/properties", response_model=PropertyMatchOut)
async def properties_for_buyer(
    contact_id: str,
    session: AsyncSession = Depends(get_session),
    crm: CrmGateway = Depends(get_crm),
    geocoder: Geocoder = Depends(get_geocoder),
) -> PropertyMatchOut:
    try:
        run = await svc.properties_for_buyer(session, crm, geocoder, contact_id)
    except svc.NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CrmError as e:
        raise HTTPException(status_code=502, detail=f"GHL error: {e}")
    await session.commit()

    res = run.result
    return PropertyMatchOut(
        buyer=BuyerIn.from_domain(run.target),
        interested=[ScoredPropertyOut(property=PropertyIn.from_domain(x.property), score=score_out(x.score)) for x in res.interested],
        potential=[ScoredPropertyOut(property=PropertyIn.from_domain(x.property), score=score_out(x.score)) for x in res.potential],
        total_count=res.total_count,
        dropped=res.dropped,
        time_ms=res.time_ms,
        drop_reasons=dict(run.properties_report.drop_reasons),
        geocode=run.geocode.snapshot(),
    )
