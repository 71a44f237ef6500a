# dealflow/service_layer/matching.py
"""
GHL-backed matching: load both sides, fill in coordinates through the
geocache, then hand off to the pure aggregator.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.matching import MatchResult, match_buyers_for_property, match_properties_for_buyer
from ..domain.parsing import ParseReport
from ..domain.types import Buyer, Property, ScoredBuyer, ScoredProperty
from ..integrations.base import CrmGateway
from .geocoding import GeocodeStats, Geocoder, get_or_geocode
from .loaders import load_buyers, load_properties

log = logging.getLogger(__name__)


class NotFound(LookupError):
    pass


@dataclass(frozen=True)
class MatchRun:
    target: Buyer | Property
    result: MatchResult
    buyers_report: ParseReport
    properties_report: ParseReport
    geocode: GeocodeStats


def _buyer_query(b: Buyer) -> str | None:
    if b.preferred_location:
        return b.preferred_location
    if len(b.preferred_zip_codes) == 1:
        return next(iter(b.preferred_zip_codes))
    return None


def _property_query(p: Property) -> str | None:
    parts = [x for x in (p.address, p.city, p.state, p.zip_code) if x]
    return ", ".join(parts) or None


async def locate_buyer(session: AsyncSession, geocoder: Geocoder, b: Buyer, stats: GeocodeStats | None = None) -> Buyer:
    if b.location is not None:
        return b
    q = _buyer_query(b)
    if not q:
        return b
    coords = await get_or_geocode(session, q, geocoder=geocoder, stats=stats)
    return replace(b, location=coords) if coords else b


async def locate_property(session: AsyncSession, geocoder: Geocoder, p: Property, stats: GeocodeStats | None = None) -> Property:
    if p.location is not None:
        return p
    q = _property_query(p)
    if not q:
        return p
    coords = await get_or_geocode(session, q, geocoder=geocoder, stats=stats)
    return replace(p, location=coords) if coords else p


def _find_property(props: list[Property], record_id: str) -> Property:
    for p in props:
        if record_id in (p.record_id, p.opportunity_id, p.property_code):
            return p
    raise NotFound(f"Property {record_id!r} not found")


def _find_buyer(buyers: list[Buyer], contact_id: str) -> Buyer:
    for b in buyers:
        if contact_id in (b.contact_id, b.record_id):
            return b
    raise NotFound(f"Buyer {contact_id!r} not found")


async def buyers_for_property(
    session: AsyncSession, crm: CrmGateway, geocoder: Geocoder, record_id: str
) -> MatchRun:
    props, p_report = await load_properties(crm)
    target = _find_property(props, record_id)
    buyers, b_report = await load_buyers(crm)

    stats = GeocodeStats()
    target = await locate_property(session, geocoder, target, stats)
    located = [await locate_buyer(session, geocoder, b, stats) for b in buyers]

    result: MatchResult[ScoredBuyer] = match_buyers_for_property(target, located)
    return MatchRun(target=target, result=result, buyers_report=b_report, properties_report=p_report, geocode=stats)


async def properties_for_buyer(
    session: AsyncSession, crm: CrmGateway, geocoder: Geocoder, contact_id: str
) -> MatchRun:
    buyers, b_report = await load_buyers(crm)
    target = _find_buyer(buyers, contact_id)
    props, p_report = await load_properties(crm)

    stats = GeocodeStats()
    target = await locate_buyer(session, geocoder, target, stats)
    located = [await locate_property(session, geocoder, p, stats) for p in props]

    result: MatchResult[ScoredProperty] = match_properties_for_buyer(target, located)
    return MatchRun(target=target, result=result, buyers_report=b_report, properties_report=p_report, geocode=stats)
