# dealflow/service_layer/loaders.py
from __future__ import annotations

import logging
from typing import Any

from ..config import settings
from ..domain.parsing import ParseReport, parse_buyer, parse_deal, parse_many, parse_property
from ..domain.types import Buyer, Deal, Property
from ..integrations.base import CrmError, CrmGateway

log = logging.getLogger(__name__)


def _require(pipeline_id: str | None, name: str) -> str:
    if not pipeline_id:
        raise CrmError(f"{name} is not configured")
    return pipeline_id


def _has_custom_fields(opp: dict[str, Any]) -> bool:
    c = opp.get("contact")
    return isinstance(c, dict) and bool(c.get("customFields"))


async def _with_contacts(crm: CrmGateway, opps: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Search results only carry a contact stub; buyer criteria need the full contact."""
    out: list[dict[str, Any]] = []
    for o in opps:
        if _has_custom_fields(o):
            out.append(o)
            continue
        cid = o.get("contactId") or (o.get("contact") or {}).get("id")
        if not cid:
            out.append(o)
            continue
        contact = await crm.get_contact(str(cid))
        out.append({**o, "contact": {**(o.get("contact") or {}), **contact}} if contact else o)
    return out


async def load_buyers(crm: CrmGateway, *, pipeline_id: str | None = None) -> tuple[list[Buyer], ParseReport]:
    pid = _require(pipeline_id or settings.GHL_BUYER_PIPELINE_ID, "GHL_BUYER_PIPELINE_ID")
    opps = await _with_contacts(crm, await crm.list_opportunities(pid))
    buyers, report = parse_many(opps, parse_buyer, settings.GHL_FIELD_KEYS)
    log.info("loaded buyers=%d dropped=%s", len(buyers), dict(report.drop_reasons))
    return buyers, report


async def load_properties(crm: CrmGateway, *, pipeline_id: str | None = None) -> tuple[list[Property], ParseReport]:
    pid = _require(pipeline_id or settings.GHL_PROPERTY_PIPELINE_ID, "GHL_PROPERTY_PIPELINE_ID")
    props, report = parse_many(await crm.list_opportunities(pid), parse_property, settings.GHL_FIELD_KEYS)
    log.info("loaded properties=%d dropped=%s", len(props), dict(report.drop_reasons))
    return props, report


async def load_deals(crm: CrmGateway, *, pipeline_id: str | None = None) -> tuple[list[Deal], ParseReport]:
    pid = _require(pipeline_id or settings.GHL_DEAL_PIPELINE_ID, "GHL_DEAL_PIPELINE_ID")
    deals, report = parse_many(await crm.list_opportunities(pid), parse_deal, settings.GHL_FIELD_KEYS)
    log.info("loaded deals=%d dropped=%s", len(deals), dict(report.drop_reasons))
    return deals, report
