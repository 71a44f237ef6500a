# dealflow/service_layer/transitions.py
"""
Stage changes synced to GHL.

A deal's stage lives remotely as one association relation whose label is the
stage's relation label. Moving stages deletes the old relation and then
creates the new one, strictly in that order. There is no compensating call:
if the create fails after the delete succeeded, the outcome says so
(relation_deleted=True) and the caller must treat the stored relation id as
gone.

After a successful move the new stage and relation id are written to the
deal opportunity's custom fields so the next load from GHL agrees with the
board.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

import httpx

from ..config import settings
from ..domain import stages as st
from ..domain.parsing import field_key
from ..domain.stages import Stage
from ..domain.types import Deal
from ..integrations.base import CrmError, CrmGateway

log = logging.getLogger(__name__)


class TransitionStatus(str, Enum):
    ok = "ok"
    noop = "noop"
    conflict = "conflict"
    not_found = "not_found"
    stale_state = "stale_state"
    invalid_stage = "invalid_stage"
    remote_error = "remote_error"


@dataclass(frozen=True)
class TransitionOutcome:
    status: TransitionStatus
    deal_id: str
    from_stage: Stage | None
    to_stage: Stage | None
    relation_id: str | None = None
    error: str | None = None
    # the old relation was removed remotely even though the outcome failed
    relation_deleted: bool = False
    occurred_at: datetime | None = None
    # the relation moved but the opportunity fields still hold the old stage
    writeback_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (TransitionStatus.ok, TransitionStatus.noop)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fail(status: TransitionStatus, deal_id: str, f: Stage | None, t: Stage | None, error: str, **kw) -> TransitionOutcome:
    return TransitionOutcome(status=status, deal_id=deal_id, from_stage=f, to_stage=t, error=error, **kw)


class StageTransitionManager:
    def __init__(self, crm: CrmGateway, field_keys: Mapping[str, str] | None = None):
        self.crm = crm
        self._field_keys = field_keys

    async def transition(self, deal: Deal, from_stage: Stage | str, to_stage: Stage | str) -> TransitionOutcome:
        """
        Never raises for CRM trouble; every failure comes back as an outcome.
        The Deal passed in is never modified.
        """
        try:
            src = st.parse_stage(from_stage)
            dst = st.parse_stage(to_stage)
        except ValueError as e:
            return _fail(TransitionStatus.invalid_stage, deal.id, deal.stage, None, str(e))

        if src != deal.stage:
            return _fail(
                TransitionStatus.stale_state, deal.id, src, dst,
                f"Deal is at {deal.stage.value!r}, not {src.value!r}",
            )

        if src == dst:
            return TransitionOutcome(
                status=TransitionStatus.noop,
                deal_id=deal.id,
                from_stage=src,
                to_stage=dst,
                relation_id=deal.relation_id,
            )

        label = st.config(dst).relation_label
        log.info("transition deal=%s %s -> %s", deal.id, src.value, dst.value)

        deleted = False
        try:
            if deal.relation_id:
                await self.crm.delete_association(deal.relation_id)
                deleted = True
            ref = await self.crm.create_association(deal.buyer.contact_id, deal.property.record_id, label)
        except (CrmError, httpx.HTTPError) as e:
            log.warning(
                "transition deal=%s %s -> %s failed (relation_deleted=%s): %s",
                deal.id, src.value, dst.value, deleted, e,
            )
            return _fail(TransitionStatus.remote_error, deal.id, src, dst, str(e) or type(e).__name__, relation_deleted=deleted)

        log.info("transition deal=%s ok relation=%s", deal.id, ref.relation_id)
        occurred_at = _utcnow()
        return TransitionOutcome(
            status=TransitionStatus.ok,
            deal_id=deal.id,
            from_stage=src,
            to_stage=dst,
            relation_id=ref.relation_id,
            occurred_at=occurred_at,
            writeback_error=await self._write_back(deal, dst, ref.relation_id, occurred_at),
        )

    async def _write_back(self, deal: Deal, stage: Stage, relation_id: str, at: datetime) -> str | None:
        """
        Store the new stage and relation id on the deal opportunity so the next
        load sees them. Returns the error text when the write fails.
        """
        opp_id = deal.property.opportunity_id
        if not opp_id:
            log.warning("deal=%s has no opportunity id; stage fields not written", deal.id)
            return "Deal has no GHL opportunity to update"

        keys = self._field_keys if self._field_keys is not None else settings.GHL_FIELD_KEYS
        fields: dict[str, Any] = {
            field_key("deal_stage", keys): stage.value,
            field_key("relation_id", keys): relation_id,
            field_key("last_activity_at", keys): at.isoformat(),
        }
        try:
            await self.crm.update_opportunity_fields(opp_id, fields)
        except (CrmError, httpx.HTTPError) as e:
            log.warning("deal=%s stage fields not written to opportunity %s: %s", deal.id, opp_id, e)
            return str(e) or type(e).__name__
        return None
