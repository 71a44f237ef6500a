# dealflow/entrypoints/api/routers/opportunities.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_crm, require_api_key
from ....integrations.base import CrmError, CrmGateway
from ....schemas import OpportunityStageUpdate

router = APIRouter(tags=["opportunities"])


@router.put("/opportunities/{opportunity_id}/stage", dependencies=[Depends(require_api_key)])
async def update_opportunity_stage(
    opportunity_id: str,
    req: OpportunityStageUpdate,
    crm: CrmGateway = Depends(get_crm),
) -> dict[str, str]:
    """Moves the opportunity in its GHL pipeline (the primary stage marker)."""
    try:
        await crm.update_opportunity_stage(opportunity_id, req.stage_id)
    except CrmError as e:
        raise HTTPException(status_code=502, detail=f"GHL error: {e}")
    return {"opportunity_id": opportunity_id, "stage_id": req.stage_id}
