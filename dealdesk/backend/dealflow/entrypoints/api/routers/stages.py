# dealflow/entrypoints/api/routers/stages.py
from __future__ import annotations

from fastapi import APIRouter

from ....domain import stages as st
from ....schemas import StageOut

router = APIRouter(tags=["stages"])


def stage_out(s: st.Stage) -> StageOut:
    c = st.config(s)
    return StageOut(
        stage=s,
        label=c.label,
        short_label=c.short_label,
        color_hint=c.color_hint,
        description=c.description,
        rank=st.rank(s),
        is_exit=c.is_exit,
        next_stage=st.next_stage(s),
    )


@router.get("/stages", response_model=list[StageOut])
def list_stages() -> list[StageOut]:
    return [stage_out(s) for s in st.all_stages()]
