# dealflow/entrypoints/api/routers/health.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from ..deps import require_api_key
from ....config import settings
from ....domain import stages as st

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/ready")
def ready() -> dict[str, Any]:
    """
    Config readiness: everything the pipeline needs before it can talk to GHL.
    Does not call out; a green result only means nothing is obviously missing.
    """
    missing: list[str] = []
    for name in ("GHL_API_KEY", "GHL_LOCATION_ID", "GHL_BUYER_PIPELINE_ID", "GHL_PROPERTY_PIPELINE_ID", "GHL_DEAL_PIPELINE_ID"):
        if not getattr(settings, name):
            missing.append(name)

    labels = [st.config(s).relation_label for s in st.all_stages()]
    unmapped = [lbl for lbl in labels if not settings.GHL_STAGE_ASSOCIATION_IDS.get(lbl)]

    return {
        "ready": not missing and not unmapped,
        "missing": missing,
        "unmapped_stages": unmapped,
        "geocoding": bool(settings.MAPBOX_ACCESS_TOKEN),
    }


@router.get("/debug/config", dependencies=[Depends(require_api_key)])
def debug_config() -> dict[str, Any]:
    def _redact(v: str | None) -> str | None:
        if not v:
            return v
        if len(v) <= 8:
            return "***"
        return v[:4] + "***" + v[-4:]

    return {
        "ENV": settings.ENV,
        "DEALDESK_DB_URL": settings.DEALDESK_DB_URL,
        "GHL_BASE_URL": settings.GHL_BASE_URL,
        "GHL_LOCATION_ID": settings.GHL_LOCATION_ID,
        "GHL_API_KEY": _redact(settings.GHL_API_KEY),
        "GHL_OBJECTS_API_KEY_SET": bool(settings.GHL_OBJECTS_API_KEY),
        "GHL_BUYER_PIPELINE_ID": settings.GHL_BUYER_PIPELINE_ID,
        "GHL_PROPERTY_PIPELINE_ID": settings.GHL_PROPERTY_PIPELINE_ID,
        "GHL_DEAL_PIPELINE_ID": settings.GHL_DEAL_PIPELINE_ID,
        "GHL_STAGE_ASSOCIATIONS": sorted(settings.GHL_STAGE_ASSOCIATION_IDS),
        "MAPBOX_ACCESS_TOKEN": _redact(settings.MAPBOX_ACCESS_TOKEN),
    }


@router.get("/debug/routes", dependencies=[Depends(require_api_key)])
def debug_routes(request: Request) -> dict[str, Any]:
    """Shows what this running server has actually mounted."""
    routes: list[str] = []
    for r in request.app.routes:
        methods = getattr(r, "methods", None)
        path = getattr(r, "path", None)
        if path:
            if methods:
                routes.append(f"{sorted(list(methods))} {path}")
            else:
                routes.append(path)
    return {"count": len(routes), "routes": sorted(routes)}
