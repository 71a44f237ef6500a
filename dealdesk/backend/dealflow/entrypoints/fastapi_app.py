# dealflow/entrypoints/fastapi_app.py
from __future__ import annotations

from fastapi import FastAPI

from ..adapters.clients.ghl import GHLClient
from ..adapters.clients.mapbox import MapboxGeocoder
from ..db import init_models
from ..integrations.base import CrmGateway
from ..service_layer.controller import NotificationLog, OptimisticStageController
from ..service_layer.geocoding import Geocoder
from ..service_layer.transitions import StageTransitionManager
from .api.routers import briefing, deals, health, jobs, matching, opportunities, stages


def create_app(*, crm: CrmGateway | None = None, geocoder: Geocoder | None = None) -> FastAPI:
    app = FastAPI(title="DealDesk - Buyer Matching & Deal Pipeline")

    crm = crm or GHLClient()
    app.state.crm = crm
    app.state.geocoder = geocoder or MapboxGeocoder()
    app.state.notifications = NotificationLog()
    app.state.controller = OptimisticStageController(
        StageTransitionManager(crm),
        notifier=app.state.notifications,
    )

    @app.on_event("startup")
    async def _startup() -> None:
        await init_models()

    # Routers
    app.include_router(health.router)
    app.include_router(stages.router)
    app.include_router(matching.router)
    app.include_router(deals.router)
    app.include_router(opportunities.router)
    app.include_router(briefing.router)
    app.include_router(jobs.router)

    return app
