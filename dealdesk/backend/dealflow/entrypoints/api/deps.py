# dealflow/entrypoints/api/deps.py
from __future__ import annotations

from fastapi import Header, HTTPException, Request

from ...config import settings
from ...integrations.base import CrmGateway
from ...service_layer.controller import NotificationLog, OptimisticStageController
from ...service_layer.geocoding import Geocoder


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    if settings.API_KEY:
        if not x_api_key or x_api_key != settings.API_KEY:
            raise HTTPException(status_code=401, detail="Invalid API key")


def get_crm(request: Request) -> CrmGateway:
    return request.app.state.crm


def get_geocoder(request: Request) -> Geocoder:
    return request.app.state.geocoder


def get_controller(request: Request) -> OptimisticStageController:
    # one board per process; it holds the in-flight and undo state
    return request.app.state.controller


def get_notifications(request: Request) -> NotificationLog:
    return request.app.state.notifications
