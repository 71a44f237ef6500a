# dealflow/adapters/clients/ghl.py
from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ...config import settings
from ...integrations.base import AssociationRef, CrmError
from .http_resilience import resilient_request

log = logging.getLogger(__name__)


def _relation_id(data: Any) -> str | None:
    # create-relation responses have been seen as {"id"}, {"relation": {"id"}} and {"data": {"id"}}
    if not isinstance(data, dict):
        return None
    for cand in (data, data.get("relation"), data.get("data")):
        if isinstance(cand, dict) and cand.get("id"):
            return str(cand["id"])
    return None


def _json(resp: httpx.Response, what: str) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError as e:
        raise CrmError(f"{what} returned a non-JSON body: {resp.text[:200]!r}", status_code=resp.status_code) from e


def _error_text(e: httpx.HTTPError) -> str:
    if isinstance(e, httpx.HTTPStatusError):
        body = (e.response.text or "")[:300]
        return f"HTTP {e.response.status_code}: {body}" if body else f"HTTP {e.response.status_code}"
    return f"{type(e).__name__}: {e}"


class GHLClient:
    """
    GoHighLevel v2 API client (opportunities + association relations).

    Stage labels map to association ids through settings.GHL_STAGE_ASSOCIATION_IDS.
    Every failure surfaces as CrmError.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        objects_api_key: str | None = None,
        location_id: str | None = None,
        base_url: str | None = None,
        association_ids: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.GHL_API_KEY
        # associations need the objects-scoped key when one is configured
        self._objects_api_key = objects_api_key or settings.GHL_OBJECTS_API_KEY or self._api_key
        self._location_id = location_id if location_id is not None else settings.GHL_LOCATION_ID
        self._base_url = (base_url or settings.GHL_BASE_URL).rstrip("/")
        self._association_ids = dict(
            association_ids if association_ids is not None else settings.GHL_STAGE_ASSOCIATION_IDS
        )
        self._client = client

    def _headers(self, *, objects: bool = False) -> dict[str, str]:
        key = self._objects_api_key if objects else self._api_key
        if not key:
            raise CrmError("GHL_API_KEY is not set")
        return {
            "Authorization": f"Bearer {key}",
            "Version": settings.GHL_API_VERSION,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, *, objects: bool = False, retry: bool = True, **kw: Any) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            return await resilient_request(
                method, url, headers=self._headers(objects=objects), client=self._client, retry=retry, **kw
            )
        except httpx.HTTPStatusError as e:
            raise CrmError(f"{method} {path} failed: {_error_text(e)}", status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise CrmError(f"{method} {path} failed: {_error_text(e)}") from e

    def association_id_for(self, label: str) -> str:
        aid = self._association_ids.get(label)
        if not aid:
            raise CrmError(f"No GHL association configured for stage label {label!r}")
        return aid

    # -----------------------------
    # Opportunities
    # -----------------------------
    async def list_opportunities(self, pipeline_id: str) -> list[dict[str, Any]]:
        limit = int(settings.GHL_SEARCH_PAGE_LIMIT)
        max_pages = int(settings.GHL_SEARCH_MAX_PAGES)

        out: list[dict[str, Any]] = []
        page = 1
        while True:
            body = {"locationId": self._location_id, "limit": limit, "page": page}
            resp = await self._request("POST", "/opportunities/search", json=body)
            data = _json(resp, "opportunities/search")
            found = data.get("opportunities") if isinstance(data, dict) else None
            rows = [x for x in (found or []) if isinstance(x, dict)]
            out.extend(rows)
            log.debug("opportunities/search page=%d rows=%d", page, len(rows))

            if len(rows) < limit or page >= max_pages:
                break
            page += 1

        if pipeline_id:
            before = len(out)
            out = [o for o in out if o.get("pipelineId") == pipeline_id]
            log.debug("pipeline filter %s: %d -> %d", pipeline_id, before, len(out))
        return out

    async def update_opportunity_stage(self, opportunity_id: str, stage_id: str) -> None:
        await self._request("PUT", f"/opportunities/{opportunity_id}", json={"pipelineStageId": stage_id})

    async def update_opportunity_fields(self, opportunity_id: str, fields: Mapping[str, Any]) -> None:
        body = {"customFields": [{"key": k, "field_value": v} for k, v in fields.items()]}
        await self._request("PUT", f"/opportunities/{opportunity_id}", json=body)
        log.info("updated opportunity %s fields %s", opportunity_id, sorted(fields))

    async def get_contact(self, contact_id: str) -> dict[str, Any]:
        try:
            resp = await self._request("GET", f"/contacts/{contact_id}")
        except CrmError as e:
            if e.status_code == 404:
                return {}
            raise
        data = _json(resp, f"GET /contacts/{contact_id}") or {}
        contact = data.get("contact") if isinstance(data, dict) else None
        return contact if isinstance(contact, dict) else {}

    # -----------------------------
    # Associations (stage markers)
    # -----------------------------
    async def create_association(self, from_id: str, to_id: str, label: str) -> AssociationRef:
        body = {
            "locationId": self._location_id,
            "associationId": self.association_id_for(label),
            "firstRecordId": from_id,
            "secondRecordId": to_id,
        }
        resp = await self._request("POST", "/associations/relations", objects=True, retry=False, json=body)
        rid = _relation_id(_json(resp, "Create relation"))
        if not rid:
            raise CrmError("Create relation response carried no relation id")
        log.info("created relation %s (%s) %s -> %s", rid, label, from_id, to_id)
        return AssociationRef(relation_id=rid, label=label)

    async def delete_association(self, relation_id: str) -> None:
        try:
            await self._request(
                "DELETE",
                f"/associations/relations/{relation_id}",
                objects=True,
                retry=False,
                params={"locationId": self._location_id},
            )
        except CrmError as e:
            if e.status_code == 404:
                log.info("relation %s already gone", relation_id)
                return
            raise
        log.info("deleted relation %s", relation_id)
