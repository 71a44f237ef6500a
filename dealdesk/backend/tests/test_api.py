# tests/test_api.py
import httpx
import pytest
from sqlalchemy.exc import SQLAlchemyError

from dealflow.config import settings
from dealflow.db import get_session
from dealflow.domain.types import Coordinates
from dealflow.entrypoints.api.routers import deals as deals_router
from dealflow.entrypoints.fastapi_app import create_app
from dealflow.integrations.base import CrmError


def deal_opp(opp_id, stage="Sent to Buyer", relation_id="rel-0", contact_id="c-1", record_id="p-1", score=75):
    return {
        "id": opp_id,
        "pipelineId": "pipe-deals",
        "name": "12 Elm St, Phoenix, AZ 85001",
        "monetaryValue": 200000,
        "contactId": contact_id,
        "contact": {"id": contact_id, "firstName": "Jordan", "lastName": "Lee"},
        "createdAt": "2024-01-01T00:00:00Z",
        "customFields": [
            {"id": "property_record_id", "value": record_id},
            {"id": "match_stage", "value": stage},
            {"id": "ghl_relation_id", "value": relation_id},
            {"id": "match_score", "value": score},
        ],
    }


BUYERS = [
    {
        "id": "bo-1",
        "contactId": "c-1",
        "contact": {
            "id": "c-1",
            "firstName": "Jordan",
            "lastName": "Lee",
            "customFields": [
                {"id": "preferred_zip_codes", "value": "85001"},
                {"id": "no_of_bedrooms", "value": "3"},
                {"id": "no_of_bath", "value": "2"},
                {"id": "downpayment", "value": "40000"},
            ],
        },
    },
    # criteria only available from the contact endpoint
    {"id": "bo-2", "contactId": "c-2", "contact": {"id": "c-2", "firstName": "Sam"}},
    {"id": "bo-3"},
]

PROPERTIES = [
    {
        "id": "po-1",
        "name": "12 Elm St",
        "customFields": [
            {"id": "property_zip", "value": "85001"},
            {"id": "city", "value": "Phoenix"},
            {"id": "state", "value": "AZ"},
            {"id": "price", "value": "200000"},
            {"id": "beds", "value": "3"},
            {"id": "baths", "value": "2"},
        ],
    },
]

CONTACTS = {
    "c-2": {
        "id": "c-2",
        "firstName": "Sam",
        "lastName": "Ortiz",
        "customFields": [{"id": "preferred_zip_codes", "value": "90210"}, {"id": "no_of_bedrooms", "value": "5"}],
    }
}


@pytest.fixture
def fake_crm(crm):
    crm.opportunities = {
        "pipe-deals": [deal_opp("deal-1"), deal_opp("deal-2", stage="Offer Made", contact_id="c-2", score=40)],
        "pipe-buyers": BUYERS,
        "pipe-properties": PROPERTIES,
    }
    crm.contacts = CONTACTS
    return crm


@pytest.fixture
def fake_geocoder(geocoder):
    geocoder.places["12 Elm St, Phoenix, AZ, 85001"] = Coordinates(33.4484, -112.074)
    return geocoder


@pytest.fixture
def app(fake_crm, fake_geocoder, async_session_maker):
    app = create_app(crm=fake_crm, geocoder=fake_geocoder)

    async def _session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    return app


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.mark.asyncio
async def test_health_and_stages(client):
    assert (await client.get("/health")).json() == {"status": "ok"}

    stages = (await client.get("/stages")).json()
    assert [s["stage"] for s in stages][0] == "Sent to Buyer"
    assert stages[-1]["stage"] == "Not Interested"
    assert stages[-1]["is_exit"] is True
    assert stages[-1]["next_stage"] is None
    assert stages[0]["next_stage"] == "Buyer Responded"


@pytest.mark.asyncio
async def test_score_pair(client):
    body = {
        "buyer": {"contact_id": "c-1", "preferred_zip_codes": ["85001"], "desired_beds": 3, "desired_baths": 2},
        "property": {"record_id": "p-1", "address": "12 Elm St", "zip_code": "85001", "beds": 3, "baths": 2},
    }
    r = await client.post("/matching/score", json=body)
    assert r.status_code == 200
    out = r.json()
    assert out["breakdown"]["location"] == 40
    assert out["breakdown"]["beds"] == 25
    assert out["breakdown"]["baths"] == 15
    assert 0 <= out["score"] <= 100


@pytest.mark.asyncio
async def test_property_buyers_tiers(client):
    body = {
        "property": {"record_id": "p-1", "address": "12 Elm St", "zip_code": "85001", "beds": 3, "baths": 2, "price": 200000},
        "buyers": [
            {"contact_id": "near", "preferred_zip_codes": ["85001"], "desired_beds": 3, "desired_baths": 2, "down_payment": 40000},
            {"contact_id": "far", "preferred_zip_codes": ["90210"], "desired_beds": 6, "desired_baths": 4},
        ],
    }
    out = (await client.post("/matching/property-buyers", json=body)).json()
    assert [x["buyer"]["contact_id"] for x in out["interested"]] == ["near"]
    assert out["total_count"] == 2
    assert len(out["interested"]) + len(out["potential"]) + out["dropped"] == 2


@pytest.mark.asyncio
async def test_buyers_for_property_from_ghl(client, fake_crm, fake_geocoder):
    r = await client.get("/matching/properties/po-1/buyers")
    assert r.status_code == 200
    out = r.json()

    assert out["property"]["record_id"] == "po-1"
    assert out["property"]["lat"] == pytest.approx(33.4484)
    ids = [x["buyer"]["contact_id"] for x in out["interested"] + out["potential"]]
    assert ids[0] == "c-1"
    assert out["drop_reasons"] == {"missing_contact_id": 1}
    # c-2's criteria were fetched from the contact endpoint
    assert ("contact", "c-2") in fake_crm.calls
    assert out["geocode"]["misses"] >= 1


@pytest.mark.asyncio
async def test_unknown_property_is_404(client):
    r = await client.get("/matching/properties/nope/buyers")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_deals_loaded_lazily_and_filtered(client, fake_crm):
    out = (await client.get("/deals")).json()
    assert [d["id"] for d in out["deals"]] == ["deal-1", "deal-2"]
    assert out["deals"][0]["buyer"]["name"] == "Jordan Lee"
    assert [c for c in fake_crm.calls if c[0] == "list"] == [("list", "pipe-deals")]

    # board is now warm; no second list call
    out = (await client.get("/deals", params={"stage": "Offer Made"})).json()
    assert [d["id"] for d in out["deals"]] == ["deal-2"]
    assert len([c for c in fake_crm.calls if c[0] == "list"]) == 1

    out = (await client.get("/deals", params={"min_score": 50})).json()
    assert [d["id"] for d in out["deals"]] == ["deal-1"]

    assert (await client.get("/deals", params={"stage": "Qualified"})).status_code == 400


@pytest.mark.asyncio
async def test_deal_views(client):
    stats = (await client.get("/deals/stats")).json()
    assert stats["total_deals"] == 2
    assert stats["by_stage"]["Offer Made"] == 1
    assert stats["pipeline_value"] == 400000

    by_buyer = (await client.get("/deals/by-buyer")).json()
    assert [g["buyer"]["contact_id"] for g in by_buyer] == ["c-1", "c-2"]

    by_prop = (await client.get("/deals/by-property")).json()
    assert by_prop[0]["total_buyers"] == 2
    assert by_prop[0]["furthest_stage"] == "Offer Made"

    wp = (await client.get("/deals/deal-2/win-probability")).json()
    assert wp["deal_id"] == "deal-2"
    assert 0 <= wp["probability"] <= 100
    assert len(wp["factors"]) == 3

    assert (await client.get("/deals/missing")).status_code == 404


@pytest.mark.asyncio
async def test_transition_then_undo(client, fake_crm):
    await client.get("/deals")

    r = await client.post("/deals/deal-1/transition", json={"from_stage": "Sent to Buyer", "to_stage": "Offer Made"})
    assert r.status_code == 200
    out = r.json()
    assert out["ok"] is True
    assert out["status"] == "ok"
    assert out["relation_id"] == "rel-1"
    assert out["message"] == "Moved to Offer Made"
    assert out["deal"]["stage"] == "Offer Made"
    token = out["undo_token"]
    assert token

    assert fake_crm.remote_calls == [("delete", "rel-0"), ("create", "c-1", "p-1", "Offer Made")]

    r = await client.post(f"/deals/undo/{token}")
    out = r.json()
    assert out["ok"] is True
    assert out["to_stage"] == "Sent to Buyer"
    assert out["message"] == "Moved back to Sent to Buyer"
    assert (await client.get("/deals/deal-1")).json()["stage"] == "Sent to Buyer"

    acts = (await client.get("/deals/deal-1/activities")).json()
    assert [a["kind"] for a in acts] == ["stage-undo", "stage-change"]

    # the original command's undo is spent: the deal is no longer at Offer Made
    again = (await client.post(f"/deals/undo/{token}")).json()
    assert again["ok"] is False
    assert again["status"] == "stale_state"


@pytest.mark.asyncio
async def test_same_stage_is_a_noop(client, fake_crm):
    await client.get("/deals")
    out = (
        await client.post("/deals/deal-1/transition", json={"from_stage": "Sent to Buyer", "to_stage": "Sent to Buyer"})
    ).json()
    assert out["ok"] is True
    assert out["status"] == "noop"
    assert out["undo_token"] is None
    assert fake_crm.remote_calls == []
    assert (await client.get("/deals/deal-1/activities")).json() == []


@pytest.mark.asyncio
async def test_failed_transition_rolls_back_view(client, fake_crm):
    await client.get("/deals")
    fake_crm.fail_on["create"] = CrmError("nope", status_code=500)

    out = (
        await client.post("/deals/deal-1/transition", json={"from_stage": "Sent to Buyer", "to_stage": "Offer Made"})
    ).json()
    assert out["ok"] is False
    assert out["status"] == "remote_error"
    assert out["relation_deleted"] is True
    assert "previous GHL stage marker was already removed" in out["message"]
    assert out["deal"]["stage"] == "Sent to Buyer"


@pytest.mark.asyncio
async def test_refresh_after_transition_keeps_one_live_relation(client, fake_crm):
    await client.get("/deals")
    r = await client.post("/deals/deal-1/transition", json={"from_stage": "Sent to Buyer", "to_stage": "Buyer Responded"})
    assert r.json()["writeback_error"] is None

    refreshed = (await client.get("/deals", params={"refresh": "true"})).json()
    deal = next(d for d in refreshed["deals"] if d["id"] == "deal-1")
    assert deal["stage"] == "Buyer Responded"

    r = await client.post("/deals/deal-1/transition", json={"from_stage": "Buyer Responded", "to_stage": "Offer Made"})
    assert r.json()["ok"] is True
    assert fake_crm.relations == {"rel-2": "Offer Made"}
    assert fake_crm.remote_calls[-2:] == [("delete", "rel-1"), ("create", "c-1", "p-1", "Offer Made")]


@pytest.mark.asyncio
async def test_activity_store_failure_still_returns_undo_token(client, fake_crm, monkeypatch):
    async def _broken(session, cmd):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(deals_router, "record_transition", _broken)
    await client.get("/deals")

    r = await client.post("/deals/deal-1/transition", json={"from_stage": "Sent to Buyer", "to_stage": "Offer Made"})
    assert r.status_code == 200
    out = r.json()
    assert out["ok"] is True
    assert out["deal"]["stage"] == "Offer Made"
    token = out["undo_token"]
    assert token

    r = await client.post(f"/deals/undo/{token}")
    assert r.status_code == 200
    assert r.json()["to_stage"] == "Sent to Buyer"
    assert (await client.get("/deals/deal-1/activities")).json() == []

@pytest.mark.asyncio
async def test_unknown_undo_token_is_404(client):
    assert (await client.post("/deals/undo/deadbeef")).status_code == 404


@pytest.mark.asyncio
async def test_ghl_outage_is_502(client, fake_crm):
    fake_crm.fail_on["list"] = CrmError("down", status_code=503)
    r = await client.get("/deals")
    assert r.status_code == 502
    assert "GHL error" in r.json()["detail"]

    fake_crm.fail_on["update_stage"] = CrmError("down")
    r = await client.put("/opportunities/opp-1/stage", json={"stage_id": "s-1"})
    assert r.status_code == 502


@pytest.mark.asyncio
async def test_opportunity_stage_update(client, fake_crm):
    r = await client.put("/opportunities/opp-1/stage", json={"stage_id": "s-1"})
    assert r.status_code == 200
    assert fake_crm.stage_updates == {"opp-1": "s-1"}


@pytest.mark.asyncio
async def test_briefing_dismissal(client):
    r = await client.get("/briefing/dismissed", params={"day": "2024-03-11"})
    assert r.json() == {"day": "2024-03-11", "dismissed": False}

    r = await client.post("/briefing/dismiss", json={"day": "2024-03-11"})
    assert r.json() == {"day": "2024-03-11", "dismissed": True}
    assert (await client.get("/briefing/dismissed", params={"day": "2024-03-11"})).json()["dismissed"] is True
    assert (await client.get("/briefing/dismissed", params={"day": "2024-03-12"})).json()["dismissed"] is False


@pytest.mark.asyncio
async def test_geocache_prune_job_endpoint(client):
    r = await client.post("/jobs/geocache/prune")
    assert r.status_code == 200
    out = r.json()
    assert out["deleted"] == 0

    runs = (await client.get("/jobs/runs")).json()
    assert runs[0]["id"] == out["job_run_id"]
    assert runs[0]["status"] == "success"


@pytest.mark.asyncio
async def test_api_key_guards_writes(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret")
    await client.get("/deals")
    body = {"from_stage": "Sent to Buyer", "to_stage": "Offer Made"}

    assert (await client.post("/deals/deal-1/transition", json=body)).status_code == 401
    r = await client.post("/deals/deal-1/transition", json=body, headers={"X-API-Key": "secret"})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_deal_notifications_feed(client, fake_crm):
    await client.get("/deals")
    await client.post("/deals/deal-1/transition", json={"from_stage": "Sent to Buyer", "to_stage": "Offer Made"})
    fake_crm.fail_on["create"] = CrmError("nope")
    await client.post("/deals/deal-1/transition", json={"from_stage": "Offer Made", "to_stage": "Under Contract"})

    feed = (await client.get("/deals/deal-1/notifications")).json()
    assert [n["kind"] for n in feed] == ["success", "error"]
    assert feed[0]["undo_token"]
    assert feed[1]["undo_token"] is None
    assert (await client.get("/deals/deal-2/notifications")).json() == []


@pytest.mark.asyncio
async def test_geocache_clear(client):
    await client.get("/matching/properties/po-1/buyers")
    stats = (await client.get("/jobs/geocache/stats")).json()
    assert stats["entries"] >= 1

    r = await client.delete("/jobs/geocache")
    assert r.json() == {"deleted": stats["entries"]}
    assert (await client.get("/jobs/geocache/stats")).json()["entries"] == 0


@pytest.mark.asyncio
async def test_readiness_lists_missing_config(client, monkeypatch):
    monkeypatch.setattr(settings, "GHL_API_KEY", None)
    monkeypatch.setattr(settings, "GHL_LOCATION_ID", "loc-1")
    monkeypatch.setattr(settings, "GHL_STAGE_ASSOCIATION_IDS", {"Sent to Buyer": "a-1"})

    out = (await client.get("/health/ready")).json()
    assert out["ready"] is False
    assert out["missing"] == ["GHL_API_KEY"]
    assert "Sent to Buyer" not in out["unmapped_stages"]
    assert "Not Interested" in out["unmapped_stages"]
