# tests/conftest.py
import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from dealflow.adapters.clients.http_resilience import reset_circuits
from dealflow.adapters.clients.mapbox import GeocodeResult
from dealflow.config import settings
from dealflow.domain.stages import Stage
from dealflow.domain.types import BuyerRef, Deal, PropertyRef
from dealflow.integrations.base import AssociationRef, CrmError
from dealflow.models import Base


class FakeCrm:
    """
    In-memory CrmGateway. Records every call; put an exception in fail_on[op]
    to make that operation raise. If `gate` is set, create_association waits
    on it so tests can hold a transition in flight.
    """

    def __init__(self, opportunities=None, contacts=None):
        self.opportunities = opportunities or {}
        self.contacts = contacts or {}
        self.calls = []
        self.fail_on = {}
        self.relations = {}
        self.stage_updates = {}
        self.gate = None
        self._seq = 0

    def _maybe_fail(self, op):
        exc = self.fail_on.get(op)
        if exc is not None:
            raise exc

    @property
    def remote_calls(self):
        return [c for c in self.calls if c[0] in ("create", "delete")]

    async def list_opportunities(self, pipeline_id):
        self.calls.append(("list", pipeline_id))
        self._maybe_fail("list")
        return [dict(o) for o in self.opportunities.get(pipeline_id, [])]

    async def update_opportunity_stage(self, opportunity_id, stage_id):
        self.calls.append(("update_stage", opportunity_id, stage_id))
        self._maybe_fail("update_stage")
        self.stage_updates[opportunity_id] = stage_id

    async def update_opportunity_fields(self, opportunity_id, fields):
        self.calls.append(("fields", opportunity_id, dict(fields)))
        self._maybe_fail("fields")
        for opps in self.opportunities.values():
            for opp in opps:
                if opp.get("id") != opportunity_id:
                    continue
                cf = [c for c in opp.get("customFields") or [] if c.get("id") not in fields]
                cf.extend({"id": k, "value": v} for k, v in fields.items())
                opp["customFields"] = cf

    async def create_association(self, from_id, to_id, label):
        self.calls.append(("create", from_id, to_id, label))
        if self.gate is not None:
            await self.gate.wait()
        self._maybe_fail("create")
        self._seq += 1
        rid = f"rel-{self._seq}"
        self.relations[rid] = label
        return AssociationRef(relation_id=rid, label=label)

    async def delete_association(self, relation_id):
        self.calls.append(("delete", relation_id))
        self._maybe_fail("delete")
        self.relations.pop(relation_id, None)

    async def get_contact(self, contact_id):
        self.calls.append(("contact", contact_id))
        return dict(self.contacts.get(contact_id, {}))


class FakeGeocoder:
    def __init__(self, places=None):
        self.places = places or {}
        self.queries = []

    async def geocode(self, query):
        self.queries.append(query)
        coords = self.places.get(query)
        return GeocodeResult(coords=coords, place_name=query) if coords else None


@pytest.fixture(autouse=True)
async def _reset_db(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", None)
    monkeypatch.setattr(settings, "HTTP_RATE_LIMIT_RPS", 0.0)
    monkeypatch.setattr(settings, "HTTP_BACKOFF_BASE_S", 0.0)
    monkeypatch.setattr(settings, "GHL_BUYER_PIPELINE_ID", "pipe-buyers")
    monkeypatch.setattr(settings, "GHL_PROPERTY_PIPELINE_ID", "pipe-properties")
    monkeypatch.setattr(settings, "GHL_DEAL_PIPELINE_ID", "pipe-deals")
    reset_circuits()
    yield
    reset_circuits()


@pytest.fixture
async def engine():
    """
    Fresh in-memory DB per test. StaticPool makes all connections share the same
    in-memory database for the lifetime of this engine fixture.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest.fixture
def crm():
    return FakeCrm()


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def make_deal():
    def _make(
        deal_id="deal-1",
        stage=Stage.sent_to_buyer,
        relation_id="rel-0",
        score=75,
        price=200_000.0,
        contact_id="c-1",
        record_id="p-1",
        created_at=None,
        last_activity_at=None,
    ):
        return Deal(
            id=deal_id,
            buyer=BuyerRef(contact_id=contact_id, name="Jordan Buyer", email="jordan@example.com"),
            property=PropertyRef(
                record_id=record_id,
                address="12 Elm St, Phoenix, AZ 85001",
                price=price,
                opportunity_id=deal_id,
            ),
            stage=stage,
            relation_id=relation_id,
            score=score,
            created_at=created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
            last_activity_at=last_activity_at,
        )

    return _make


@pytest.fixture
def crm_error():
    return CrmError("boom", status_code=500)


@pytest.fixture
def gate():
    return asyncio.Event()
