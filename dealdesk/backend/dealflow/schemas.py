# dealflow/schemas.py
from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from .domain.stages import Stage
from .domain.geo import normalize_zip
from .domain.types import Buyer, Coordinates, Property


# -----------------------------
# Matching inputs
# -----------------------------
class BuyerIn(BaseModel):
    contact_id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    record_id: str | None = None

    desired_beds: int | None = Field(default=None, ge=0)
    desired_baths: float | None = Field(default=None, ge=0)
    down_payment: float | None = Field(default=None, ge=0)
    price_min: float | None = Field(default=None, ge=0)
    price_max: float | None = Field(default=None, ge=0)

    preferred_zip_codes: list[str] = Field(default_factory=list)
    preferred_location: str | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)

    def to_domain(self) -> Buyer:
        zips = frozenset(z for z in (normalize_zip(x) for x in self.preferred_zip_codes) if z)
        loc = Coordinates(self.lat, self.lng) if self.lat is not None and self.lng is not None else None
        return Buyer(
            contact_id=self.contact_id,
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            record_id=self.record_id,
            desired_beds=self.desired_beds,
            desired_baths=self.desired_baths,
            down_payment=self.down_payment,
            price_min=self.price_min,
            price_max=self.price_max,
            preferred_zip_codes=zips,
            preferred_location=self.preferred_location,
            location=loc,
        )

    @classmethod
    def from_domain(cls, b: Buyer) -> "BuyerIn":
        return cls(
            contact_id=b.contact_id,
            first_name=b.first_name,
            last_name=b.last_name,
            email=b.email,
            record_id=b.record_id,
            desired_beds=b.desired_beds,
            desired_baths=b.desired_baths,
            down_payment=b.down_payment,
            price_min=b.price_min,
            price_max=b.price_max,
            preferred_zip_codes=sorted(b.preferred_zip_codes),
            preferred_location=b.preferred_location,
            lat=b.location.lat if b.location else None,
            lng=b.location.lng if b.location else None,
        )


class PropertyIn(BaseModel):
    record_id: str
    address: str
    property_code: str = ""
    opportunity_id: str | None = None
    city: str = ""
    state: str | None = None
    zip_code: str | None = None

    price: float | None = Field(default=None, ge=0)
    beds: int | None = Field(default=None, ge=0)
    baths: float | None = Field(default=None, ge=0)
    sqft: int | None = Field(default=None, ge=0)
    hero_image: str | None = None

    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)

    def to_domain(self) -> Property:
        loc = Coordinates(self.lat, self.lng) if self.lat is not None and self.lng is not None else None
        return Property(
            record_id=self.record_id,
            address=self.address,
            property_code=self.property_code,
            opportunity_id=self.opportunity_id,
            city=self.city,
            state=self.state,
            zip_code=normalize_zip(self.zip_code),
            price=self.price,
            beds=self.beds,
            baths=self.baths,
            sqft=self.sqft,
            hero_image=self.hero_image,
            location=loc,
        )

    @classmethod
    def from_domain(cls, p: Property) -> "PropertyIn":
        return cls(
            record_id=p.record_id,
            address=p.address,
            property_code=p.property_code,
            opportunity_id=p.opportunity_id,
            city=p.city,
            state=p.state,
            zip_code=p.zip_code,
            price=p.price,
            beds=p.beds,
            baths=p.baths,
            sqft=p.sqft,
            hero_image=p.hero_image,
            lat=p.location.lat if p.location else None,
            lng=p.location.lng if p.location else None,
        )


class ScoreRequest(BaseModel):
    buyer: BuyerIn
    property: PropertyIn


class PropertyBuyersRequest(BaseModel):
    property: PropertyIn
    buyers: list[BuyerIn]


# -----------------------------
# Matching outputs
# -----------------------------
class ScoreOut(BaseModel):
    score: int = Field(..., ge=0, le=100)
    quality: str
    is_priority: bool
    distance_miles: float | None = None
    proximity: str | None = None
    budget_band: Literal["strong", "good", "limited"] | None = None
    location_reason: str

    breakdown: dict[str, int]
    highlights: list[str]
    concerns: list[str]


class ScoredBuyerOut(BaseModel):
    buyer: BuyerIn
    score: ScoreOut


class ScoredPropertyOut(BaseModel):
    property: PropertyIn
    score: ScoreOut


class BuyerMatchOut(BaseModel):
    property: PropertyIn
    interested: list[ScoredBuyerOut]
    potential: list[ScoredBuyerOut]
    total_count: int
    dropped: int
    time_ms: float

    drop_reasons: dict[str, int] = Field(default_factory=dict)
    geocode: dict[str, int] | None = None


class PropertyMatchOut(BaseModel):
    buyer: BuyerIn
    interested: list[ScoredPropertyOut]
    potential: list[ScoredPropertyOut]
    total_count: int
    dropped: int
    time_ms: float

    drop_reasons: dict[str, int] = Field(default_factory=dict)
    geocode: dict[str, int] | None = None


# -----------------------------
# Stages / deals
# -----------------------------
class StageOut(BaseModel):
    stage: Stage
    label: str
    short_label: str
    color_hint: str
    description: str
    rank: int
    is_exit: bool
    next_stage: Stage | None = None


class BuyerRefOut(BaseModel):
    contact_id: str
    name: str
    email: str = ""


class PropertyRefOut(BaseModel):
    record_id: str
    address: str
    price: float | None = None
    opportunity_id: str | None = None


class DealOut(BaseModel):
    id: str
    buyer: BuyerRefOut
    property: PropertyRefOut
    stage: Stage
    relation_id: str | None = None
    score: int

    created_at: datetime | None = None
    last_activity_at: datetime | None = None
    days_since_activity: int
    is_stale: bool
    urgency: Literal["stale", "warning", "new", "normal"]
    transitioning: bool = False


class DealsOut(BaseModel):
    deals: list[DealOut]
    drop_reasons: dict[str, int] = Field(default_factory=dict)


class TransitionRequest(BaseModel):
    from_stage: str
    to_stage: str


class TransitionResult(BaseModel):
    ok: bool
    status: str
    deal_id: str
    from_stage: Stage | None = None
    to_stage: Stage | None = None
    relation_id: str | None = None
    relation_deleted: bool = False
    writeback_error: str | None = None
    error: str | None = None
    message: str | None = None
    undo_token: str | None = None
    deal: DealOut | None = None


class ProbabilityFactorOut(BaseModel):
    label: str
    impact: Literal["positive", "negative", "neutral"]
    weight: int
    description: str = ""


class WinProbabilityOut(BaseModel):
    deal_id: str
    probability: int = Field(..., ge=0, le=100)
    trend: Literal["up", "down", "stable"]
    label: str
    color: Literal["green", "amber", "red"]
    factors: list[ProbabilityFactorOut]


class PipelineStatsOut(BaseModel):
    total_deals: int
    pipeline_value: float
    closing_soon: int
    needs_attention: int
    new_this_week: int
    by_stage: dict[str, int]


class BuyerDealsOut(BaseModel):
    buyer: BuyerRefOut
    deals: list[DealOut]
    total_deals: int
    total_value: float
    active_stages: list[Stage]


class PropertyDealsOut(BaseModel):
    property: PropertyRefOut
    deals: list[DealOut]
    total_buyers: int
    highest_score: int
    furthest_stage: Stage | None = None


class NotificationOut(BaseModel):
    kind: Literal["success", "error"]
    deal_id: str
    message: str
    undo_token: str | None = None
    created_at: datetime


class OpportunityStageUpdate(BaseModel):
    stage_id: str = Field(..., min_length=1)


# -----------------------------
# Briefing / jobs
# -----------------------------
class BriefingStatus(BaseModel):
    day: date
    dismissed: bool


class BriefingDismissRequest(BaseModel):
    day: date | None = None


class GeocachePruneResult(BaseModel):
    job_run_id: int
    deleted: int = Field(..., ge=0)
    entries: int = Field(..., ge=0)
    negative: int = Field(..., ge=0)
    resolved: int = Field(..., ge=0)
