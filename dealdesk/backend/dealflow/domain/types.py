# dealflow/domain/types.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .stages import Stage


class BudgetBand(str, Enum):
    strong = "strong"
    good = "good"
    limited = "limited"


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass(frozen=True)
class Buyer:
    contact_id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    record_id: str | None = None

    desired_beds: int | None = None
    desired_baths: float | None = None

    down_payment: float | None = None
    price_min: float | None = None
    price_max: float | None = None

    preferred_zip_codes: frozenset[str] = frozenset()
    preferred_location: str | None = None
    location: Coordinates | None = None

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Property:
    record_id: str
    address: str
    property_code: str = ""
    opportunity_id: str | None = None
    city: str = ""
    state: str | None = None
    zip_code: str | None = None

    price: float | None = None
    beds: int | None = None
    baths: float | None = None
    sqft: int | None = None

    hero_image: str | None = None
    location: Coordinates | None = None


@dataclass(frozen=True)
class Score:
    score: int
    is_priority: bool
    distance_miles: float | None
    budget_band: BudgetBand | None
    location_reason: str

    location_points: int = 0
    beds_points: int = 0
    baths_points: int = 0
    budget_points: int = 0
    proximity_points: int = 0

    highlights: tuple[str, ...] = ()
    concerns: tuple[str, ...] = ()


@dataclass(frozen=True)
class ScoredBuyer:
    buyer: Buyer
    score: Score


@dataclass(frozen=True)
class ScoredProperty:
    property: Property
    score: Score


@dataclass(frozen=True)
class BuyerRef:
    contact_id: str
    name: str = ""
    email: str = ""


@dataclass(frozen=True)
class PropertyRef:
    record_id: str
    address: str
    price: float | None = None
    opportunity_id: str | None = None


@dataclass(frozen=True)
class Deal:
    """
    Immutable snapshot of one buyer-property pairing. Stage changes produce
    a new Deal (dataclasses.replace), never an in-place edit.
    """
    id: str
    buyer: BuyerRef
    property: PropertyRef
    stage: Stage
    relation_id: str | None = None
    score: int = 0
    created_at: datetime | None = None
    last_activity_at: datetime | None = None
