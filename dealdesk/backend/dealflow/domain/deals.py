# dealflow/domain/deals.py
"""
Derived views over Deal snapshots: staleness, urgency, win probability,
pipeline stats and the by-buyer / by-property groupings.

Every function takes an explicit `now` so results are reproducible.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from . import stages as st
from .stages import Stage
from .types import BuyerRef, Deal, PropertyRef

STALE_THRESHOLD_DAYS = 7
URGENCY_WARNING_DAYS = 5
NEW_ACTIVITY_DAYS = 1
NEW_DEAL_WINDOW_DAYS = 7

STAGE_WEIGHTS: dict[Stage, int] = {
    Stage.sent_to_buyer: 10,
    Stage.buyer_responded: 20,
    Stage.showing_scheduled: 30,
    Stage.property_viewed: 40,
    Stage.offer_made: 60,
    Stage.under_contract: 80,
    Stage.closed_won: 100,
    Stage.not_interested: 0,
}

# (max days since activity, points)
RECENCY_POINTS: tuple[tuple[int, int], ...] = ((1, 20), (3, 15), (7, 10), (14, 5))


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def is_active(deal: Deal) -> bool:
    return not st.is_terminal(deal.stage)


def days_since_activity(deal: Deal, now: datetime) -> int:
    """Whole days since last activity (falls back to created_at; 0 if neither is known)."""
    ref = deal.last_activity_at or deal.created_at
    if ref is None:
        return 0
    delta = _aware(now) - _aware(ref)
    return max(0, delta.days)


def is_stale(deal: Deal, now: datetime) -> bool:
    return days_since_activity(deal, now) >= STALE_THRESHOLD_DAYS


def urgency(deal: Deal, now: datetime) -> str:
    days = days_since_activity(deal, now)
    if days >= STALE_THRESHOLD_DAYS:
        return "stale"
    if days >= URGENCY_WARNING_DAYS:
        return "warning"
    if days <= NEW_ACTIVITY_DAYS:
        return "new"
    return "normal"


@dataclass(frozen=True)
class ProbabilityFactor:
    label: str
    impact: str  # positive | negative | neutral
    weight: int
    description: str = ""


@dataclass(frozen=True)
class WinProbability:
    probability: int
    trend: str  # up | down | stable
    label: str
    color: str
    factors: tuple[ProbabilityFactor, ...] = ()


def _stage_factor(stage: Stage, weight: int, pts: int) -> ProbabilityFactor:
    if weight >= 60:
        return ProbabilityFactor("Advanced stage", "positive", pts, f'Deal is at "{stage.value}" - strong momentum')
    if weight >= 30:
        return ProbabilityFactor("Good progress", "positive", pts, f'Deal is at "{stage.value}" stage')
    if weight > 0:
        return ProbabilityFactor("Early stage", "neutral", pts, f'Deal is at "{stage.value}" stage')
    return ProbabilityFactor("Not interested", "negative", 0, "Buyer marked as not interested")


def _score_factor(score: int, pts: int) -> ProbabilityFactor:
    if score >= 85:
        return ProbabilityFactor("Excellent match", "positive", pts, f"{score}% match score")
    if score >= 70:
        return ProbabilityFactor("Strong match", "positive", pts, f"{score}% match score")
    if score >= 50:
        return ProbabilityFactor("Moderate match", "neutral", pts, f"{score}% match score")
    return ProbabilityFactor("Low match", "negative", pts, f"{score}% match score")


def _recency_factor(days: int) -> ProbabilityFactor:
    pts = 0
    for max_days, p in RECENCY_POINTS:
        if days <= max_days:
            pts = p
            break

    if days <= 1:
        return ProbabilityFactor("Very active", "positive", pts, "Activity within the last day")
    if days <= 3:
        return ProbabilityFactor("Recent activity", "positive", pts, "Activity within the last 3 days")
    if days <= 7:
        return ProbabilityFactor("Some activity", "neutral", pts, f"Last activity {days} days ago")
    if days <= 14:
        return ProbabilityFactor("Stale deal", "negative", pts, f"No activity in {days} days")
    return ProbabilityFactor("Very stale", "negative", pts, f"No activity in {days}+ days")


def win_probability(deal: Deal, now: datetime) -> WinProbability:
    weight = STAGE_WEIGHTS.get(deal.stage, 0)
    days = days_since_activity(deal, now)

    stage_f = _stage_factor(deal.stage, weight, round(weight * 0.5))
    score_f = _score_factor(deal.score, round(deal.score * 0.3))
    recency_f = _recency_factor(days)

    probability = max(0, min(100, stage_f.weight + score_f.weight + recency_f.weight))

    if days <= 2 and weight >= 30:
        trend = "up"
    elif days >= 7 or weight == 0:
        trend = "down"
    else:
        trend = "stable"

    if probability >= 70:
        label, color = "Strong", "green"
    elif probability >= 40:
        label, color = "Fair", "amber"
    else:
        label, color = "At Risk", "red"

    return WinProbability(
        probability=probability,
        trend=trend,
        label=label,
        color=color,
        factors=(stage_f, score_f, recency_f),
    )


@dataclass(frozen=True)
class PipelineStats:
    total_deals: int
    pipeline_value: float
    closing_soon: int
    needs_attention: int
    new_this_week: int
    by_stage: dict[Stage, int]


def pipeline_stats(deals: Iterable[Deal], now: datetime) -> PipelineStats:
    by_stage: dict[Stage, int] = {s: 0 for s in st.all_stages()}
    total = 0
    value = 0.0
    needs_attention = 0
    new_this_week = 0
    week_ago = _aware(now) - timedelta(days=NEW_DEAL_WINDOW_DAYS)

    for d in deals:
        total += 1
        by_stage[d.stage] += 1
        if is_active(d):
            value += d.property.price or 0.0
            if is_stale(d, now):
                needs_attention += 1
        if d.created_at is not None and _aware(d.created_at) >= week_ago:
            new_this_week += 1

    return PipelineStats(
        total_deals=total,
        pipeline_value=value,
        closing_soon=by_stage[Stage.under_contract],
        needs_attention=needs_attention,
        new_this_week=new_this_week,
        by_stage=by_stage,
    )


@dataclass
class BuyerDeals:
    buyer: BuyerRef
    deals: list[Deal] = field(default_factory=list)

    @property
    def total_deals(self) -> int:
        return len(self.deals)

    @property
    def total_value(self) -> float:
        return sum(d.property.price or 0.0 for d in self.deals)

    @property
    def active_stages(self) -> list[Stage]:
        present = {d.stage for d in self.deals}
        return [s for s in st.all_stages() if s in present]


@dataclass
class PropertyDeals:
    property: PropertyRef
    deals: list[Deal] = field(default_factory=list)

    @property
    def total_buyers(self) -> int:
        return len({d.buyer.contact_id for d in self.deals})

    @property
    def highest_score(self) -> int:
        return max((d.score for d in self.deals), default=0)

    @property
    def furthest_stage(self) -> Stage | None:
        return st.furthest([d.stage for d in self.deals])


def group_by_buyer(deals: Iterable[Deal]) -> list[BuyerDeals]:
    """Groups in first-seen order; deals keep their input order within a group."""
    groups: dict[str, BuyerDeals] = {}
    for d in deals:
        g = groups.get(d.buyer.contact_id)
        if g is None:
            g = groups[d.buyer.contact_id] = BuyerDeals(buyer=d.buyer)
        g.deals.append(d)
    return list(groups.values())


def group_by_property(deals: Iterable[Deal]) -> list[PropertyDeals]:
    groups: dict[str, PropertyDeals] = {}
    for d in deals:
        g = groups.get(d.property.record_id)
        if g is None:
            g = groups[d.property.record_id] = PropertyDeals(property=d.property)
        g.deals.append(d)
    return list(groups.values())


@dataclass(frozen=True)
class DealFilters:
    stages: frozenset[Stage] = frozenset()
    buyer_id: str | None = None
    property_id: str | None = None
    search: str | None = None
    min_score: int | None = None
    only_stale: bool = False


def filter_deals(deals: Iterable[Deal], filters: DealFilters, now: datetime) -> list[Deal]:
    q = (filters.search or "").strip().lower()
    out: list[Deal] = []
    for d in deals:
        if filters.stages and d.stage not in filters.stages:
            continue
        if filters.buyer_id and d.buyer.contact_id != filters.buyer_id:
            continue
        if filters.property_id and d.property.record_id != filters.property_id:
            continue
        if filters.min_score is not None and d.score < filters.min_score:
            continue
        if filters.only_stale and not (is_active(d) and is_stale(d, now)):
            continue
        if q and q not in d.property.address.lower() and q not in d.buyer.name.lower():
            continue
        out.append(d)
    return out
