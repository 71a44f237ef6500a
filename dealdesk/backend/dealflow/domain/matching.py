# dealflow/domain/matching.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Generic, Iterable, TypeVar

from .scoring import score_property
from .types import Buyer, Property, ScoredBuyer, ScoredProperty

log = logging.getLogger(__name__)

INTERESTED_THRESHOLD = 60
POTENTIAL_THRESHOLD = 30

T = TypeVar("T", ScoredBuyer, ScoredProperty)


@dataclass(frozen=True)
class MatchResult(Generic[T]):
    interested: tuple[T, ...] = ()
    potential: tuple[T, ...] = ()
    total_count: int = 0
    dropped: int = 0
    time_ms: float = 0.0

    @property
    def matched_count(self) -> int:
        return len(self.interested) + len(self.potential)


@dataclass
class _Tiers(Generic[T]):
    interested: list[T] = field(default_factory=list)
    potential: list[T] = field(default_factory=list)
    dropped: int = 0

    def add(self, item: T) -> None:
        s = item.score.score
        if s >= INTERESTED_THRESHOLD:
            self.interested.append(item)
        elif s >= POTENTIAL_THRESHOLD:
            self.potential.append(item)
        else:
            self.dropped += 1


def tier_of(score: int) -> str | None:
    if score >= INTERESTED_THRESHOLD:
        return "interested"
    if score >= POTENTIAL_THRESHOLD:
        return "potential"
    return None


def _finish(tiers: _Tiers[T], total: int, started: float) -> MatchResult[T]:
    # sorted() is stable: equal scores keep input order
    by_score = lambda x: x.score.score  # noqa: E731
    return MatchResult(
        interested=tuple(sorted(tiers.interested, key=by_score, reverse=True)),
        potential=tuple(sorted(tiers.potential, key=by_score, reverse=True)),
        total_count=total,
        dropped=tiers.dropped,
        time_ms=(time.perf_counter() - started) * 1000.0,
    )


def match_buyers_for_property(prop: Property, buyers: Iterable[Buyer]) -> MatchResult[ScoredBuyer]:
    started = time.perf_counter()
    tiers: _Tiers[ScoredBuyer] = _Tiers()
    total = 0
    for b in buyers:
        total += 1
        tiers.add(ScoredBuyer(buyer=b, score=score_property(b, prop)))

    res = _finish(tiers, total, started)
    log.info(
        "match property=%s buyers=%d interested=%d potential=%d dropped=%d in %.1fms",
        prop.record_id, total, len(res.interested), len(res.potential), res.dropped, res.time_ms,
    )
    return res


def match_properties_for_buyer(buyer: Buyer, properties: Iterable[Property]) -> MatchResult[ScoredProperty]:
    started = time.perf_counter()
    tiers: _Tiers[ScoredProperty] = _Tiers()
    total = 0
    for p in properties:
        total += 1
        tiers.add(ScoredProperty(property=p, score=score_property(buyer, p)))

    res = _finish(tiers, total, started)
    log.info(
        "match buyer=%s properties=%d interested=%d potential=%d dropped=%d in %.1fms",
        buyer.contact_id, total, len(res.interested), len(res.potential), res.dropped, res.time_ms,
    )
    return res
