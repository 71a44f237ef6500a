# dealflow/domain/stages.py
"""
Deal-stage registry.

Canonical order is carried by an explicit rank map rather than list
position, so display code may reorder STAGE_CONFIGS freely. The single exit
stage (Not Interested) has no next stage and is reachable from every other
stage only by an explicit transition.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Stage(str, Enum):
    sent_to_buyer = "Sent to Buyer"
    buyer_responded = "Buyer Responded"
    showing_scheduled = "Showing Scheduled"
    property_viewed = "Property Viewed"
    offer_made = "Offer Made"
    under_contract = "Under Contract"
    closed_won = "Closed Deal / Won"
    not_interested = "Not Interested"


EXIT_STAGE = Stage.not_interested
EXIT_RANK = 99

_RANK: dict[Stage, int] = {
    Stage.sent_to_buyer: 1,
    Stage.buyer_responded: 2,
    Stage.showing_scheduled: 3,
    Stage.property_viewed: 4,
    Stage.offer_made: 5,
    Stage.under_contract: 6,
    Stage.closed_won: 7,
    Stage.not_interested: EXIT_RANK,
}


@dataclass(frozen=True)
class StageConfig:
    stage: Stage
    label: str
    short_label: str
    color_hint: str
    description: str
    # label of the GHL association that represents "deal is at this stage"
    relation_label: str
    is_exit: bool = False


STAGE_CONFIGS: tuple[StageConfig, ...] = (
    StageConfig(Stage.sent_to_buyer, "Sent to Buyer", "Sent", "blue", "Property details sent to buyer", "Sent to Buyer"),
    StageConfig(Stage.buyer_responded, "Buyer Responded", "Responded", "cyan", "Buyer replied with interest", "Buyer Responded"),
    StageConfig(Stage.showing_scheduled, "Showing Scheduled", "Scheduled", "amber", "Property showing scheduled", "Showing Scheduled"),
    StageConfig(Stage.property_viewed, "Property Viewed", "Viewed", "purple", "Buyer has viewed property", "Property Viewed"),
    StageConfig(Stage.offer_made, "Offer Made", "Offer", "orange", "Buyer submitted an offer", "Offer Made"),
    StageConfig(Stage.under_contract, "Under Contract", "Contract", "indigo", "Contracts signed, closing pending", "Under Contract"),
    StageConfig(Stage.closed_won, "Closed Deal / Won", "Closed", "emerald", "Deal completed successfully", "Closed Deal / Won"),
    StageConfig(Stage.not_interested, "Not Interested", "Not Interested", "red", "Buyer not interested in property", "Not Interested", is_exit=True),
)

_CONFIG_BY_STAGE: dict[Stage, StageConfig] = {c.stage: c for c in STAGE_CONFIGS}


def rank(stage: Stage) -> int:
    return _RANK[stage]


def config(stage: Stage) -> StageConfig:
    return _CONFIG_BY_STAGE[stage]


def is_exit(stage: Stage) -> bool:
    return config(stage).is_exit


def forward_stages() -> list[Stage]:
    """Non-exit stages in canonical order."""
    return sorted((s for s in Stage if not is_exit(s)), key=rank)


def all_stages() -> list[Stage]:
    """Forward stages in order, exit stage last."""
    return forward_stages() + [EXIT_STAGE]


def next_stage(current: Stage) -> Stage | None:
    if is_exit(current):
        return None
    target = rank(current) + 1
    for s in forward_stages():
        if rank(s) == target:
            return s
    return None


def is_forward(from_stage: Stage, to_stage: Stage) -> bool:
    """True when to_stage is strictly later in the forward chain."""
    if is_exit(from_stage) or is_exit(to_stage):
        return False
    return rank(to_stage) > rank(from_stage)


def is_terminal(stage: Stage) -> bool:
    return stage in (Stage.closed_won, EXIT_STAGE)


def furthest(stages: list[Stage]) -> Stage | None:
    """Most advanced forward stage; the exit stage only wins if nothing else is present."""
    if not stages:
        return None
    forward = [s for s in stages if not is_exit(s)]
    if not forward:
        return EXIT_STAGE
    return max(forward, key=rank)


def parse_stage(raw: str | Stage | None) -> Stage:
    """
    Accepts enum values, labels, short labels or enum names (case-insensitive).
    Raises ValueError for anything else.
    """
    if isinstance(raw, Stage):
        return raw
    if raw is None:
        raise ValueError("stage is required")
    s = str(raw).strip().lower()
    if not s:
        raise ValueError("stage is required")
    for c in STAGE_CONFIGS:
        if s in (c.stage.value.lower(), c.label.lower(), c.short_label.lower(), c.stage.name):
            return c.stage
    raise ValueError(f"Unknown stage: {raw!r}")
