# dealflow/service_layer/controller.py
"""
Optimistic stage updates with undo.

The board keeps two things per deal: the committed snapshot (what GHL last
confirmed) and an optional optimistic stage shown while a transition is in
flight. Only one transition per deal may be in flight; a second request for
the same deal is rejected before anything is awaited. Different deals move
independently.

Every request returns a TransitionCommand. Its undo() is just the reverse
transition, so it can be invoked again and fails the same way any other
transition fails.
"""
from __future__ import annotations

import logging
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, Protocol

from ..config import settings
from ..domain import stages as st
from ..domain.stages import Stage
from ..domain.types import Deal
from .transitions import StageTransitionManager, TransitionOutcome, TransitionStatus

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Notifications
# -----------------------------
@dataclass(frozen=True)
class Notification:
    kind: str  # "success" | "error"
    deal_id: str
    message: str
    undo_token: str | None = None
    created_at: datetime = field(default_factory=_utcnow)


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None:
        ...


class NotificationLog:
    """In-memory notifier; keeps the most recent entries."""

    def __init__(self, maxlen: int = 200) -> None:
        self._items: deque[Notification] = deque(maxlen=maxlen)

    def notify(self, notification: Notification) -> None:
        self._items.append(notification)

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    def for_deal(self, deal_id: str) -> list[Notification]:
        return [n for n in self._items if n.deal_id == deal_id]


# -----------------------------
# Board state
# -----------------------------
class DealBoard:
    def __init__(self, deals: Iterable[Deal] = ()) -> None:
        self._committed: dict[str, Deal] = {}
        self._optimistic: dict[str, Stage] = {}
        for d in deals:
            self._committed[d.id] = d

    def __contains__(self, deal_id: object) -> bool:
        return deal_id in self._committed

    def __len__(self) -> int:
        return len(self._committed)

    def snapshot(self, deal_id: str) -> Deal | None:
        """Last committed state."""
        return self._committed.get(deal_id)

    def view(self, deal_id: str) -> Deal | None:
        """What the board shows right now (optimistic stage applied)."""
        d = self._committed.get(deal_id)
        if d is None:
            return None
        stage = self._optimistic.get(deal_id)
        return d if stage is None else replace(d, stage=stage)

    def deals(self) -> list[Deal]:
        return list(self._committed.values())

    def view_all(self) -> list[Deal]:
        return [v for v in (self.view(k) for k in self._committed) if v is not None]

    def put(self, deal: Deal) -> None:
        self._committed[deal.id] = deal

    def set_optimistic(self, deal_id: str, stage: Stage) -> None:
        self._optimistic[deal_id] = stage

    def clear_optimistic(self, deal_id: str) -> None:
        self._optimistic.pop(deal_id, None)

    def commit(self, deal_id: str, *, stage: Stage, relation_id: str | None, last_activity_at: datetime | None) -> Deal:
        cur = self._committed[deal_id]
        new = replace(cur, stage=stage, relation_id=relation_id, last_activity_at=last_activity_at or cur.last_activity_at)
        self._committed[deal_id] = new
        self._optimistic.pop(deal_id, None)
        return new


# -----------------------------
# Commands + undo registry
# -----------------------------
@dataclass
class TransitionCommand:
    status: TransitionStatus
    deal_id: str
    from_stage: Stage | None
    to_stage: Stage | None
    outcome: TransitionOutcome | None = None
    notification: Notification | None = None
    token: str | None = None
    is_undo: bool = False
    _controller: "OptimisticStageController | None" = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.status in (TransitionStatus.ok, TransitionStatus.noop)

    @property
    def error(self) -> str | None:
        return self.outcome.error if self.outcome else None

    @property
    def can_undo(self) -> bool:
        return self.status == TransitionStatus.ok and self._controller is not None

    async def undo(self) -> "TransitionCommand":
        """Reverse transition to_stage -> from_stage. Safe to call more than once."""
        if self._controller is None or self.from_stage is None or self.to_stage is None:
            return TransitionCommand(
                status=TransitionStatus.noop,
                deal_id=self.deal_id,
                from_stage=self.to_stage,
                to_stage=self.from_stage,
                is_undo=True,
            )
        return await self._controller.request_transition(
            self.deal_id, self.to_stage, self.from_stage, is_undo=True
        )


class UndoRegistry:
    """Commands with an undo, keyed by token. Oldest entries fall off first."""

    def __init__(self, maxsize: int | None = None) -> None:
        self.maxsize = int(settings.UNDO_HISTORY_SIZE if maxsize is None else maxsize)
        self._items: OrderedDict[str, TransitionCommand] = OrderedDict()

    def add(self, cmd: TransitionCommand) -> str:
        token = cmd.token or uuid.uuid4().hex
        cmd.token = token
        self._items[token] = cmd
        self._items.move_to_end(token)
        while len(self._items) > self.maxsize:
            self._items.popitem(last=False)
        return token

    def get(self, token: str) -> TransitionCommand | None:
        return self._items.get(token)

    def __len__(self) -> int:
        return len(self._items)


# -----------------------------
# Controller
# -----------------------------
class OptimisticStageController:
    def __init__(
        self,
        manager: StageTransitionManager,
        board: DealBoard | None = None,
        notifier: Notifier | None = None,
        undo_registry: UndoRegistry | None = None,
    ) -> None:
        self.manager = manager
        self.board = board or DealBoard()
        self.notifier: Notifier = notifier or NotificationLog()
        self.undo_registry = undo_registry or UndoRegistry()
        self._inflight: set[str] = set()

    def is_transitioning(self, deal_id: str) -> bool:
        return deal_id in self._inflight

    def load_deals(self, deals: Iterable[Deal]) -> int:
        """Refresh committed snapshots from GHL. Deals mid-transition keep their local state."""
        n = 0
        for d in deals:
            if d.id in self._inflight:
                continue
            self.board.put(d)
            n += 1
        return n

    def _command(self, status: TransitionStatus, deal_id: str, f: Stage | None, t: Stage | None, error: str, is_undo: bool) -> TransitionCommand:
        outcome = TransitionOutcome(status=status, deal_id=deal_id, from_stage=f, to_stage=t, error=error)
        return TransitionCommand(status=status, deal_id=deal_id, from_stage=f, to_stage=t, outcome=outcome, is_undo=is_undo)

    async def request_transition(
        self,
        deal_id: str,
        from_stage: Stage | str,
        to_stage: Stage | str,
        *,
        is_undo: bool = False,
    ) -> TransitionCommand:
        # everything up to the first await runs atomically on the loop
        if deal_id in self._inflight:
            return self._command(
                TransitionStatus.conflict, deal_id, None, None,
                "A stage change for this deal is already in progress", is_undo,
            )

        deal = self.board.snapshot(deal_id)
        if deal is None:
            return self._command(TransitionStatus.not_found, deal_id, None, None, f"Unknown deal {deal_id!r}", is_undo)

        try:
            src = st.parse_stage(from_stage)
            dst = st.parse_stage(to_stage)
        except ValueError as e:
            return self._command(TransitionStatus.invalid_stage, deal_id, deal.stage, None, str(e), is_undo)

        if src == dst and src == deal.stage:
            return TransitionCommand(
                status=TransitionStatus.noop,
                deal_id=deal_id,
                from_stage=src,
                to_stage=dst,
                outcome=TransitionOutcome(TransitionStatus.noop, deal_id, src, dst, relation_id=deal.relation_id),
                is_undo=is_undo,
            )

        self._inflight.add(deal_id)
        self.board.set_optimistic(deal_id, dst)
        try:
            outcome = await self.manager.transition(deal, src, dst)
        except BaseException:
            self.board.clear_optimistic(deal_id)
            raise
        finally:
            self._inflight.discard(deal_id)

        cmd = TransitionCommand(
            status=outcome.status,
            deal_id=deal_id,
            from_stage=src,
            to_stage=dst,
            outcome=outcome,
            is_undo=is_undo,
        )

        if outcome.ok:
            self.board.commit(
                deal_id,
                stage=dst,
                relation_id=outcome.relation_id,
                last_activity_at=outcome.occurred_at,
            )
            cmd._controller = self
            token = self.undo_registry.add(cmd)
            verb = "Moved back to" if is_undo else "Moved to"
            msg = f"{verb} {st.config(dst).label}"
            if outcome.writeback_error:
                msg += f" (GHL deal fields not updated: {outcome.writeback_error})"
            cmd.notification = Notification(
                kind="success",
                deal_id=deal_id,
                message=msg,
                undo_token=token,
            )
        else:
            # committed snapshot is untouched; the view falls back to it
            self.board.clear_optimistic(deal_id)
            msg = f"Couldn't move to {st.config(dst).label}: {outcome.error}"
            if outcome.relation_deleted:
                msg += " (previous GHL stage marker was already removed)"
            cmd.notification = Notification(kind="error", deal_id=deal_id, message=msg)

        self.notifier.notify(cmd.notification)
        return cmd
