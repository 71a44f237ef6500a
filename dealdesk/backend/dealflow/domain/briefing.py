# dealflow/domain/briefing.py
"""
"Dismiss for today" state for the morning briefing, as pure functions over an
explicit key/value store. Callers inject the store and the clock.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, MutableMapping

DISMISS_PREFIX = "briefing_dismissed:"

Clock = Callable[[], date]


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def dismissal_key(day: date) -> str:
    return f"{DISMISS_PREFIX}{day.isoformat()}"


def is_dismissed_for(store: MutableMapping[str, str], day: date) -> bool:
    return store.get(dismissal_key(day)) == "true"


def dismiss(store: MutableMapping[str, str], day: date) -> list[str]:
    """
    Marks `day` dismissed and purges dismissal keys for every other day.
    Returns the purged keys.
    """
    keep = dismissal_key(day)
    stale = [k for k in store if k.startswith(DISMISS_PREFIX) and k != keep]
    for k in stale:
        del store[k]
    store[keep] = "true"
    return stale


def is_dismissed_today(store: MutableMapping[str, str], clock: Clock = utc_today) -> bool:
    return is_dismissed_for(store, clock())


def dismiss_today(store: MutableMapping[str, str], clock: Clock = utc_today) -> list[str]:
    return dismiss(store, clock())
