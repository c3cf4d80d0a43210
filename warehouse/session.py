"""Session state, filter reducers and the idle watchdog.

The signed-in user and the current view selection live in one explicit
:class:`SessionState` value.  It is loaded from the local cache when the
service starts, replaced through the pure reducers below, persisted after
every change and wiped at logout.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Literal, Optional

from .models import (
    ACTIVE_VIEWS,
    CATEGORY_FILTERS,
    STATUS_FILTERS,
    VIEW_SCOPES,
    FilterState,
)

IdleState = Literal["active", "warning", "expired"]


@dataclass(frozen=True, slots=True)
class SessionState:
    user: Optional[str] = None
    filters: FilterState = field(default_factory=FilterState)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user)


# ---------------------------------------------------------------------------
# Filter reducers
# ---------------------------------------------------------------------------

def switch_view(state: FilterState, view: str) -> FilterState:
    """Changing tab resets the status filter, the scope and the page."""

    if view not in ACTIVE_VIEWS:
        raise ValueError(f"Unknown view: {view}")
    return replace(state, active_view=view, status_filter="all", view_scope="monthly", current_page=1)


def set_status_filter(state: FilterState, status: str) -> FilterState:
    if status not in STATUS_FILTERS:
        raise ValueError(f"Unknown status filter: {status}")
    return replace(state, status_filter=status, current_page=1)


def set_category_filter(state: FilterState, category: str) -> FilterState:
    if category not in CATEGORY_FILTERS:
        raise ValueError(f"Unknown category filter: {category}")
    return replace(state, category_filter=category, current_page=1)


def set_date_range(state: FilterState, start_date: str = "", end_date: str = "") -> FilterState:
    return replace(state, start_date=start_date or "", end_date=end_date or "", current_page=1)


def clear_date_range(state: FilterState) -> FilterState:
    return set_date_range(state)


def set_keyword(state: FilterState, keyword: str) -> FilterState:
    return replace(state, keyword=keyword or "", current_page=1)


def set_view_scope(state: FilterState, scope: str) -> FilterState:
    if scope not in VIEW_SCOPES:
        raise ValueError(f"Unknown view scope: {scope}")
    return replace(state, view_scope=scope, current_page=1)


def set_page(state: FilterState, page: int) -> FilterState:
    return replace(state, current_page=max(1, int(page)))


_REDUCERS: dict[str, Callable[[FilterState, Any], FilterState]] = {
    "status_filter": set_status_filter,
    "category_filter": set_category_filter,
    "keyword": set_keyword,
    "view_scope": set_view_scope,
}


def update_filters(state: FilterState, changes: dict[str, Any]) -> FilterState:
    """Apply a partial update the way the UI would, one control at a time.

    A view switch is applied first so that any status/scope sent alongside it
    survives the reset.  ``current_page`` is applied last.
    """

    if "active_view" in changes and changes["active_view"] != state.active_view:
        state = switch_view(state, changes["active_view"])
    for name, reducer in _REDUCERS.items():
        if name in changes and changes[name] is not None:
            state = reducer(state, changes[name])
    if "start_date" in changes or "end_date" in changes:
        state = set_date_range(
            state,
            changes.get("start_date", state.start_date),
            changes.get("end_date", state.end_date),
        )
    if changes.get("current_page") is not None:
        state = set_page(state, changes["current_page"])
    return state


# ---------------------------------------------------------------------------
# Idle watchdog
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class IdleStatus:
    state: IdleState
    idle_seconds: float
    seconds_remaining: float


class IdleWatchdog:
    """Track the last user activity against a warning and a hard timeout."""

    def __init__(
        self,
        warning_after: float,
        timeout_after: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._warning_after = warning_after
        self._timeout_after = timeout_after
        self._clock = clock
        self._last_activity = clock()

    def touch(self) -> None:
        self._last_activity = self._clock()

    def status(self) -> IdleStatus:
        idle = max(0.0, self._clock() - self._last_activity)
        remaining = max(0.0, self._timeout_after - idle)
        if idle >= self._timeout_after:
            state: IdleState = "expired"
        elif idle >= self._warning_after:
            state = "warning"
        else:
            state = "active"
        return IdleStatus(state=state, idle_seconds=idle, seconds_remaining=remaining)


__all__ = [
    "IdleStatus",
    "IdleWatchdog",
    "SessionState",
    "clear_date_range",
    "set_category_filter",
    "set_date_range",
    "set_keyword",
    "set_page",
    "set_status_filter",
    "set_view_scope",
    "switch_view",
    "update_filters",
]
