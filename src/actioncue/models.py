"""Core data models for actioncue."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from actioncue.schedules import Schedule, SingleSchedule


class ActionStatus(str, Enum):
    """Possible states for an action."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({ActionStatus.COMPLETE, ActionStatus.FAILED, ActionStatus.CANCELED})


class Outcome(str, Enum):
    """What happened when the Runner processed an action."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    UNKNOWN_HANDLER = "unknown_handler"
    SKIPPED = "skipped"


@dataclass
class Action:
    """A unit of deferred work."""

    id: int
    hook: str
    schedule: Schedule
    args: tuple[Any, ...] = ()
    group: str | None = None
    status: ActionStatus = ActionStatus.PENDING
    priority: int = 0
    claim_id: str | None = None
    attempts: int = 0
    last_error: dict[str, Any] | None = None
    cancel_requested: bool = False
    created_at: float = 0.0
    next_due: float | None = None
    started_at: float | None = None
    completed_at: float | None = None

    @property
    def is_recurring(self) -> bool:
        return self.schedule.is_recurring


@dataclass
class ActionSpec:
    """What a caller enqueues. The store assigns the id."""

    hook: str
    args: tuple[Any, ...] = ()
    schedule: Schedule | None = None  # None = single run, due immediately
    group: str | None = None
    priority: int = 0
    unique: bool = False  # Reuse a live action with the same hook/args/group

    def resolve_schedule(self, now: float) -> Schedule:
        return self.schedule if self.schedule is not None else SingleSchedule(at=now)


@dataclass
class Claim:
    """A lease on a batch of actions held by one worker."""

    id: str
    holder: str
    created_at: float
    expires_at: float
    action_ids: tuple[int, ...] = ()

    def is_expired(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at


@dataclass
class ActionResult:
    """Outcome of running one action from a claim."""

    action_id: int
    hook: str
    outcome: Outcome
    status: ActionStatus | None = None  # Status after persistence, None if skipped
    error: str | None = None
    next_due: float | None = None
    duration: float = 0.0


@dataclass
class ActionFilter:
    """Filter accepted by ActionStore.query and friends. Unset fields match anything."""

    status: ActionStatus | str | None = None
    group: str | None = None
    hook: str | None = None
    due_after: float | None = None
    due_before: float | None = None
    search: str | None = None
    claim_id: str | None = None


@dataclass
class ActionPage:
    """One page of query results with totals for pagination."""

    items: list[Action] = field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 10

    @property
    def total_pages(self) -> int:
        if self.per_page <= 0:
            return 0
        return -(-self.total // self.per_page)


@dataclass
class LogEntry:
    """One line of an action's audit trail."""

    id: int
    action_id: int
    timestamp: float
    message: str
