"""actioncue - A durable scheduler for deferred and recurring actions."""

from actioncue.claims import ClaimManager
from actioncue.config import SchedulerConfig
from actioncue.errors import (
    ActionCueError,
    ActionNotFound,
    HandlerFailure,
    HandlerTimeout,
    InvalidQuery,
    StorageError,
    UnknownHandler,
)
from actioncue.models import (
    Action,
    ActionFilter,
    ActionPage,
    ActionResult,
    ActionSpec,
    ActionStatus,
    Claim,
    LogEntry,
    Outcome,
)
from actioncue.registry import Handler, HandlerRegistry
from actioncue.retry import RetryPolicy
from actioncue.runner import Runner
from actioncue.scheduler import ActionScheduler
from actioncue.schedules import CronSchedule, IntervalSchedule, Schedule, SingleSchedule
from actioncue.status import StatusQueryService, StatusSummary
from actioncue.store import ActionStore
from actioncue.worker import Worker

__version__ = "0.1.0"
__all__ = [
    "Action",
    "ActionCueError",
    "ActionFilter",
    "ActionNotFound",
    "ActionPage",
    "ActionResult",
    "ActionScheduler",
    "ActionSpec",
    "ActionStatus",
    "ActionStore",
    "Claim",
    "ClaimManager",
    "CronSchedule",
    "Handler",
    "HandlerFailure",
    "HandlerRegistry",
    "HandlerTimeout",
    "IntervalSchedule",
    "InvalidQuery",
    "LogEntry",
    "Outcome",
    "RetryPolicy",
    "Runner",
    "Schedule",
    "SchedulerConfig",
    "SingleSchedule",
    "StatusQueryService",
    "StatusSummary",
    "StorageError",
    "UnknownHandler",
    "Worker",
]
