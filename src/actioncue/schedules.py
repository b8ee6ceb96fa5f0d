"""Recurrence descriptors.

A schedule is a pure value: given a reference time it answers when the
action is next due. Timestamps are POSIX seconds (floats) throughout.

- SingleSchedule: run once at a fixed time
- IntervalSchedule: run every N seconds on a grid anchored at ``start``
- CronSchedule: run on wall-clock instants matching a cron expression
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter


class Schedule:
    """Base class for schedule descriptors."""

    kind: str = ""

    @property
    def is_recurring(self) -> bool:
        return False

    def first_due(self) -> float:
        raise NotImplementedError

    def next_after(self, reference: float) -> float | None:
        """Return the first due time strictly greater than ``reference``."""
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class SingleSchedule(Schedule):
    """Run exactly once at ``at``."""

    at: float
    kind = "single"

    def first_due(self) -> float:
        return self.at

    def next_after(self, reference: float) -> float | None:
        return self.at if self.at > reference else None

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "at": self.at}


@dataclass(frozen=True)
class IntervalSchedule(Schedule):
    """Run every ``interval`` seconds, the k-th run due at ``start + k * interval``."""

    start: float
    interval: float
    kind = "interval"

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError(f"Interval must be positive, got {self.interval}")

    @property
    def is_recurring(self) -> bool:
        return True

    def first_due(self) -> float:
        return self.start

    def next_after(self, reference: float) -> float | None:
        if reference < self.start:
            return self.start
        # Measured from start, never from completion time, so runs don't drift
        k = math.floor((reference - self.start) / self.interval) + 1
        # The division can land one slot off when interval isn't exact in binary
        while k > 1 and self.start + (k - 1) * self.interval > reference:
            k -= 1
        while self.start + k * self.interval <= reference:
            k += 1
        return self.start + k * self.interval

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "start": self.start, "interval": self.interval}


@dataclass(frozen=True)
class CronSchedule(Schedule):
    """Run at instants matching a cron expression in ``timezone``.

    Expressions are evaluated in local wall-clock time so "0 8 * * *" keeps
    firing at 08:00 across DST changes.
    """

    expression: str
    start: float
    timezone: str = "UTC"
    kind = "cron"

    def __post_init__(self) -> None:
        if not croniter.is_valid(self.expression):
            raise ValueError(f"Invalid cron expression: {self.expression!r}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {self.timezone!r}") from e

    @property
    def is_recurring(self) -> bool:
        return True

    def first_due(self) -> float:
        return self.next_after(self.start)

    def next_after(self, reference: float) -> float | None:
        tz = ZoneInfo(self.timezone)
        base = datetime.fromtimestamp(reference, tz)
        next_local = croniter(self.expression, base).get_next(datetime)
        return next_local.timestamp()

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "expression": self.expression,
            "start": self.start,
            "timezone": self.timezone,
        }


def schedule_from_dict(data: dict[str, Any]) -> Schedule:
    """Rebuild a schedule from its persisted form."""
    kind = data.get("kind")
    if kind == SingleSchedule.kind:
        return SingleSchedule(at=float(data["at"]))
    if kind == IntervalSchedule.kind:
        return IntervalSchedule(start=float(data["start"]), interval=float(data["interval"]))
    if kind == CronSchedule.kind:
        return CronSchedule(
            expression=data["expression"],
            start=float(data["start"]),
            timezone=data.get("timezone") or "UTC",
        )
    raise ValueError(f"Unknown schedule kind: {kind!r}")
