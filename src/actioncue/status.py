"""Read-only aggregates for reporting surfaces."""

from __future__ import annotations

from dataclasses import dataclass, field

from actioncue.models import ActionFilter, ActionStatus
from actioncue.store import ActionStore


@dataclass
class StatusSummary:
    """Counts plus a health view of the pending backlog."""

    counts: dict[ActionStatus, int] = field(default_factory=dict)
    past_due: int = 0  # Pending actions due longer ago than the threshold
    oldest_due: float | None = None  # Earliest next_due among pending actions

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class StatusQueryService:
    """Per-status counts over the store, always read at call time."""

    def __init__(self, store: ActionStore) -> None:
        self.store = store

    async def counts(self, group: str | None = None) -> dict[ActionStatus, int]:
        """Number of actions in each status, optionally within one group."""
        return await self.store.count_by_status(ActionFilter(group=group))

    async def summary(
        self,
        group: str | None = None,
        now: float | None = None,
        past_due_threshold: float = 0.0,
    ) -> StatusSummary:
        """
        Counts plus how far the pending backlog lags behind.

        Args:
            group: Restrict to one group.
            now: Evaluation time, defaults to the store clock.
            past_due_threshold: Seconds a pending action may be overdue
                before it counts as past due.
        """
        now = self.store.timestamp(now)
        counts = await self.counts(group)
        past_due = await self.store.count(
            ActionFilter(status=ActionStatus.PENDING, group=group, due_before=now - past_due_threshold)
        )
        oldest = await self.store.query(
            ActionFilter(status=ActionStatus.PENDING, group=group), order_by="next_due", limit=1
        )
        return StatusSummary(
            counts=counts,
            past_due=past_due,
            oldest_due=oldest[0].next_due if oldest else None,
        )
