"""One scheduling cycle: recover, claim, run."""

from __future__ import annotations

import logging

from actioncue.claims import ClaimManager
from actioncue.models import ActionResult
from actioncue.runner import Runner

logger = logging.getLogger(__name__)


class Worker:
    """
    Drives the claim protocol for one worker.

    ``tick`` can be called from any cadence (a polling loop, external cron,
    a test) without affecting correctness: at-most-once execution comes
    from the claim protocol, not from how often ticks happen.
    """

    def __init__(
        self,
        claims: ClaimManager,
        runner: Runner,
        *,
        batch_size: int = 25,
        lease_duration: float = 300.0,
        holder: str | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.claims = claims
        self.runner = runner
        self.batch_size = batch_size
        self.lease_duration = lease_duration
        self.holder = holder or claims.holder
        self.last_results: list[ActionResult] = []

    async def tick(self, now: float | None = None) -> int:
        """
        Run one cycle and return the number of actions claimed.

        Args:
            now: Evaluation time. None uses the store clock, and the Runner
                then reads the clock again for each action.
        """
        current = self.claims.store.timestamp(now)
        await self.claims.reclaim_expired(current)

        claim = await self.claims.claim(self.batch_size, self.lease_duration, current, holder=self.holder)
        if not claim.action_ids:
            self.last_results = []
            return 0

        self.last_results = await self.runner.run(claim, now)
        logger.debug(
            "Tick at %.3f ran %d action(s) under claim %s", current, len(claim.action_ids), claim.id
        )
        return len(claim.action_ids)
