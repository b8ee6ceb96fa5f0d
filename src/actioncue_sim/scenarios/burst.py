"""Burst scenario - the default workload.

Every action is due at once, so all workers race to claim the same rows.
This is the main check that no action is ever executed twice.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from actioncue_sim.scenarios import Scenario, ScenarioInfo, simulate_latency

if TYPE_CHECKING:
    from actioncue import ActionScheduler
    from actioncue_sim.display import SimulationState
    from actioncue_sim.runner import SimConfig


class BurstScenario(Scenario):
    """N one-shot actions, all due immediately, mixed priorities."""

    @property
    def info(self) -> ScenarioInfo:
        return ScenarioInfo(
            name="burst",
            description="One-shot actions all due now, workers race (default)",
        )

    def setup(self, scheduler: ActionScheduler, worker: str, config: SimConfig, state: SimulationState) -> None:
        rng = random.Random(None if config.seed is None else f"{config.seed}:{worker}")

        @scheduler.handler("burst.work", retry={"max_attempts": 3, "backoff": "fixed", "base_delay": config.retry_delay})
        async def work(key, item):
            state.begin(key, worker)
            try:
                await simulate_latency(config, rng)
                if rng.random() < config.error_rate:
                    raise RuntimeError(f"Simulated error on {item}")
            except BaseException as e:
                state.end(key, worker, e)
                raise
            state.end(key, worker)

    async def submit_workload(self, scheduler: ActionScheduler, config: SimConfig, state: SimulationState) -> list[int]:
        rng = random.Random(config.seed)
        ids = []
        for i in range(config.count):
            action_id = await scheduler.enqueue("burst.work", i, f"item_{i:04d}", priority=rng.randint(0, 3))
            ids.append(action_id)
            state.submitted += 1
            state.add_event("queued", i, None, f"item_{i:04d}")
        return ids
