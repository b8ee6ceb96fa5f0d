"""Recurring scenario - interval actions rescheduled after every run.

Each action repeats on a short interval. Once every action has run the
configured number of times the actions are canceled and the run ends.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from actioncue_sim.scenarios import Scenario, ScenarioInfo, simulate_latency

if TYPE_CHECKING:
    from actioncue import ActionScheduler
    from actioncue_sim.display import SimulationState
    from actioncue_sim.runner import SimConfig


class RecurringScenario(Scenario):
    """Interval actions that keep coming back."""

    @property
    def info(self) -> ScenarioInfo:
        return ScenarioInfo(
            name="recurring",
            description="Interval actions rescheduled after each run",
        )

    def setup(self, scheduler: ActionScheduler, worker: str, config: SimConfig, state: SimulationState) -> None:
        rng = random.Random(None if config.seed is None else f"{config.seed}:{worker}")

        @scheduler.handler("recurring.work", retry={"max_attempts": 2, "backoff": "fixed", "base_delay": config.retry_delay})
        async def work(key):
            state.begin(key, worker, recurring=True)
            try:
                await simulate_latency(config, rng)
                if rng.random() < config.error_rate:
                    raise RuntimeError("Simulated error")
            except BaseException as e:
                state.end(key, worker, e)
                raise
            state.end(key, worker)

    async def submit_workload(self, scheduler: ActionScheduler, config: SimConfig, state: SimulationState) -> list[int]:
        ids = []
        for i in range(config.count):
            ids.append(await scheduler.schedule_interval("recurring.work", config.interval, args=(i,), group="recurring"))
            state.submitted += 1
            state.add_event("queued", i, None, f"every {config.interval:g}s")
        return ids

    def is_finished(self, state: SimulationState) -> bool:
        if super().is_finished(state):
            return True  # Everything failed or was canceled
        if state.submitted == 0 or len(state.runs_per_action) < state.submitted:
            return False
        return min(state.runs_per_action.values()) >= state.target_runs

    async def finish(self, scheduler: ActionScheduler, action_ids: list[int]) -> None:
        for action_id in action_ids:
            await scheduler.cancel(action_id)
